from typing import Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.permission import Permission
from app.models.user import Role as RoleEnum


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    full_name: str
    role: RoleEnum
    is_active: bool
    must_change_password: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = ""
    role: RoleEnum = RoleEnum.operator
    temp_password: str = Field(min_length=12, max_length=72)


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


class UserPermissionsOut(BaseModel):
    user_id: int
    role: RoleEnum
    role_permissions: list[Permission]
    custom_permissions: list[Permission]
    effective_permissions: list[Permission]


class ProfileOut(BaseModel):
    id: int
    email: EmailStr
    full_name: str
    role: RoleEnum
    effective_role: RoleEnum
    impersonating_role: Optional[RoleEnum] = None
    is_active: bool
    must_change_password: bool
    last_login_at: Optional[datetime] = None
    effective_permissions: list[Permission]
