from pydantic import BaseModel

from app.models.permission import Permission


class PermissionOut(BaseModel):
    code: Permission
    description: str


class PermissionChange(BaseModel):
    permission: Permission
