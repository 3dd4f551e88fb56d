from pydantic import BaseModel, EmailStr, Field


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    must_change_password: bool = False


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordRequest(BaseModel):
    new_password: str = Field(min_length=8, max_length=72)
    old_password: str | None = None


class ChangePasswordResponse(BaseModel):
    message: str
