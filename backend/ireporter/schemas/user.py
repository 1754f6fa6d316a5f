from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .base import CamelModel

Role = Literal["user", "admin"]

MAX_PROFILE_PICTURE_CHARS = 1024 * 1024


class SignUpRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2, max_length=100)
    role: Role = "user"


class SignInRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserOut(CamelModel):
    id: str
    email: str
    name: str
    role: Role
    profile_picture: Optional[str] = None
    created_at: datetime


class AuthResponse(CamelModel):
    message: str
    user: UserOut
    token: str


class Token(BaseModel):
    access_token: str
    token_type: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    profile_picture: Optional[str] = Field(None, max_length=MAX_PROFILE_PICTURE_CHARS)

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(..., min_length=6)
