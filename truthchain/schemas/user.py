from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from truthchain.models.user import UserRole


class User(BaseModel):
    id: int
    email: EmailStr
    nickname: str
    is_active: bool = True
    role: UserRole = UserRole.USER
    wallet_address: Optional[str] = None
    wallet_connected: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)


class UserCreate(BaseModel):
    email: EmailStr
    nickname: str = Field(..., min_length=2, max_length=100)
    role: UserRole = UserRole.USER

    @field_validator("nickname")
    @classmethod
    def nickname_must_not_be_empty(cls, v: str) -> str:
        if v.strip() == "":
            raise ValueError("Nickname cannot be empty")
        return v.strip()
