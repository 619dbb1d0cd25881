from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, model_validator

from slipsafe.modules.identity.models import UserRole


class UserOut(BaseModel):
    id: uuid.UUID
    email: EmailStr
    full_name: str | None
    role: UserRole
    store_name: str | None = None
    is_active: bool
    last_login_at: datetime | None = None


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str | None = Field(default=None, max_length=200)
    password: str = Field(min_length=1)
    role: UserRole = UserRole.CONSUMER
    store_name: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _staff_needs_store(self) -> UserCreate:
        if self.role == UserRole.MERCHANT_STAFF and not (self.store_name or "").strip():
            raise ValueError("store_name is required for merchant staff accounts")
        return self


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
