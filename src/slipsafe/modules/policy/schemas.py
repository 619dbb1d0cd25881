from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class MerchantRuleCreate(BaseModel):
    merchant_name: str = Field(min_length=1, max_length=200)
    return_policy_days: int = Field(ge=0, le=3650)
    warranty_months: int = Field(ge=0, le=600)
    is_global: bool = False


class MerchantRuleUpdate(BaseModel):
    merchant_name: str | None = Field(default=None, min_length=1, max_length=200)
    return_policy_days: int | None = Field(default=None, ge=0, le=3650)
    warranty_months: int | None = Field(default=None, ge=0, le=600)


class MerchantRuleOut(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID | None
    merchant_name: str
    normalized_merchant_name: str
    return_policy_days: int
    warranty_months: int
    created_at: datetime
    updated_at: datetime
