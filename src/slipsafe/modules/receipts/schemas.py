from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from slipsafe.modules.receipts.models import Confidence, ReceiptCategory, RefundType


class ReceiptPreviewOut(BaseModel):
    merchant: str | None
    date: dt.date | None
    total: Decimal | None
    currency: str | None
    confidence: Confidence
    refund_type: RefundType
    return_by: dt.date | None
    warranty_ends: dt.date | None
    policy_source: str
    return_policy_days: int | None = None
    return_policy_terms: str | None = None
    exchange_policy_days: int | None = None
    exchange_policy_terms: str | None = None
    raw_text: str
    preview_token: str


class ReceiptConfirmIn(BaseModel):
    merchant: str = Field(min_length=1, max_length=200)
    date: dt.date
    total: Decimal = Field(gt=0, max_digits=15, decimal_places=3)
    currency: str | None = None
    category: ReceiptCategory = ReceiptCategory.OTHER
    refund_type: RefundType = RefundType.NOT_SPECIFIED
    preview_token: str | None = None
    raw_text: str | None = Field(default=None, max_length=20000)
    return_policy_days: int | None = Field(default=None, ge=1, le=365)
    return_policy_terms: str | None = Field(default=None, max_length=500)
    exchange_policy_days: int | None = Field(default=None, ge=1, le=365)
    exchange_policy_terms: str | None = Field(default=None, max_length=500)


class ReceiptUpdate(BaseModel):
    category: ReceiptCategory


class ReceiptOut(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    merchant: str
    date: dt.date
    total: Decimal
    currency: str
    category: ReceiptCategory
    return_by: dt.date | None
    warranty_ends: dt.date | None
    refund_type: RefundType
    policy_source: str
    return_policy_days: int | None = None
    return_policy_terms: str | None = None
    exchange_policy_days: int | None = None
    exchange_policy_terms: str | None = None
    confidence: Confidence
    content_hash: str
    has_image: bool
    created_at: dt.datetime


class ReceiptConfirmOut(BaseModel):
    receipt: ReceiptOut
    duplicate: bool
