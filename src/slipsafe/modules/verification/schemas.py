from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from slipsafe.modules.claims.schemas import ClaimOut
from slipsafe.modules.verification.models import AttemptResult


class ClaimLookupOut(BaseModel):
    valid: bool
    is_expired: bool
    is_used: bool
    claim: ClaimOut


class VerifyIn(BaseModel):
    claim_code: str = Field(min_length=1, max_length=16)
    pin: str = Field(min_length=1, max_length=12)


class RedeemIn(VerifyIn):
    amount: Decimal = Field(max_digits=15)
    notes: str | None = Field(default=None, max_length=2000)


class RefuseIn(VerifyIn):
    reason: str | None = Field(default=None, max_length=2000)


class VerificationAttemptOut(BaseModel):
    id: uuid.UUID
    claim_id: uuid.UUID
    result: AttemptResult
    refund_amount: Decimal | None
    notes: str | None
    performed_by_user_id: uuid.UUID | None
    created_at: datetime
