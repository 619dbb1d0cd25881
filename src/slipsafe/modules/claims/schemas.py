from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from slipsafe.modules.claims.models import ClaimState, ClaimType


class ClaimIssueIn(BaseModel):
    claim_type: ClaimType = ClaimType.RETURN


class ClaimOut(BaseModel):
    id: uuid.UUID
    receipt_id: uuid.UUID
    claim_code: str
    claim_type: ClaimType
    state: ClaimState
    original_amount: Decimal
    redeemed_amount: Decimal | None
    currency: str
    created_at: datetime
    expires_at: datetime
    verified_at: datetime | None
    redeemed_at: datetime | None
    refused_at: datetime | None
    refusal_reason: str | None


class IssuedClaimOut(BaseModel):
    claim_code: str
    pin: str
    token: str
    qr_image: str
    expires_at: datetime
    claim: ClaimOut


class ClaimTokenIn(BaseModel):
    token: str


class ClaimTokenOut(BaseModel):
    valid: bool = True
    payload: dict[str, Any]
    claim: ClaimOut
