from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slipsafe.api.deps import require_merchant_staff
from slipsafe.core.db import db_session
from slipsafe.modules.claims.schemas import ClaimOut
from slipsafe.modules.identity.models import User
from slipsafe.modules.verification.schemas import (
    ClaimLookupOut,
    RedeemIn,
    RefuseIn,
    VerificationAttemptOut,
    VerifyIn,
)
from slipsafe.modules.verification.service import (
    list_attempts,
    lookup_claim,
    redeem_claim,
    refuse_claim,
    verify_claim,
)

router = APIRouter(prefix="/merchant/claims", tags=["verification"])


@router.get("/{code}", response_model=ClaimLookupOut)
def lookup_claim_endpoint(
    code: str,
    session: Session = Depends(db_session),
    staff: User = Depends(require_merchant_staff),
) -> ClaimLookupOut:
    result = lookup_claim(session, code=code, staff=staff)
    return ClaimLookupOut(
        valid=result.valid,
        is_expired=result.is_expired,
        is_used=result.is_used,
        claim=ClaimOut.model_validate(result.claim, from_attributes=True),
    )


@router.post("/verify", response_model=ClaimOut)
def verify_claim_endpoint(
    payload: VerifyIn,
    session: Session = Depends(db_session),
    staff: User = Depends(require_merchant_staff),
) -> ClaimOut:
    claim = verify_claim(session, code=payload.claim_code, pin=payload.pin, staff=staff)
    return ClaimOut.model_validate(claim, from_attributes=True)


@router.post("/redeem", response_model=ClaimOut)
def redeem_claim_endpoint(
    payload: RedeemIn,
    session: Session = Depends(db_session),
    staff: User = Depends(require_merchant_staff),
) -> ClaimOut:
    claim = redeem_claim(
        session,
        code=payload.claim_code,
        pin=payload.pin,
        amount=payload.amount,
        notes=payload.notes,
        staff=staff,
    )
    return ClaimOut.model_validate(claim, from_attributes=True)


@router.post("/refuse", response_model=ClaimOut)
def refuse_claim_endpoint(
    payload: RefuseIn,
    session: Session = Depends(db_session),
    staff: User = Depends(require_merchant_staff),
) -> ClaimOut:
    claim = refuse_claim(
        session, code=payload.claim_code, pin=payload.pin, reason=payload.reason, staff=staff
    )
    return ClaimOut.model_validate(claim, from_attributes=True)


@router.get("/{code}/attempts", response_model=list[VerificationAttemptOut])
def list_attempts_endpoint(
    code: str,
    session: Session = Depends(db_session),
    _: User = Depends(require_merchant_staff),
) -> list[VerificationAttemptOut]:
    attempts = list_attempts(session, code=code)
    return [VerificationAttemptOut.model_validate(a, from_attributes=True) for a in attempts]
