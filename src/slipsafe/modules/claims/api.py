from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from slipsafe.api.deps import get_current_user
from slipsafe.core.db import db_session
from slipsafe.modules.claims.codes import encode_qr_png
from slipsafe.modules.claims.schemas import (
    ClaimIssueIn,
    ClaimOut,
    ClaimTokenIn,
    ClaimTokenOut,
    IssuedClaimOut,
)
from slipsafe.modules.claims.service import (
    get_claim_for_owner,
    inspect_claim_token,
    issue_claim,
    list_claims_for_user,
)
from slipsafe.modules.identity.models import User

router = APIRouter(tags=["claims"])


@router.post(
    "/receipts/{receipt_id}/claims",
    response_model=IssuedClaimOut,
    status_code=status.HTTP_201_CREATED,
)
def issue_claim_endpoint(
    receipt_id: uuid.UUID,
    payload: ClaimIssueIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> IssuedClaimOut:
    issued = issue_claim(session, receipt_id=receipt_id, claim_type=payload.claim_type, user=user)
    return IssuedClaimOut(
        claim_code=issued.claim.claim_code,
        pin=issued.pin,
        token=issued.token,
        qr_image=issued.qr_image,
        expires_at=issued.expires_at,
        claim=ClaimOut.model_validate(issued.claim, from_attributes=True),
    )


@router.get("/claims", response_model=list[ClaimOut])
def list_claims_endpoint(
    receipt_id: uuid.UUID | None = None,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[ClaimOut]:
    claims = list_claims_for_user(session, user=user, receipt_id=receipt_id)
    return [ClaimOut.model_validate(c, from_attributes=True) for c in claims]


@router.get("/claims/{code}/qr.png")
def claim_qr_endpoint(
    code: str,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    claim = get_claim_for_owner(session, code=code, user=user)
    return Response(content=encode_qr_png(claim.claim_code), media_type="image/png")


@router.post("/claims/token/inspect", response_model=ClaimTokenOut)
def inspect_claim_token_endpoint(
    payload: ClaimTokenIn,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ClaimTokenOut:
    claims, claim = inspect_claim_token(session, token=payload.token)
    return ClaimTokenOut(payload=claims, claim=ClaimOut.model_validate(claim, from_attributes=True))
