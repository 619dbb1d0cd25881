from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slipsafe.core.config import settings
from slipsafe.core.errors import ClaimConflict, InvalidToken, NotFound
from slipsafe.core.logging import get_logger, log_event
from slipsafe.core.models import as_utc, utcnow
from slipsafe.core.security import CLAIM_TOKEN_TYPE, get_token_signer, hash_pin
from slipsafe.modules.audit.service import record_event
from slipsafe.modules.claims.codes import (
    generate_claim_code,
    generate_pin,
    normalize_claim_code,
    qr_data_url,
)
from slipsafe.modules.claims.models import ACTIVE_STATES, Claim, ClaimState, ClaimType
from slipsafe.modules.identity.models import User, UserRole
from slipsafe.modules.receipts.models import Receipt

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedClaim:
    claim: Claim
    pin: str
    token: str
    qr_image: str
    expires_at: datetime


def is_expired(claim: Claim, *, now: datetime | None = None) -> bool:
    return as_utc(claim.expires_at) <= (now or utcnow())


def expire_if_due(session: Session, *, claim: Claim, now: datetime | None = None) -> bool:
    """Move a live claim past its expiry to ``expired``.

    Conditional on the state so a concurrent redemption is never overwritten.
    Returns True when this call performed the transition. Does not commit.
    """
    now = now or utcnow()
    if claim.state not in ACTIVE_STATES or not is_expired(claim, now=now):
        return False
    result = session.execute(
        update(Claim)
        .where(Claim.id == claim.id, Claim.state.in_(ACTIVE_STATES))
        .values(state=ClaimState.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.expire(claim)
    return bool(result.rowcount)


def get_active_claim(session: Session, *, receipt_id: uuid.UUID) -> Claim | None:
    return session.scalar(
        select(Claim).where(Claim.receipt_id == receipt_id, Claim.state.in_(ACTIVE_STATES))
    )


def issue_claim(
    session: Session, *, receipt_id: uuid.UUID, claim_type: ClaimType, user: User
) -> IssuedClaim:
    receipt = session.get(Receipt, receipt_id)
    if not receipt:
        raise NotFound("Receipt not found")
    if receipt.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")

    now = utcnow()
    active = get_active_claim(session, receipt_id=receipt.id)
    if active is not None:
        if not expire_if_due(session, claim=active, now=now):
            raise ClaimConflict(claim_code=active.claim_code)
        session.commit()

    pin = generate_pin()
    pin_hash = hash_pin(pin)
    expires_at = now + timedelta(days=settings.claim_ttl_days)

    claim: Claim | None = None
    for attempt in range(1, settings.claim_code_max_attempts + 1):
        candidate = Claim(
            receipt_id=receipt.id,
            owner_id=user.id,
            claim_code=generate_claim_code(),
            pin_hash=pin_hash,
            claim_type=claim_type,
            state=ClaimState.ISSUED,
            original_amount=receipt.total,
            currency=receipt.currency,
            expires_at=expires_at,
        )
        try:
            with session.begin_nested():
                session.add(candidate)
                session.flush()
        except IntegrityError:
            # Either the code collided or a concurrent issue took the receipt.
            winner = get_active_claim(session, receipt_id=receipt.id)
            if winner is not None:
                raise ClaimConflict(claim_code=winner.claim_code) from None
            log_event(logger, "claim.code.collision", receipt_id=str(receipt.id), attempt=attempt)
            continue
        claim = candidate
        break

    if claim is None:
        raise RuntimeError("Could not allocate a unique claim code")

    token = get_token_signer().sign(
        {"sub": str(claim.id), "rid": str(receipt.id)},
        token_type=CLAIM_TOKEN_TYPE,
        expires_at=expires_at,
    )
    record_event(
        session,
        event_type="claim.issued",
        actor_user_id=user.id,
        receipt_id=receipt.id,
        claim_id=claim.id,
        payload={
            "claim_code": claim.claim_code,
            "claim_type": claim_type.value,
            "original_amount": str(claim.original_amount),
            "currency": claim.currency,
            "expires_at": expires_at.isoformat(),
        },
    )
    session.commit()
    session.refresh(claim)
    log_event(
        logger,
        "claim.issued",
        claim_id=str(claim.id),
        receipt_id=str(receipt.id),
        claim_type=claim_type.value,
    )
    return IssuedClaim(
        claim=claim,
        pin=pin,
        token=token,
        qr_image=qr_data_url(claim.claim_code),
        expires_at=expires_at,
    )


def list_claims_for_user(
    session: Session, *, user: User, receipt_id: uuid.UUID | None = None
) -> list[Claim]:
    stmt = select(Claim).where(Claim.owner_id == user.id)
    if receipt_id is not None:
        stmt = stmt.where(Claim.receipt_id == receipt_id)
    return list(session.scalars(stmt.order_by(Claim.created_at.desc())))


def get_claim_by_code(session: Session, *, code: str) -> Claim | None:
    return session.scalar(select(Claim).where(Claim.claim_code == normalize_claim_code(code)))


def get_claim_for_owner(session: Session, *, code: str, user: User) -> Claim:
    claim = get_claim_by_code(session, code=code)
    if not claim:
        raise NotFound("Claim not found")
    if user.role == UserRole.ADMIN or claim.owner_id == user.id:
        return claim
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")


def inspect_claim_token(session: Session, *, token: str) -> tuple[dict[str, Any], Claim]:
    """Check a claim token's signature and report the claim it names.

    The token only proves where the claim came from; its current state is read
    from the database.
    """
    payload = get_token_signer().verify(token, token_type=CLAIM_TOKEN_TYPE)
    try:
        claim_id = uuid.UUID(str(payload.get("sub")))
    except ValueError as e:
        raise InvalidToken() from e
    claim = session.get(Claim, claim_id)
    if not claim or str(claim.receipt_id) != payload.get("rid"):
        raise InvalidToken("Token does not match a known claim")
    return payload, claim
