"""
Merchant-side claim verification and redemption.

Every call against an existing claim appends exactly one ``VerificationAttempt``
and commits it before any error is raised. Mutating calls check, in order:
terminal state, expiry, state precondition, PIN lockout, PIN, amount; the
transition itself is a conditional UPDATE so only one racing caller wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import NoReturn

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from slipsafe.core.config import settings
from slipsafe.core.currencies import fits_minor_unit, quantize_amount
from slipsafe.core.errors import (
    AlreadyUsed,
    ClaimLocked,
    DomainError,
    Expired,
    InvalidAmount,
    NotFound,
    NotVerified,
    PinMismatch,
)
from slipsafe.core.logging import get_logger, log_event
from slipsafe.core.models import utcnow
from slipsafe.core.security import verify_pin
from slipsafe.modules.audit.service import record_event
from slipsafe.modules.claims.models import ACTIVE_STATES, TERMINAL_STATES, Claim, ClaimState
from slipsafe.modules.claims.service import expire_if_due, get_claim_by_code, is_expired
from slipsafe.modules.identity.models import User
from slipsafe.modules.verification.attempts import AttemptCounter, get_attempt_counter
from slipsafe.modules.verification.models import AttemptResult, VerificationAttempt

logger = get_logger(__name__)

_USED_STATES = frozenset({ClaimState.REDEEMED, ClaimState.PARTIAL, ClaimState.REFUSED})


@dataclass(frozen=True)
class LookupResult:
    claim: Claim
    valid: bool
    is_expired: bool
    is_used: bool


def lookup_claim(session: Session, *, code: str, staff: User) -> LookupResult:
    claim = _load_claim(session, code=code)
    expired = claim.state == ClaimState.EXPIRED or (
        claim.state in ACTIVE_STATES and is_expired(claim)
    )
    used = claim.state in _USED_STATES
    _record_attempt(session, claim=claim, staff=staff, result=AttemptResult.LOOKED_UP)
    session.commit()
    session.refresh(claim)
    log_event(
        logger,
        "claim.lookup",
        claim_id=str(claim.id),
        state=claim.state.value,
        is_expired=expired,
        is_used=used,
    )
    return LookupResult(
        claim=claim,
        valid=claim.state in ACTIVE_STATES and not expired,
        is_expired=expired,
        is_used=used,
    )


def verify_claim(
    session: Session,
    *,
    code: str,
    pin: str,
    staff: User,
    counter: AttemptCounter | None = None,
) -> Claim:
    claim = _load_claim(session, code=code)
    now = utcnow()
    _check_preconditions(
        session,
        claim=claim,
        staff=staff,
        operation="verify",
        expected=ClaimState.ISSUED,
        pin=pin,
        counter=counter or get_attempt_counter(),
        now=now,
    )
    _transition(
        session,
        claim=claim,
        staff=staff,
        operation="verify",
        expected=ClaimState.ISSUED,
        values={
            "state": ClaimState.VERIFIED,
            "verified_at": now,
            "verified_by_user_id": staff.id,
        },
    )
    return _succeed(
        session, claim=claim, staff=staff, operation="verify", result=AttemptResult.VERIFIED
    )


def redeem_claim(
    session: Session,
    *,
    code: str,
    pin: str,
    amount: Decimal,
    staff: User,
    notes: str | None = None,
    counter: AttemptCounter | None = None,
) -> Claim:
    claim = _load_claim(session, code=code)
    now = utcnow()
    entered = amount if isinstance(amount, Decimal) and amount.is_finite() else None
    _check_preconditions(
        session,
        claim=claim,
        staff=staff,
        operation="redeem",
        expected=ClaimState.VERIFIED,
        pin=pin,
        counter=counter or get_attempt_counter(),
        now=now,
        refund_amount=entered,
        notes=notes,
    )

    if not _is_valid_refund(amount, claim):
        _fail(
            session,
            claim=claim,
            staff=staff,
            operation="redeem",
            result=AttemptResult.INVALID_AMOUNT,
            error=InvalidAmount(original_amount=str(claim.original_amount)),
            refund_amount=entered,
            notes=notes,
        )

    refund = quantize_amount(amount, claim.currency)
    full = refund == claim.original_amount
    _transition(
        session,
        claim=claim,
        staff=staff,
        operation="redeem",
        expected=ClaimState.VERIFIED,
        values={
            "state": ClaimState.REDEEMED if full else ClaimState.PARTIAL,
            "redeemed_amount": refund,
            "redeemed_at": now,
            "redeemed_by_user_id": staff.id,
            "redemption_notes": notes,
        },
        refund_amount=refund,
        notes=notes,
    )
    return _succeed(
        session,
        claim=claim,
        staff=staff,
        operation="redeem",
        result=AttemptResult.APPROVED if full else AttemptResult.PARTIAL_APPROVED,
        refund_amount=refund,
        notes=notes,
    )


def refuse_claim(
    session: Session,
    *,
    code: str,
    pin: str,
    staff: User,
    reason: str | None = None,
    counter: AttemptCounter | None = None,
) -> Claim:
    claim = _load_claim(session, code=code)
    now = utcnow()
    _check_preconditions(
        session,
        claim=claim,
        staff=staff,
        operation="refuse",
        expected=ClaimState.VERIFIED,
        pin=pin,
        counter=counter or get_attempt_counter(),
        now=now,
        notes=reason,
    )
    _transition(
        session,
        claim=claim,
        staff=staff,
        operation="refuse",
        expected=ClaimState.VERIFIED,
        values={
            "state": ClaimState.REFUSED,
            "refused_at": now,
            "redeemed_by_user_id": staff.id,
            "refusal_reason": reason,
        },
        notes=reason,
    )
    return _succeed(
        session,
        claim=claim,
        staff=staff,
        operation="refuse",
        result=AttemptResult.REFUSED,
        notes=reason,
    )


def list_attempts(session: Session, *, code: str) -> list[VerificationAttempt]:
    claim = _load_claim(session, code=code)
    return list(
        session.scalars(
            select(VerificationAttempt)
            .where(VerificationAttempt.claim_id == claim.id)
            .order_by(VerificationAttempt.created_at.asc())
        )
    )


def _load_claim(session: Session, *, code: str) -> Claim:
    claim = get_claim_by_code(session, code=code)
    if not claim:
        raise NotFound("Claim not found")
    return claim


def _check_preconditions(
    session: Session,
    *,
    claim: Claim,
    staff: User,
    operation: str,
    expected: ClaimState,
    pin: str,
    counter: AttemptCounter,
    now: datetime,
    refund_amount: Decimal | None = None,
    notes: str | None = None,
) -> None:
    def fail(result: AttemptResult, error: DomainError) -> NoReturn:
        _fail(
            session,
            claim=claim,
            staff=staff,
            operation=operation,
            result=result,
            error=error,
            refund_amount=refund_amount,
            notes=notes,
        )

    if claim.state in TERMINAL_STATES:
        fail(AttemptResult.ALREADY_USED, AlreadyUsed(state=claim.state.value))

    if is_expired(claim, now=now):
        if not expire_if_due(session, claim=claim, now=now):
            session.refresh(claim)
            if claim.state in _USED_STATES:
                fail(AttemptResult.ALREADY_USED, AlreadyUsed(state=claim.state.value))
        log_event(logger, "claim.expired", claim_id=str(claim.id))
        fail(AttemptResult.EXPIRED, Expired())

    if claim.state != expected:
        if expected == ClaimState.ISSUED:
            fail(
                AttemptResult.ALREADY_USED,
                AlreadyUsed("Claim has already been verified", state=claim.state.value),
            )
        fail(AttemptResult.NOT_VERIFIED, NotVerified(state=claim.state.value))

    key = claim.claim_code
    if counter.get(key) >= settings.pin_max_attempts:
        fail(AttemptResult.LOCKED, ClaimLocked())

    if not verify_pin(pin, claim.pin_hash):
        failures = counter.increment(key)
        if failures >= settings.pin_max_attempts:
            log_event(logger, "claim.lockout", claim_id=str(claim.id), failures=failures)
        fail(
            AttemptResult.PIN_MISMATCH,
            PinMismatch(remaining_attempts=max(0, settings.pin_max_attempts - failures)),
        )
    counter.reset(key)


def _transition(
    session: Session,
    *,
    claim: Claim,
    staff: User,
    operation: str,
    expected: ClaimState,
    values: dict,
    refund_amount: Decimal | None = None,
    notes: str | None = None,
) -> None:
    result = session.execute(
        update(Claim)
        .where(Claim.id == claim.id, Claim.state == expected)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return
    session.expire(claim)
    log_event(logger, "claim.transition.lost_race", claim_id=str(claim.id), operation=operation)
    _fail(
        session,
        claim=claim,
        staff=staff,
        operation=operation,
        result=AttemptResult.ALREADY_USED,
        error=AlreadyUsed(),
        refund_amount=refund_amount,
        notes=notes,
    )


def _succeed(
    session: Session,
    *,
    claim: Claim,
    staff: User,
    operation: str,
    result: AttemptResult,
    refund_amount: Decimal | None = None,
    notes: str | None = None,
) -> Claim:
    _record_attempt(
        session,
        claim=claim,
        staff=staff,
        result=result,
        refund_amount=refund_amount,
        notes=notes,
    )
    record_event(
        session,
        event_type=f"claim.{result.value}",
        actor_user_id=staff.id,
        receipt_id=claim.receipt_id,
        claim_id=claim.id,
        payload={
            "refund_amount": str(refund_amount) if refund_amount is not None else None,
            "store_name": staff.store_name,
        },
    )
    session.commit()
    session.refresh(claim)
    log_event(
        logger,
        f"claim.{operation}",
        claim_id=str(claim.id),
        outcome=result.value,
        state=claim.state.value,
        store_name=staff.store_name,
    )
    return claim


def _fail(
    session: Session,
    *,
    claim: Claim,
    staff: User,
    operation: str,
    result: AttemptResult,
    error: DomainError,
    refund_amount: Decimal | None = None,
    notes: str | None = None,
) -> NoReturn:
    claim_id = claim.id
    _record_attempt(
        session,
        claim=claim,
        staff=staff,
        result=result,
        refund_amount=refund_amount,
        notes=notes,
    )
    session.commit()
    log_event(
        logger,
        f"claim.{operation}",
        claim_id=str(claim_id),
        outcome=result.value,
        error=error.code,
        store_name=staff.store_name,
    )
    raise error


def _record_attempt(
    session: Session,
    *,
    claim: Claim,
    staff: User,
    result: AttemptResult,
    refund_amount: Decimal | None = None,
    notes: str | None = None,
) -> VerificationAttempt:
    attempt = VerificationAttempt(
        claim_id=claim.id,
        result=result,
        refund_amount=refund_amount,
        notes=notes,
        performed_by_user_id=staff.id,
    )
    session.add(attempt)
    return attempt


def _is_valid_refund(amount: Decimal, claim: Claim) -> bool:
    # Exact check on the entered amount: 245.991 is over 245.99, not a full refund.
    if not isinstance(amount, Decimal) or not fits_minor_unit(amount, claim.currency):
        return False
    return Decimal(0) < amount <= claim.original_amount
