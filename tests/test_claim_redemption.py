from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest


def _issue(consumer, receipt):
    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.claims.models import ClaimType
    from slipsafe.modules.claims.service import issue_claim

    with SessionLocal() as session:
        issued = issue_claim(
            session, receipt_id=receipt.id, claim_type=ClaimType.RETURN, user=consumer
        )
        return issued.claim.claim_code, issued.pin


def _wrong_pin(pin: str) -> str:
    return "000000" if pin != "000000" else "111111"


def _attempt_results(session, code: str) -> list[str]:
    from slipsafe.modules.verification.service import list_attempts

    return [a.result.value for a in list_attempts(session, code=code)]


def test_partial_refund_walkthrough(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed, InvalidAmount, PinMismatch
    from slipsafe.modules.claims.models import ClaimState
    from slipsafe.modules.verification.service import (
        lookup_claim,
        redeem_claim,
        verify_claim,
    )

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        looked_up = lookup_claim(session, code=code.lower(), staff=staff)
        assert looked_up.valid is True
        assert looked_up.is_expired is False
        assert looked_up.is_used is False

        with pytest.raises(PinMismatch) as exc:
            verify_claim(session, code=code, pin=_wrong_pin(pin), staff=staff)
        assert exc.value.detail["remaining_attempts"] == 4

        claim = verify_claim(session, code=code, pin=pin, staff=staff)
        assert claim.state == ClaimState.VERIFIED
        assert claim.verified_by_user_id == staff.id

        with pytest.raises(InvalidAmount):
            redeem_claim(session, code=code, pin=pin, amount=Decimal("300.00"), staff=staff)

        claim = redeem_claim(
            session,
            code=code,
            pin=pin,
            amount=Decimal("100.00"),
            notes="Returned the hub, kept the cable",
            staff=staff,
        )
        assert claim.state == ClaimState.PARTIAL
        assert claim.redeemed_amount == Decimal("100.00")
        assert claim.redemption_notes == "Returned the hub, kept the cable"

        with pytest.raises(AlreadyUsed):
            redeem_claim(session, code=code, pin=pin, amount=Decimal("100.00"), staff=staff)

        assert _attempt_results(session, code) == [
            "looked_up",
            "pin_mismatch",
            "verified",
            "invalid_amount",
            "partial_approved",
            "already_used",
        ]


def test_full_refund_is_redeemed(consumer, staff, receipt) -> None:
    from sqlalchemy import select

    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.audit.models import AuditEvent
    from slipsafe.modules.claims.models import ClaimState
    from slipsafe.modules.verification.service import redeem_claim, verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        verify_claim(session, code=code, pin=pin, staff=staff)
        claim = redeem_claim(session, code=code, pin=pin, amount=Decimal("245.99"), staff=staff)
        assert claim.state == ClaimState.REDEEMED
        assert claim.redeemed_amount == Decimal("245.99")
        assert claim.redeemed_by_user_id == staff.id
        assert claim.redeemed_at is not None

        event_types = set(
            session.scalars(select(AuditEvent.event_type).where(AuditEvent.claim_id == claim.id))
        )
        assert {"claim.issued", "claim.verified", "claim.approved"} <= event_types


@pytest.mark.parametrize("amount", ["0", "-5", "245.991", "245.995", "0.001", "NaN", "1000"])
def test_out_of_range_amounts_are_rejected(consumer, staff, receipt, amount) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import InvalidAmount
    from slipsafe.modules.claims.models import ClaimState
    from slipsafe.modules.claims.service import get_claim_by_code
    from slipsafe.modules.verification.service import redeem_claim, verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        verify_claim(session, code=code, pin=pin, staff=staff)
        with pytest.raises(InvalidAmount):
            redeem_claim(session, code=code, pin=pin, amount=Decimal(amount), staff=staff)
        assert get_claim_by_code(session, code=code).state == ClaimState.VERIFIED
        assert _attempt_results(session, code)[-1] == "invalid_amount"


def test_expiry_wins_over_a_correct_pin(consumer, staff, receipt) -> None:
    from sqlalchemy import update

    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed, Expired
    from slipsafe.core.models import utcnow
    from slipsafe.modules.claims.models import Claim, ClaimState
    from slipsafe.modules.claims.service import get_claim_by_code
    from slipsafe.modules.verification.service import lookup_claim, verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        session.execute(
            update(Claim)
            .where(Claim.claim_code == code)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        session.commit()

        looked_up = lookup_claim(session, code=code, staff=staff)
        assert looked_up.is_expired is True
        assert looked_up.valid is False
        assert looked_up.claim.state == ClaimState.ISSUED

        with pytest.raises(Expired):
            verify_claim(session, code=code, pin=pin, staff=staff)
        assert get_claim_by_code(session, code=code).state == ClaimState.EXPIRED

        with pytest.raises(AlreadyUsed):
            verify_claim(session, code=code, pin=pin, staff=staff)

        assert _attempt_results(session, code) == ["looked_up", "expired", "already_used"]


def test_verified_claim_can_still_expire(consumer, staff, receipt) -> None:
    from sqlalchemy import update

    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import Expired
    from slipsafe.core.models import utcnow
    from slipsafe.modules.claims.models import Claim
    from slipsafe.modules.verification.service import redeem_claim, verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        verify_claim(session, code=code, pin=pin, staff=staff)
        session.execute(
            update(Claim)
            .where(Claim.claim_code == code)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        session.commit()

        with pytest.raises(Expired):
            redeem_claim(session, code=code, pin=pin, amount=Decimal("10.00"), staff=staff)


def test_redeem_and_refuse_require_verification(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import NotVerified
    from slipsafe.modules.verification.service import redeem_claim, refuse_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        with pytest.raises(NotVerified):
            redeem_claim(session, code=code, pin=pin, amount=Decimal("10.00"), staff=staff)
        with pytest.raises(NotVerified):
            refuse_claim(session, code=code, pin=pin, staff=staff)


def test_verifying_twice_reports_already_used(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed
    from slipsafe.modules.verification.service import verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        verify_claim(session, code=code, pin=pin, staff=staff)
        with pytest.raises(AlreadyUsed):
            verify_claim(session, code=code, pin=pin, staff=staff)


def test_refuse_records_reason(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed
    from slipsafe.modules.claims.models import ClaimState
    from slipsafe.modules.verification.service import redeem_claim, refuse_claim, verify_claim

    code, pin = _issue(consumer, receipt)

    with SessionLocal() as session:
        verify_claim(session, code=code, pin=pin, staff=staff)
        claim = refuse_claim(session, code=code, pin=pin, reason="Item damaged", staff=staff)
        assert claim.state == ClaimState.REFUSED
        assert claim.refusal_reason == "Item damaged"
        assert claim.refused_at is not None

        with pytest.raises(AlreadyUsed):
            redeem_claim(session, code=code, pin=pin, amount=Decimal("1.00"), staff=staff)


def test_every_call_on_a_known_claim_leaves_one_attempt(consumer, staff, receipt) -> None:
    from fastapi import HTTPException

    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import NotFound
    from slipsafe.modules.verification.service import (
        lookup_claim,
        redeem_claim,
        refuse_claim,
        verify_claim,
    )

    code, pin = _issue(consumer, receipt)
    calls = [
        lambda s: lookup_claim(s, code=code, staff=staff),
        lambda s: redeem_claim(s, code=code, pin=pin, amount=Decimal("5"), staff=staff),
        lambda s: verify_claim(s, code=code, pin=_wrong_pin(pin), staff=staff),
        lambda s: verify_claim(s, code=code, pin=pin, staff=staff),
        lambda s: verify_claim(s, code=code, pin=pin, staff=staff),
        lambda s: refuse_claim(s, code=code, pin=_wrong_pin(pin), staff=staff),
        lambda s: redeem_claim(s, code=code, pin=pin, amount=Decimal("5"), staff=staff),
        lambda s: refuse_claim(s, code=code, pin=pin, staff=staff),
    ]

    with SessionLocal() as session:
        for call in calls:
            try:
                call(session)
            except HTTPException:
                pass

        assert len(_attempt_results(session, code)) == len(calls)

        with pytest.raises(NotFound):
            lookup_claim(session, code="ZZZZ9999", staff=staff)
        assert len(_attempt_results(session, code)) == len(calls)
