from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal


def test_only_one_concurrent_redemption_wins(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed
    from slipsafe.modules.claims.models import ClaimState, ClaimType
    from slipsafe.modules.claims.service import get_claim_by_code, issue_claim
    from slipsafe.modules.identity.models import User
    from slipsafe.modules.verification.service import list_attempts, redeem_claim, verify_claim

    with SessionLocal() as session:
        issued = issue_claim(
            session, receipt_id=receipt.id, claim_type=ClaimType.RETURN, user=consumer
        )
        code, pin = issued.claim.claim_code, issued.pin
        verify_claim(session, code=code, pin=pin, staff=staff)

    workers = 4
    barrier = threading.Barrier(workers)

    def redeem(_: int) -> str:
        with SessionLocal() as session:
            desk = session.get(User, staff.id)
            barrier.wait()
            try:
                redeem_claim(session, code=code, pin=pin, amount=Decimal("245.99"), staff=desk)
            except AlreadyUsed:
                return "already_used"
            return "redeemed"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(redeem, range(workers)))

    assert outcomes.count("redeemed") == 1
    assert outcomes.count("already_used") == workers - 1

    with SessionLocal() as session:
        claim = get_claim_by_code(session, code=code)
        assert claim.state == ClaimState.REDEEMED
        assert claim.redeemed_amount == Decimal("245.99")

        results = [a.result.value for a in list_attempts(session, code=code)]
        assert results.count("approved") == 1
        assert results.count("already_used") == workers - 1


def test_concurrent_issue_yields_one_active_claim(consumer, receipt) -> None:
    from sqlalchemy import func, select

    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import ClaimConflict
    from slipsafe.modules.claims.models import Claim, ClaimType
    from slipsafe.modules.claims.service import issue_claim
    from slipsafe.modules.identity.models import User

    workers = 3
    barrier = threading.Barrier(workers)

    def issue(_: int) -> str:
        with SessionLocal() as session:
            owner = session.get(User, consumer.id)
            barrier.wait()
            try:
                issue_claim(
                    session, receipt_id=receipt.id, claim_type=ClaimType.RETURN, user=owner
                )
            except ClaimConflict:
                return "conflict"
            return "issued"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(issue, range(workers)))

    assert outcomes.count("issued") == 1
    with SessionLocal() as session:
        assert session.scalar(select(func.count()).select_from(Claim)) == 1


def test_redeem_racing_refuse_has_one_winner(consumer, staff, receipt) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import AlreadyUsed
    from slipsafe.modules.claims.models import ClaimState, ClaimType
    from slipsafe.modules.claims.service import get_claim_by_code, issue_claim
    from slipsafe.modules.identity.models import User
    from slipsafe.modules.verification.service import (
        list_attempts,
        redeem_claim,
        refuse_claim,
        verify_claim,
    )

    with SessionLocal() as session:
        issued = issue_claim(
            session, receipt_id=receipt.id, claim_type=ClaimType.RETURN, user=consumer
        )
        code, pin = issued.claim.claim_code, issued.pin
        verify_claim(session, code=code, pin=pin, staff=staff)

    workers = 4
    barrier = threading.Barrier(workers)

    def act(i: int) -> str:
        with SessionLocal() as session:
            desk = session.get(User, staff.id)
            barrier.wait()
            try:
                if i % 2:
                    refuse_claim(session, code=code, pin=pin, reason="damaged", staff=desk)
                else:
                    redeem_claim(
                        session, code=code, pin=pin, amount=Decimal("100.00"), staff=desk
                    )
            except AlreadyUsed:
                return "already_used"
            return "won"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(act, range(workers)))

    assert outcomes.count("won") == 1
    assert outcomes.count("already_used") == workers - 1

    with SessionLocal() as session:
        claim = get_claim_by_code(session, code=code)
        assert claim.state in (ClaimState.PARTIAL, ClaimState.REFUSED)

        results = [a.result.value for a in list_attempts(session, code=code)]
        finals = [r for r in results if r in ("approved", "partial_approved", "refused")]
        assert len(finals) == 1
        assert results.count("already_used") == workers - 1
        expected = "refused" if claim.state == ClaimState.REFUSED else "partial_approved"
        assert finals == [expected]
