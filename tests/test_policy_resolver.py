from __future__ import annotations

from datetime import date

import pytest
from fastapi import HTTPException


def test_defaults_apply_without_rule() -> None:
    from slipsafe.modules.policy.service import resolve_policy
    from slipsafe.modules.receipts.models import RefundType

    dates = resolve_policy(
        purchase_date=date(2026, 3, 14), refund_type=RefundType.NOT_SPECIFIED, rule=None
    )
    assert dates.return_by == date(2026, 4, 13)
    assert dates.warranty_ends == date(2027, 3, 14)
    assert dates.source == "default"


def test_warranty_months_clamp_to_month_end() -> None:
    from slipsafe.modules.policy.models import MerchantRule
    from slipsafe.modules.policy.service import resolve_policy
    from slipsafe.modules.receipts.models import RefundType

    rule = MerchantRule(
        merchant_name="Best Buy",
        normalized_merchant_name="best buy",
        return_policy_days=15,
        warranty_months=1,
    )
    dates = resolve_policy(purchase_date=date(2025, 1, 31), refund_type=RefundType.FULL, rule=rule)
    assert dates.return_by == date(2025, 2, 15)
    assert dates.warranty_ends == date(2025, 2, 28)
    assert dates.source == "merchant_rule"

    leap = resolve_policy(purchase_date=date(2024, 1, 31), refund_type=RefundType.FULL, rule=rule)
    assert leap.warranty_ends == date(2024, 2, 29)


def test_non_refundable_receipt_has_no_return_deadline() -> None:
    from slipsafe.modules.policy.service import resolve_policy
    from slipsafe.modules.receipts.models import RefundType

    dates = resolve_policy(purchase_date=date(2026, 3, 14), refund_type=RefundType.NONE, rule=None)
    assert dates.return_by is None
    assert dates.warranty_ends == date(2027, 3, 14)


def test_unknown_purchase_date_yields_no_deadlines() -> None:
    from slipsafe.modules.policy.service import resolve_policy
    from slipsafe.modules.receipts.models import RefundType

    dates = resolve_policy(purchase_date=None, refund_type=RefundType.FULL, rule=None)
    assert dates.return_by is None
    assert dates.warranty_ends is None


def test_own_rule_wins_over_global_rule(consumer) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.identity.models import UserRole
    from slipsafe.modules.identity.service import create_user
    from slipsafe.modules.policy.service import create_rule, find_rule

    with SessionLocal() as session:
        admin = create_user(
            session, email="admin@example.com", password="pw", role=UserRole.ADMIN
        )
        create_rule(
            session,
            user=admin,
            merchant_name="Best Buy",
            return_policy_days=15,
            warranty_months=12,
            is_global=True,
        )

        rule = find_rule(session, owner_id=consumer.id, merchant="  BEST   buy ")
        assert rule is not None
        assert rule.owner_id is None
        assert rule.return_policy_days == 15

        create_rule(
            session,
            user=consumer,
            merchant_name="best buy",
            return_policy_days=45,
            warranty_months=24,
        )
        rule = find_rule(session, owner_id=consumer.id, merchant="Best Buy")
        assert rule.owner_id == consumer.id
        assert rule.return_policy_days == 45

        assert find_rule(session, owner_id=consumer.id, merchant=None) is None


def test_rule_names_are_unique_per_owner(consumer) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.core.errors import RuleConflict
    from slipsafe.modules.policy.service import create_rule

    with SessionLocal() as session:
        create_rule(
            session, user=consumer, merchant_name="IKEA", return_policy_days=365, warranty_months=0
        )
        with pytest.raises(RuleConflict) as exc:
            create_rule(
                session,
                user=consumer,
                merchant_name=" ikea ",
                return_policy_days=30,
                warranty_months=0,
            )
        assert exc.value.status_code == 409
        assert exc.value.detail["error"] == "rule_conflict"


def test_only_admins_create_global_rules(consumer) -> None:
    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.policy.service import create_rule

    with SessionLocal() as session:
        with pytest.raises(HTTPException) as exc:
            create_rule(
                session,
                user=consumer,
                merchant_name="IKEA",
                return_policy_days=365,
                warranty_months=0,
                is_global=True,
            )
        assert exc.value.status_code == 403


def test_confirm_uses_merchant_rule(consumer) -> None:
    from decimal import Decimal

    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.policy.service import create_rule
    from slipsafe.modules.receipts.service import confirm_receipt

    with SessionLocal() as session:
        create_rule(
            session,
            user=consumer,
            merchant_name="Best Buy",
            return_policy_days=15,
            warranty_months=24,
        )
        receipt, _ = confirm_receipt(
            session,
            user=consumer,
            merchant="Best Buy",
            purchase_date=date(2026, 3, 14),
            total=Decimal("245.99"),
        )
        assert receipt.return_by == date(2026, 3, 29)
        assert receipt.warranty_ends == date(2028, 3, 14)
        assert receipt.policy_source == "merchant_rule"


def test_rule_api_update_and_delete(consumer) -> None:
    from fastapi.testclient import TestClient

    from slipsafe.core.security import create_access_token
    from slipsafe.main import app

    client = TestClient(app)
    headers = {"Authorization": f"Bearer {create_access_token(subject=str(consumer.id))}"}

    created = client.post(
        "/api/merchant-rules",
        json={"merchant_name": "Zara", "return_policy_days": 30, "warranty_months": 0},
        headers=headers,
    )
    assert created.status_code == 201
    rule_id = created.json()["id"]

    updated = client.patch(
        f"/api/merchant-rules/{rule_id}", json={"return_policy_days": 60}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["return_policy_days"] == 60

    listed = client.get("/api/merchant-rules", headers=headers)
    assert [r["normalized_merchant_name"] for r in listed.json()] == ["zara"]

    assert client.delete(f"/api/merchant-rules/{rule_id}", headers=headers).status_code == 204
    assert client.get("/api/merchant-rules", headers=headers).json() == []
