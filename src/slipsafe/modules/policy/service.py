from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta
from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from slipsafe.core.config import settings
from slipsafe.core.errors import NotFound, RuleConflict
from slipsafe.core.logging import get_logger, log_event
from slipsafe.modules.audit.service import record_event
from slipsafe.modules.identity.models import User, UserRole
from slipsafe.modules.policy.models import MerchantRule
from slipsafe.modules.receipts.models import RefundType

logger = get_logger(__name__)

POLICY_SOURCE_DEFAULT = "default"
POLICY_SOURCE_MERCHANT_RULE = "merchant_rule"


@dataclass(frozen=True)
class PolicyDates:
    return_by: date | None
    warranty_ends: date | None
    source: str


def normalize_merchant_name(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").strip()).lower()


def resolve_policy(
    *,
    purchase_date: date | None,
    refund_type: RefundType,
    rule: MerchantRule | None,
) -> PolicyDates:
    """Compute return/warranty deadlines from a purchase date.

    ``rule`` overrides the configured defaults. A receipt that says it is not
    refundable never gets a return deadline, whatever the rule says. Months are
    calendar months clamped to the end of the month (Jan 31 + 1 month = Feb 28/29).
    """
    source = POLICY_SOURCE_MERCHANT_RULE if rule is not None else POLICY_SOURCE_DEFAULT
    if purchase_date is None:
        return PolicyDates(return_by=None, warranty_ends=None, source=source)

    if rule is not None:
        return_days = rule.return_policy_days
        warranty_months = rule.warranty_months
    else:
        return_days = settings.default_return_days
        warranty_months = settings.default_warranty_months

    return_by = None
    if refund_type != RefundType.NONE:
        return_by = purchase_date + timedelta(days=return_days)
    warranty_ends = purchase_date + relativedelta(months=warranty_months)
    return PolicyDates(return_by=return_by, warranty_ends=warranty_ends, source=source)


def find_rule(session: Session, *, owner_id: uuid.UUID, merchant: str | None) -> MerchantRule | None:
    """The caller's own rule wins over a global one."""
    normalized = normalize_merchant_name(merchant or "")
    if not normalized:
        return None
    rules = list(
        session.scalars(
            select(MerchantRule).where(
                MerchantRule.normalized_merchant_name == normalized,
                or_(MerchantRule.owner_id == owner_id, MerchantRule.owner_id.is_(None)),
            )
        )
    )
    own = [r for r in rules if r.owner_id == owner_id]
    if own:
        return own[0]
    return rules[0] if rules else None


def list_rules(session: Session, *, user: User) -> list[MerchantRule]:
    return list(
        session.scalars(
            select(MerchantRule)
            .where(or_(MerchantRule.owner_id == user.id, MerchantRule.owner_id.is_(None)))
            .order_by(MerchantRule.normalized_merchant_name, MerchantRule.owner_id.is_(None))
        )
    )


def get_rule_for_user(session: Session, *, rule_id: uuid.UUID, user: User) -> MerchantRule:
    rule = session.get(MerchantRule, rule_id)
    if not rule:
        raise NotFound("Merchant rule not found")
    if rule.owner_id == user.id:
        return rule
    if rule.owner_id is None and user.role == UserRole.ADMIN:
        return rule
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")


def create_rule(
    session: Session,
    *,
    user: User,
    merchant_name: str,
    return_policy_days: int,
    warranty_months: int,
    is_global: bool = False,
) -> MerchantRule:
    if is_global and user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    owner_id = None if is_global else user.id
    normalized = normalize_merchant_name(merchant_name)
    _ensure_name_free(session, owner_id=owner_id, normalized=normalized)

    rule = MerchantRule(
        owner_id=owner_id,
        merchant_name=merchant_name.strip(),
        normalized_merchant_name=normalized,
        return_policy_days=return_policy_days,
        warranty_months=warranty_months,
    )
    session.add(rule)
    session.flush()
    record_event(
        session,
        event_type="merchant_rule.created",
        actor_user_id=user.id,
        payload={
            "rule_id": str(rule.id),
            "merchant": normalized,
            "global": is_global,
            "return_policy_days": return_policy_days,
            "warranty_months": warranty_months,
        },
    )
    session.commit()
    session.refresh(rule)
    log_event(logger, "merchant_rule.created", rule_id=str(rule.id), merchant=normalized)
    return rule


def update_rule(session: Session, *, rule: MerchantRule, user: User, **changes) -> MerchantRule:
    name = changes.get("merchant_name")
    if name is not None:
        normalized = normalize_merchant_name(name)
        if normalized != rule.normalized_merchant_name:
            _ensure_name_free(session, owner_id=rule.owner_id, normalized=normalized)
        rule.merchant_name = name.strip()
        rule.normalized_merchant_name = normalized
    if changes.get("return_policy_days") is not None:
        rule.return_policy_days = changes["return_policy_days"]
    if changes.get("warranty_months") is not None:
        rule.warranty_months = changes["warranty_months"]

    session.add(rule)
    record_event(
        session,
        event_type="merchant_rule.updated",
        actor_user_id=user.id,
        payload={"rule_id": str(rule.id), **{k: v for k, v in changes.items() if v is not None}},
    )
    session.commit()
    session.refresh(rule)
    return rule


def delete_rule(session: Session, *, rule: MerchantRule, user: User) -> None:
    record_event(
        session,
        event_type="merchant_rule.deleted",
        actor_user_id=user.id,
        payload={"rule_id": str(rule.id), "merchant": rule.normalized_merchant_name},
    )
    session.delete(rule)
    session.commit()


def _ensure_name_free(session: Session, *, owner_id: uuid.UUID | None, normalized: str) -> None:
    # NULL owner_id never collides in a SQL unique constraint; check globals here.
    owner_clause = (
        MerchantRule.owner_id.is_(None) if owner_id is None else MerchantRule.owner_id == owner_id
    )
    existing = session.scalar(
        select(MerchantRule.id).where(
            owner_clause, MerchantRule.normalized_merchant_name == normalized
        )
    )
    if existing:
        raise RuleConflict()
