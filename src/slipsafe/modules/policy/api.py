from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from slipsafe.api.deps import get_current_user
from slipsafe.core.db import db_session
from slipsafe.modules.identity.models import User
from slipsafe.modules.policy.schemas import MerchantRuleCreate, MerchantRuleOut, MerchantRuleUpdate
from slipsafe.modules.policy.service import (
    create_rule,
    delete_rule,
    get_rule_for_user,
    list_rules,
    update_rule,
)

router = APIRouter(tags=["policy"])


@router.get("/merchant-rules", response_model=list[MerchantRuleOut])
def list_rules_endpoint(
    session: Session = Depends(db_session), user: User = Depends(get_current_user)
) -> list[MerchantRuleOut]:
    rules = list_rules(session, user=user)
    return [MerchantRuleOut.model_validate(r, from_attributes=True) for r in rules]


@router.post(
    "/merchant-rules", response_model=MerchantRuleOut, status_code=status.HTTP_201_CREATED
)
def create_rule_endpoint(
    payload: MerchantRuleCreate,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> MerchantRuleOut:
    rule = create_rule(
        session,
        user=user,
        merchant_name=payload.merchant_name,
        return_policy_days=payload.return_policy_days,
        warranty_months=payload.warranty_months,
        is_global=payload.is_global,
    )
    return MerchantRuleOut.model_validate(rule, from_attributes=True)


@router.patch("/merchant-rules/{rule_id}", response_model=MerchantRuleOut)
def update_rule_endpoint(
    rule_id: uuid.UUID,
    payload: MerchantRuleUpdate,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> MerchantRuleOut:
    rule = get_rule_for_user(session, rule_id=rule_id, user=user)
    rule = update_rule(session, rule=rule, user=user, **payload.model_dump(exclude_unset=True))
    return MerchantRuleOut.model_validate(rule, from_attributes=True)


@router.delete("/merchant-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule_endpoint(
    rule_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> None:
    rule = get_rule_for_user(session, rule_id=rule_id, user=user)
    delete_rule(session, rule=rule, user=user)
