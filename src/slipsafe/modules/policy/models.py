from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from slipsafe.core.models import Base, Timestamped, UUIDPrimaryKey


class MerchantRule(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "policy_merchant_rule"
    __table_args__ = (
        UniqueConstraint(
            "owner_id", "normalized_merchant_name", name="uq_policy_merchant_rule_owner_name"
        ),
    )

    # NULL owner = global rule, visible to every account.
    owner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True, index=True
    )
    merchant_name: Mapped[str] = mapped_column(String(200))
    normalized_merchant_name: Mapped[str] = mapped_column(String(200), index=True)
    return_policy_days: Mapped[int] = mapped_column(Integer)
    warranty_months: Mapped[int] = mapped_column(Integer)
