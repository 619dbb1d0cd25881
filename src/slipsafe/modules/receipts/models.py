from __future__ import annotations

import datetime as dt
import enum
import uuid
from decimal import Decimal

from sqlalchemy import (
    Date,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from slipsafe.core.models import Base, Timestamped, UUIDPrimaryKey


class ReceiptCategory(str, enum.Enum):
    ELECTRONICS = "Electronics"
    CLOTHING = "Clothing"
    HOME = "Home"
    AUTO = "Auto"
    OTHER = "Other"


class RefundType(str, enum.Enum):
    NOT_SPECIFIED = "not_specified"
    FULL = "full"
    STORE_CREDIT = "store_credit"
    EXCHANGE_ONLY = "exchange_only"
    PARTIAL = "partial"
    NONE = "none"


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_receipt"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_hash", name="uq_receipts_receipt_owner_hash"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )

    merchant: Mapped[str] = mapped_column(String(200))
    date: Mapped[dt.date] = mapped_column(Date)
    total: Mapped[Decimal] = mapped_column(Numeric(18, 3))
    currency: Mapped[str] = mapped_column(String(3))
    category: Mapped[ReceiptCategory] = mapped_column(
        Enum(ReceiptCategory, native_enum=False), default=ReceiptCategory.OTHER, index=True
    )

    return_by: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    warranty_ends: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    refund_type: Mapped[RefundType] = mapped_column(
        Enum(RefundType, native_enum=False), default=RefundType.NOT_SPECIFIED
    )
    policy_source: Mapped[str] = mapped_column(String(20), default="default")
    # Terms printed on the slip; informational, deadlines come from rules.
    return_policy_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    return_policy_terms: Mapped[str | None] = mapped_column(String(500), nullable=True)
    exchange_policy_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exchange_policy_terms: Mapped[str | None] = mapped_column(String(500), nullable=True)
    confidence: Mapped[Confidence] = mapped_column(Enum(Confidence, native_enum=False))

    content_hash: Mapped[str] = mapped_column(String(64))
    image_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    raw_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    owner = relationship("User")

    @property
    def has_image(self) -> bool:
        return self.image_key is not None
