from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from slipsafe.core.models import Base, Timestamped, UUIDPrimaryKey


class ClaimType(str, enum.Enum):
    RETURN = "return"
    WARRANTY = "warranty"
    EXCHANGE = "exchange"


class ClaimState(str, enum.Enum):
    ISSUED = "issued"
    VERIFIED = "verified"
    REDEEMED = "redeemed"
    PARTIAL = "partial"
    REFUSED = "refused"
    EXPIRED = "expired"


ACTIVE_STATES = frozenset({ClaimState.ISSUED, ClaimState.VERIFIED})
TERMINAL_STATES = frozenset(
    {ClaimState.REDEEMED, ClaimState.PARTIAL, ClaimState.REFUSED, ClaimState.EXPIRED}
)

# Stored as the enum value ("issued"), which the partial index below relies on.
_ENUM_VALUES = {"native_enum": False, "values_callable": lambda e: [m.value for m in e]}
_ACTIVE_WHERE = text("state IN ('issued', 'verified')")


class Claim(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "claims_claim"
    __table_args__ = (
        # One live claim per receipt; terminal claims do not count.
        Index(
            "uq_claims_claim_active_receipt",
            "receipt_id",
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
    )

    receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("receipts_receipt.id"), index=True
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )

    claim_code: Mapped[str] = mapped_column(String(8), unique=True, index=True)
    pin_hash: Mapped[str] = mapped_column(String(200))
    claim_type: Mapped[ClaimType] = mapped_column(Enum(ClaimType, **_ENUM_VALUES))
    state: Mapped[ClaimState] = mapped_column(
        Enum(ClaimState, **_ENUM_VALUES), default=ClaimState.ISSUED, index=True
    )

    original_amount: Mapped[Decimal] = mapped_column(Numeric(18, 3))
    redeemed_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 3), nullable=True)
    currency: Mapped[str] = mapped_column(String(3))

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    verified_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True
    )
    redeemed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True
    )
    redemption_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    refusal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    receipt = relationship("Receipt")
