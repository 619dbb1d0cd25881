from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from slipsafe.core.models import Base, UUIDPrimaryKey, utcnow


class AttemptResult(str, enum.Enum):
    LOOKED_UP = "looked_up"
    VERIFIED = "verified"
    APPROVED = "approved"
    PARTIAL_APPROVED = "partial_approved"
    REFUSED = "refused"
    PIN_MISMATCH = "pin_mismatch"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    NOT_VERIFIED = "not_verified"
    INVALID_AMOUNT = "invalid_amount"
    LOCKED = "locked"


class VerificationAttempt(UUIDPrimaryKey, Base):
    """One row per staff call against a claim. Never updated or deleted."""

    __tablename__ = "verification_attempt"

    claim_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("claims_claim.id"), index=True
    )
    result: Mapped[AttemptResult] = mapped_column(
        Enum(AttemptResult, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        index=True,
    )
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 3), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    performed_by = relationship("User")
