"""initial slipsafe schema

Revision ID: 3b7e1c9a4d20
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column(
            "role",
            sa.Enum(
                "CONSUMER", "MERCHANT_STAFF", "ADMIN", name="userrole", native_enum=False
            ),
            nullable=False,
        ),
        sa.Column("store_name", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_identity_user_email"), "identity_user", ["email"], unique=True)
    op.create_index(op.f("ix_identity_user_role"), "identity_user", ["role"])

    op.create_table(
        "receipts_receipt",
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("merchant", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total", sa.Numeric(18, 3), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "ELECTRONICS",
                "CLOTHING",
                "HOME",
                "AUTO",
                "OTHER",
                name="receiptcategory",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("return_by", sa.Date(), nullable=True),
        sa.Column("warranty_ends", sa.Date(), nullable=True),
        sa.Column(
            "refund_type",
            sa.Enum(
                "NOT_SPECIFIED",
                "FULL",
                "STORE_CREDIT",
                "EXCHANGE_ONLY",
                "PARTIAL",
                "NONE",
                name="refundtype",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("policy_source", sa.String(length=20), nullable=False),
        sa.Column("return_policy_days", sa.Integer(), nullable=True),
        sa.Column("return_policy_terms", sa.String(length=500), nullable=True),
        sa.Column("exchange_policy_days", sa.Integer(), nullable=True),
        sa.Column("exchange_policy_terms", sa.String(length=500), nullable=True),
        sa.Column(
            "confidence",
            sa.Enum("HIGH", "MEDIUM", "LOW", name="confidence", native_enum=False),
            nullable=False,
        ),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("image_key", sa.String(length=500), nullable=True),
        sa.Column("raw_text", sa.Text(), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["owner_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id", "content_hash", name="uq_receipts_receipt_owner_hash"),
    )
    op.create_index(op.f("ix_receipts_receipt_owner_id"), "receipts_receipt", ["owner_id"])
    op.create_index(op.f("ix_receipts_receipt_category"), "receipts_receipt", ["category"])

    op.create_table(
        "policy_merchant_rule",
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("merchant_name", sa.String(length=200), nullable=False),
        sa.Column("normalized_merchant_name", sa.String(length=200), nullable=False),
        sa.Column("return_policy_days", sa.Integer(), nullable=False),
        sa.Column("warranty_months", sa.Integer(), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["owner_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "owner_id", "normalized_merchant_name", name="uq_policy_merchant_rule_owner_name"
        ),
    )
    op.create_index(
        op.f("ix_policy_merchant_rule_owner_id"), "policy_merchant_rule", ["owner_id"]
    )
    op.create_index(
        op.f("ix_policy_merchant_rule_normalized_merchant_name"),
        "policy_merchant_rule",
        ["normalized_merchant_name"],
    )

    op.create_table(
        "claims_claim",
        sa.Column("receipt_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("claim_code", sa.String(length=8), nullable=False),
        sa.Column("pin_hash", sa.String(length=200), nullable=False),
        sa.Column(
            "claim_type",
            sa.Enum("return", "warranty", "exchange", name="claimtype", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "state",
            sa.Enum(
                "issued",
                "verified",
                "redeemed",
                "partial",
                "refused",
                "expired",
                name="claimstate",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("original_amount", sa.Numeric(18, 3), nullable=False),
        sa.Column("redeemed_amount", sa.Numeric(18, 3), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by_user_id", sa.Uuid(), nullable=True),
        sa.Column("redeemed_by_user_id", sa.Uuid(), nullable=True),
        sa.Column("redemption_notes", sa.Text(), nullable=True),
        sa.Column("refusal_reason", sa.Text(), nullable=True),
        sa.Column("id", sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["receipt_id"], ["receipts_receipt.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["identity_user.id"]),
        sa.ForeignKeyConstraint(["verified_by_user_id"], ["identity_user.id"]),
        sa.ForeignKeyConstraint(["redeemed_by_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_claims_claim_receipt_id"), "claims_claim", ["receipt_id"])
    op.create_index(op.f("ix_claims_claim_owner_id"), "claims_claim", ["owner_id"])
    op.create_index(op.f("ix_claims_claim_claim_code"), "claims_claim", ["claim_code"], unique=True)
    op.create_index(op.f("ix_claims_claim_state"), "claims_claim", ["state"])
    active_where = sa.text("state IN ('issued', 'verified')")
    op.create_index(
        "uq_claims_claim_active_receipt",
        "claims_claim",
        ["receipt_id"],
        unique=True,
        sqlite_where=active_where,
        postgresql_where=active_where,
    )

    op.create_table(
        "verification_attempt",
        sa.Column("claim_id", sa.Uuid(), nullable=False),
        sa.Column(
            "result",
            sa.Enum(
                "looked_up",
                "verified",
                "approved",
                "partial_approved",
                "refused",
                "pin_mismatch",
                "expired",
                "already_used",
                "not_verified",
                "invalid_amount",
                "locked",
                name="attemptresult",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("refund_amount", sa.Numeric(18, 3), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("performed_by_user_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["claim_id"], ["claims_claim.id"]),
        sa.ForeignKeyConstraint(["performed_by_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_verification_attempt_claim_id"), "verification_attempt", ["claim_id"]
    )
    op.create_index(op.f("ix_verification_attempt_result"), "verification_attempt", ["result"])
    op.create_index(
        op.f("ix_verification_attempt_performed_by_user_id"),
        "verification_attempt",
        ["performed_by_user_id"],
    )

    op.create_table(
        "audit_event",
        sa.Column("receipt_id", sa.Uuid(), nullable=True),
        sa.Column("claim_id", sa.Uuid(), nullable=True),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["claim_id"], ["claims_claim.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["identity_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_event_receipt_id"), "audit_event", ["receipt_id"])
    op.create_index(op.f("ix_audit_event_claim_id"), "audit_event", ["claim_id"])
    op.create_index(op.f("ix_audit_event_actor_user_id"), "audit_event", ["actor_user_id"])
    op.create_index(op.f("ix_audit_event_event_type"), "audit_event", ["event_type"])


def downgrade() -> None:
    op.drop_table("audit_event")
    op.drop_table("verification_attempt")
    op.drop_index("uq_claims_claim_active_receipt", table_name="claims_claim")
    op.drop_table("claims_claim")
    op.drop_table("policy_merchant_rule")
    op.drop_table("receipts_receipt")
    op.drop_table("identity_user")
