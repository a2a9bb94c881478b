"""voucher checkout tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "pending_checkouts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("coupon_code", sa.String(length=40), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="eur"),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("personalization", sa.JSON(), nullable=True),
        sa.Column("is_mock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_status", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_pending_checkouts_checkout_session_id", "pending_checkouts", ["checkout_session_id"], unique=True
    )

    op.create_table(
        "generated_vouchers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=False),
        sa.Column("security_sequence", sa.Integer(), nullable=False),
        sa.Column("security_code", sa.String(length=40), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=False),
        sa.Column("recipient_name", sa.String(length=255), nullable=True),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("sender_email", sa.String(length=255), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="eur"),
        sa.Column("voucher_type", sa.String(length=80), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("photo_url", sa.String(length=1000), nullable=True),
        sa.Column("design", sa.String(length=80), nullable=True),
        sa.Column("delivery_method", sa.Enum("email", "post", name="deliverymethod"), nullable=False),
        sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Enum("issued", "fulfilled", name="voucherstatus"), nullable=False),
        sa.Column("emailed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pdf_path", sa.String(length=500), nullable=True),
        sa.Column("preview_path", sa.String(length=500), nullable=True),
        sa.Column("pdf_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("security_sequence", name="uq_generated_vouchers_security_sequence"),
    )
    op.create_index(
        "ix_generated_vouchers_checkout_session_id", "generated_vouchers", ["checkout_session_id"], unique=True
    )
    op.create_index("ix_generated_vouchers_security_code", "generated_vouchers", ["security_code"], unique=True)
    op.create_index("ix_generated_vouchers_status", "generated_vouchers", ["status"])

    sequences = op.create_table(
        "voucher_code_sequences",
        sa.Column("name", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )
    op.bulk_insert(sequences, [{"name": "security_code", "last_value": 0}])

    op.create_table(
        "coupon_usages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_coupon_usages_code", "coupon_usages", ["code"], unique=True)

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("checkout_session_id", name="uq_coupon_redemptions_checkout_session_id"),
    )
    op.create_index("ix_coupon_redemptions_code", "coupon_redemptions", ["code"])
    op.create_index("ix_coupon_redemptions_customer_email", "coupon_redemptions", ["customer_email"])


def downgrade() -> None:
    op.drop_index("ix_coupon_redemptions_customer_email", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_code", table_name="coupon_redemptions")
    op.drop_table("coupon_redemptions")
    op.drop_index("ix_coupon_usages_code", table_name="coupon_usages")
    op.drop_table("coupon_usages")
    op.drop_table("voucher_code_sequences")
    op.drop_index("ix_generated_vouchers_status", table_name="generated_vouchers")
    op.drop_index("ix_generated_vouchers_security_code", table_name="generated_vouchers")
    op.drop_index("ix_generated_vouchers_checkout_session_id", table_name="generated_vouchers")
    op.drop_table("generated_vouchers")
    sa.Enum(name="voucherstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="deliverymethod").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_pending_checkouts_checkout_session_id", table_name="pending_checkouts")
    op.drop_table("pending_checkouts")
