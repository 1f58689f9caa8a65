"""Create the SMS delivery ledger with its per-slot unique constraint."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sms_deliveries",
        sa.Column("delivery_id", sa.String(length=64), nullable=False),
        sa.Column("source_ref", sa.String(length=64), nullable=True),
        sa.Column("channel_address", sa.String(length=32), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("template_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("logical_slot", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_ref", sa.String(length=128), nullable=True),
        sa.Column("failure_detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("delivery_id"),
        sa.UniqueConstraint("channel_address", "template_id", "logical_slot", name="uq_sms_deliveries_slot"),
    )
    op.create_index("ix_sms_deliveries_status", "sms_deliveries", ["status"], unique=False)
    op.create_index("ix_sms_deliveries_created_at", "sms_deliveries", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sms_deliveries_created_at", table_name="sms_deliveries")
    op.drop_index("ix_sms_deliveries_status", table_name="sms_deliveries")
    op.drop_table("sms_deliveries")
