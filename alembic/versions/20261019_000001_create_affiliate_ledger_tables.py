"""Create affiliate ledger tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00

Creates the tables the payout flow reads and writes:
- affiliate (payout channel state and running balances)
- affiliate_order (paid orders with affiliate attribution)
- affiliate_commission (commission snapshot and transfer sub-state)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


onboarding_status = sa.Enum(
    "not_started", "pending", "completed",
    name="onboardingstatus",
)
commission_status = sa.Enum(
    "pending", "approved", "paid", "cancelled",
    name="commissionstatus",
)
transfer_status = sa.Enum(
    "processing", "blocked_fraud", "blocked_onboarding", "failed_retryable", "failed_terminal",
    "below_minimum",
    name="transferstatus",
)


def upgrade() -> None:
    op.create_table(
        "affiliate",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("payout_account_id", sa.String(), nullable=True),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("onboarding_status", onboarding_status, nullable=False, server_default="not_started"),
        sa.Column("onboarded_at", sa.DateTime(), nullable=True),
        sa.Column("pending_commission", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_commission", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_paid_out", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_payout_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_affiliate"),
        sa.UniqueConstraint("code", name="uq_affiliate_code"),
    )

    op.create_table(
        "affiliate_order",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="BRL"),
        sa.Column("affiliate_id", sa.String(), nullable=True),
        sa.Column("payment_intent_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_affiliate_order"),
        sa.ForeignKeyConstraint(
            ["affiliate_id"], ["affiliate.id"], name="fk_affiliate_order_affiliate_id_affiliate"
        ),
    )
    op.create_index("ix_affiliate_order_affiliate_id", "affiliate_order", ["affiliate_id"])

    op.create_table(
        "affiliate_commission",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("affiliate_id", sa.String(), nullable=False),
        sa.Column("order_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="BRL"),
        sa.Column("status", commission_status, nullable=False, server_default="pending"),
        sa.Column("transfer_id", sa.String(), nullable=True),
        sa.Column("external_transfer_id", sa.String(), nullable=True),
        sa.Column("transfer_status", transfer_status, nullable=True),
        sa.Column("transfer_error", sa.Text(), nullable=True),
        sa.Column("transfer_attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_transfer_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_affiliate_commission"),
        sa.UniqueConstraint("transfer_id", name="uq_affiliate_commission_transfer_id"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["affiliate_order.id"], name="fk_affiliate_commission_order_id_affiliate_order"
        ),
        sa.ForeignKeyConstraint(
            ["affiliate_id"], ["affiliate.id"], name="fk_affiliate_commission_affiliate_id_affiliate"
        ),
    )
    op.create_index("ix_affiliate_commission_order_id", "affiliate_commission", ["order_id"])
    op.create_index("ix_affiliate_commission_affiliate_id", "affiliate_commission", ["affiliate_id"])
    # Retry sweep scans approved, unpaid commissions oldest first
    op.create_index(
        "ix_affiliate_commission_status_created_at",
        "affiliate_commission",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_affiliate_commission_status_created_at", table_name="affiliate_commission")
    op.drop_index("ix_affiliate_commission_affiliate_id", table_name="affiliate_commission")
    op.drop_index("ix_affiliate_commission_order_id", table_name="affiliate_commission")
    op.drop_table("affiliate_commission")
    op.drop_index("ix_affiliate_order_affiliate_id", table_name="affiliate_order")
    op.drop_table("affiliate_order")
    op.drop_table("affiliate")

    bind = op.get_bind()
    transfer_status.drop(bind, checkfirst=True)
    commission_status.drop(bind, checkfirst=True)
    onboarding_status.drop(bind, checkfirst=True)
