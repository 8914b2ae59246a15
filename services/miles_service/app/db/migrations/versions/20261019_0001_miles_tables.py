"""membership, wallet, request and ledger tables

Revision ID: miles_0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "miles_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "membership_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("monthly_service_miles", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rollover_cap_miles", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("advance_discount_max", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("allowed_service_types", sa.JSON(), nullable=True),
        sa.Column("cash_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority_level", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_membership_plan_name"),
    )

    op.create_table(
        "membership_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("membership_plans.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=128), nullable=True),
        sa.Column("external_customer_id", sa.String(length=128), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_membership_subscriptions_user_id", "membership_subscriptions", ["user_id"], unique=True
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance_miles", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rollover_bank_miles", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "balance_miles >= 0 OR balance_miles = -1", name="ck_wallet_balance_non_negative"
        ),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    op.create_table(
        "delivery_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("service_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="REQUESTED"),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pickup_address", sa.Text(), nullable=True),
        sa.Column("dropoff_address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cash_handling", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("service_miles_base", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("service_miles_adders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("service_miles_discount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("service_miles_final", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quote_breakdown", sa.JSON(), nullable=True),
        sa.Column("delivery_fee_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("assigned_driver_id", sa.Integer(), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_fee_miles", sa.Integer(), nullable=True),
        sa.Column("refunded_miles", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_delivery_request_user_idem"),
    )
    op.create_index("ix_delivery_requests_user_id", "delivery_requests", ["user_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column(
            "related_request_id", sa.Integer(), sa.ForeignKey("delivery_requests.id"), nullable=True
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
    )
    op.create_index("ix_ledger_entries_wallet_id", "ledger_entries", ["wallet_id"])
    op.create_index("ix_ledger_entries_related_request_id", "ledger_entries", ["related_request_id"])
    op.create_index("ix_ledger_wallet_created", "ledger_entries", ["wallet_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_ledger_wallet_created", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_related_request_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_wallet_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_delivery_requests_user_id", table_name="delivery_requests")
    op.drop_table("delivery_requests")
    op.drop_index("ix_wallets_user_id", table_name="wallets")
    op.drop_table("wallets")
    op.drop_index("ix_membership_subscriptions_user_id", table_name="membership_subscriptions")
    op.drop_table("membership_subscriptions")
    op.drop_table("membership_plans")
