"""Customers, counted-ticket ledger and ticket documents."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("open_ticket_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("open_ticket_count >= 0", name="ck_customers_open_ticket_count"),
    )
    op.create_index("ix_customers_external_id", "customers", ["external_id"], unique=True)

    op.create_table(
        "customer_counted_tickets",
        sa.Column("ticket_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("customer_external_id", sa.String(length=255), nullable=False),
        sa.Column("counted_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_customer_counted_tickets_customer_external_id",
        "customer_counted_tickets",
        ["customer_external_id"],
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False),
        sa.Column("customer_external_id", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("priority", sa.Text(), nullable=False),
        sa.Column("sync_status", sa.Text(), nullable=True),
        sa.Column("document", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ux_tickets_idempotency_key", "tickets", ["idempotency_key"], unique=True)
    op.create_index("ix_tickets_customer_external_id", "tickets", ["customer_external_id"])
    op.create_index("ix_tickets_sync_status", "tickets", ["sync_status"])


def downgrade() -> None:
    op.drop_index("ix_tickets_sync_status", table_name="tickets")
    op.drop_index("ix_tickets_customer_external_id", table_name="tickets")
    op.drop_index("ux_tickets_idempotency_key", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_customer_counted_tickets_customer_external_id", table_name="customer_counted_tickets")
    op.drop_table("customer_counted_tickets")
    op.drop_index("ix_customers_external_id", table_name="customers")
    op.drop_table("customers")
