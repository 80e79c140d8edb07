"""teller_sync_tables

Revision ID: a7c1d2e3f4b5
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "a7c1d2e3f4b5"
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── enrollments ─────────────────────────────────────────────────────────
    op.create_table(
        "enrollments",
        sa.Column("label", sa.String(100), primary_key=True),
        sa.Column("encrypted_access_token", sa.Text(), nullable=False),
        sa.Column("error_code", sa.String(255), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_enrollments_updated_at", "enrollments", ["updated_at"])

    # ── institutions / accounts ─────────────────────────────────────────────
    op.create_table(
        "institutions",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=True),
    )
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("institution_id", sa.String(255), sa.ForeignKey("institutions.id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("type", sa.String(50), nullable=True),
        sa.Column("subtype", sa.String(50), nullable=True),
        sa.Column("last_four", sa.String(10), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_accounts_institution_id", "accounts", ["institution_id"])

    # ── transactions ────────────────────────────────────────────────────────
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("account_id", sa.String(255), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("running_balance", sa.Numeric(14, 2), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transactions_account_id", "transactions", ["account_id"])
    op.create_index("ix_transactions_date", "transactions", ["date"])

    # ── sync_cursors ────────────────────────────────────────────────────────
    op.create_table(
        "sync_cursors",
        sa.Column("account_id", sa.String(255), sa.ForeignKey("accounts.id"), primary_key=True),
        sa.Column("last_seen_transaction_id", sa.String(255), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("sync_cursors")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_index("ix_transactions_account_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_institution_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("institutions")
    op.drop_index("ix_enrollments_updated_at", table_name="enrollments")
    op.drop_table("enrollments")
