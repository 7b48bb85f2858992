"""add unified credits, reservations, and webhook event tables

Revision ID: 20261014_000002
Revises: 20261012_000001
Create Date: 2026-10-14 00:00:02.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261014_000002"
down_revision: Union[str, None] = "20261012_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "unified_users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("asm_agent_id", sa.String(), nullable=True),
        sa.Column("storywork_user_id", sa.String(), nullable=True),
        sa.Column("storywork_clerk_id", sa.String(), nullable=True),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("reserved_credits >= 0", name="ck_unified_users_reserved_nonnegative"),
        sa.CheckConstraint("credit_balance >= reserved_credits", name="ck_unified_users_reserved_covered"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_unified_users_email", "unified_users", ["email"], unique=True)
    op.create_index("ix_unified_users_asm_agent_id", "unified_users", ["asm_agent_id"], unique=False)
    op.create_index("ix_unified_users_storywork_user_id", "unified_users", ["storywork_user_id"], unique=False)
    op.create_index("ix_unified_users_storywork_clerk_id", "unified_users", ["storywork_clerk_id"], unique=False)

    op.create_table(
        "unified_credit_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("unified_user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("source_platform", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["unified_user_id"], ["unified_users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_unified_credit_transactions_unified_user_id", "unified_credit_transactions", ["unified_user_id"], unique=False)
    op.create_index("ix_unified_credit_transactions_created_at", "unified_credit_transactions", ["created_at"], unique=False)

    op.create_table(
        "credit_reservations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("unified_user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="reserved"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["unified_user_id"], ["unified_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_reservations_unified_user_id", "credit_reservations", ["unified_user_id"], unique=False)
    op.create_index("ix_credit_reservations_status", "credit_reservations", ["status"], unique=False)

    op.create_table(
        "stripe_webhook_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("stripe_webhook_events")
    op.drop_index("ix_credit_reservations_status", table_name="credit_reservations")
    op.drop_index("ix_credit_reservations_unified_user_id", table_name="credit_reservations")
    op.drop_table("credit_reservations")
    op.drop_index("ix_unified_credit_transactions_created_at", table_name="unified_credit_transactions")
    op.drop_index("ix_unified_credit_transactions_unified_user_id", table_name="unified_credit_transactions")
    op.drop_table("unified_credit_transactions")
    op.drop_index("ix_unified_users_storywork_clerk_id", table_name="unified_users")
    op.drop_index("ix_unified_users_storywork_user_id", table_name="unified_users")
    op.drop_index("ix_unified_users_asm_agent_id", table_name="unified_users")
    op.drop_index("ix_unified_users_email", table_name="unified_users")
    op.drop_table("unified_users")
