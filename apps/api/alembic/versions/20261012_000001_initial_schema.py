"""create initial storywork schema

Revision ID: 20261012_000001
Revises:
Create Date: 2026-10-12 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261012_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "storywork_users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("asm_agent_id", sa.String(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=True),
        sa.Column("subscription_tier", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credit_balance >= 0", name="ck_storywork_users_credit_balance_nonnegative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_storywork_users_external_id", "storywork_users", ["external_id"], unique=True)
    op.create_index("ix_storywork_users_email", "storywork_users", ["email"], unique=False)
    op.create_index("ix_storywork_users_asm_agent_id", "storywork_users", ["asm_agent_id"], unique=False)
    op.create_index("ix_storywork_users_stripe_customer_id", "storywork_users", ["stripe_customer_id"], unique=False)

    op.create_table(
        "storywork_credit_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["storywork_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_storywork_credit_transactions_user_id", "storywork_credit_transactions", ["user_id"], unique=False)
    op.create_index("ix_storywork_credit_transactions_created_at", "storywork_credit_transactions", ["created_at"], unique=False)

    op.create_table(
        "agents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_email", "agents", ["email"], unique=True)

    op.create_table(
        "storywork_stories",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("story_type", sa.String(), nullable=False),
        sa.Column("raw_input", sa.Text(), nullable=True),
        sa.Column("answers", sa.JSON(), nullable=True),
        sa.Column("generated_content", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["storywork_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_storywork_stories_user_id", "storywork_stories", ["user_id"], unique=False)
    op.create_index("ix_storywork_stories_status", "storywork_stories", ["status"], unique=False)
    op.create_index("ix_storywork_stories_created_at", "storywork_stories", ["created_at"], unique=False)

    op.create_table(
        "storywork_brand_kits",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("primary_color", sa.String(), nullable=False),
        sa.Column("secondary_color", sa.String(), nullable=False),
        sa.Column("font_family", sa.String(), nullable=False),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("headshot_url", sa.String(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["storywork_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_storywork_brand_kits_user_id", "storywork_brand_kits", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_storywork_brand_kits_user_id", table_name="storywork_brand_kits")
    op.drop_table("storywork_brand_kits")
    op.drop_index("ix_storywork_stories_created_at", table_name="storywork_stories")
    op.drop_index("ix_storywork_stories_status", table_name="storywork_stories")
    op.drop_index("ix_storywork_stories_user_id", table_name="storywork_stories")
    op.drop_table("storywork_stories")
    op.drop_index("ix_agents_email", table_name="agents")
    op.drop_table("agents")
    op.drop_index("ix_storywork_credit_transactions_created_at", table_name="storywork_credit_transactions")
    op.drop_index("ix_storywork_credit_transactions_user_id", table_name="storywork_credit_transactions")
    op.drop_table("storywork_credit_transactions")
    op.drop_index("ix_storywork_users_stripe_customer_id", table_name="storywork_users")
    op.drop_index("ix_storywork_users_asm_agent_id", table_name="storywork_users")
    op.drop_index("ix_storywork_users_email", table_name="storywork_users")
    op.drop_index("ix_storywork_users_external_id", table_name="storywork_users")
    op.drop_table("storywork_users")
