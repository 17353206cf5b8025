"""Initial Welcomecast schema

Revision ID: 7c2e9a41b0d3
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c2e9a41b0d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    """Create tenants, members, welcome jobs and admin rate-limit state."""
    op.create_table(
        "creators",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("whop_user_id", sa.String(64), nullable=False),
        sa.Column("whop_company_id", sa.String(64), nullable=False),
        sa.Column("whop_experience_id", sa.String(64), nullable=True),
        sa.Column("message_template", sa.Text(), nullable=False),
        sa.Column("voice_sample", sa.Text(), nullable=True),
        sa.Column("voice_model_id", sa.String(64), nullable=True),
        sa.Column("is_setup_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_automation_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default="free"),
        sa.Column("whop_plan_id", sa.String(64), nullable=True),
        sa.Column("last_purchase_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("whop_user_id", "whop_company_id", name="uq_creators_user_company"),
    )
    op.create_index("ix_creators_company", "creators", ["whop_company_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("creator_id", sa.String(32), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("whop_user_id", sa.String(64), nullable=False),
        sa.Column("whop_member_id", sa.String(64), nullable=False),
        sa.Column("whop_company_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("plan_name", sa.String(200), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("first_message_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("creator_id", "whop_user_id", name="uq_customers_creator_user"),
    )

    op.create_table(
        "audio_messages",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("customer_id", sa.String(32), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("creator_id", sa.String(32), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("personalized_script", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("audio_data", sa.Text(), nullable=True),
        sa.Column("whop_chat_id", sa.String(64), nullable=True),
        sa.Column("whop_message_id", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("play_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("played_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_audio_messages_customer_created", "audio_messages", ["customer_id", "created_at"]
    )
    op.create_index("ix_audio_messages_creator", "audio_messages", ["creator_id"])

    op.create_table(
        "admin_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("admin_id", sa.String(64), nullable=False),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_admin_rate_limit_admin_ts",
        "admin_rate_limit_events",
        ["admin_id", sa.text("timestamp DESC")],
    )
    op.create_index("ix_admin_rate_limit_ts", "admin_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_admin_rate_limit_ts", table_name="admin_rate_limit_events")
    op.drop_index("ix_admin_rate_limit_admin_ts", table_name="admin_rate_limit_events")
    op.drop_table("admin_rate_limit_events")

    op.drop_index("ix_audio_messages_creator", table_name="audio_messages")
    op.drop_index("ix_audio_messages_customer_created", table_name="audio_messages")
    op.drop_table("audio_messages")

    op.drop_table("customers")

    op.drop_index("ix_creators_company", table_name="creators")
    op.drop_table("creators")
