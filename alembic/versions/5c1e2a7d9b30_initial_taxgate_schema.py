"""Initial TaxGate schema

Revision ID: 5c1e2a7d9b30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5c1e2a7d9b30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create members, per-guild activity, verification, config and audit tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger, primary_key=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("is_verified", sa.Boolean, nullable=True),
        sa.Column("verification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("join_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("tax_points", sa.Integer, nullable=True),
        sa.Column("total_points_earned", sa.Integer, nullable=True),
        sa.Column("messages_count", sa.Integer, nullable=True),
        sa.Column("daily_streak", sa.Integer, nullable=True),
        sa.Column("last_streak_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_point_award", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "tax_points <= total_points_earned", name="ck_users_points_le_total"
        ),
    )
    op.create_index("ix_users_tax_points_desc", "users", ["tax_points"])
    op.create_index("ix_users_total_earned_desc", "users", ["total_points_earned"])
    op.create_index("ix_users_verified", "users", ["is_verified"])

    op.create_table(
        "user_groups",
        sa.Column(
            "user_id", sa.BigInteger,
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("group_id", sa.BigInteger, primary_key=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "group_activity",
        sa.Column(
            "user_id", sa.BigInteger,
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("group_id", sa.BigInteger, primary_key=True),
        sa.Column("messages_count", sa.Integer, nullable=True),
        sa.Column("points_earned", sa.Integer, nullable=True),
        sa.Column("last_message_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_points", sa.Integer, nullable=True),
        sa.Column("last_daily_reset", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_group_activity_group_points", "group_activity", ["group_id", "points_earned"],
    )

    op.create_table(
        "verification_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("group_id", sa.BigInteger, nullable=False),
        sa.Column("verification_code", sa.String(200), nullable=False),
        sa.Column("is_completed", sa.Boolean, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("message_id", sa.BigInteger, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_verification_user_group", "verification_sessions", ["user_id", "group_id"],
    )
    op.create_index("ix_verification_code", "verification_sessions", ["verification_code"])
    op.create_index("ix_verification_expires_at", "verification_sessions", ["expires_at"])

    op.create_table(
        "tax_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("version", sa.Integer, nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_by", sa.BigInteger, nullable=True),
        sa.Column("data", postgresql.JSONB, nullable=False),
    )
    op.create_index("ix_tax_configs_active_version", "tax_configs", ["is_active", "version"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger, nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    op.drop_table("admin_log")
    op.drop_table("tax_configs")
    op.drop_table("verification_sessions")
    op.drop_table("group_activity")
    op.drop_table("user_groups")
    op.drop_table("users")
