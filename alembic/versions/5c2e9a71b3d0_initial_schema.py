"""Initial schema: guild configs, monitored channels, subscriptions, sessions

Revision ID: 5c2e9a71b3d0
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "5c2e9a71b3d0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all Voice Notify tables.

    The two partial unique indexes carry the session invariants:
    - one active channel_sessions row per (guild_id, channel_id)
    - one active notification_states row per recipient per session
    """
    op.create_table(
        "guild_configs",
        sa.Column("id", sa.BigInteger, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "custom_message", sa.String(500), nullable=False,
            server_default="\U0001f50a Users in {channelName}: {userList}",
        ),
        sa.Column("max_users", sa.Integer, nullable=True, server_default="10"),
        sa.Column("max_display_users", sa.Integer, nullable=True, server_default="5"),
        sa.Column("admin_role_id", sa.BigInteger, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "monitored_channels",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("channel_name", sa.String(100), nullable=False),
        sa.Column("emoji", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("guild_id", "channel_id", name="uq_monitored_guild_channel"),
    )
    op.create_index("ix_monitored_guild_emoji", "monitored_channels", ["guild_id", "emoji"])

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "guild_id", "user_id", "channel_id",
            name="uq_subscriptions_guild_user_channel",
        ),
    )
    op.create_index(
        "ix_subscriptions_guild_channel", "user_subscriptions", ["guild_id", "channel_id"],
    )

    op.create_table(
        "channel_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_channel_sessions_active",
        "channel_sessions",
        ["guild_id", "channel_id"],
        unique=True,
        postgresql_where=sa.text("is_active IS true"),
    )
    op.create_index("ix_channel_sessions_active", "channel_sessions", ["is_active"])

    op.create_table(
        "notification_states",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("message_id", sa.BigInteger, nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "user_list", postgresql.JSONB, nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notification_states_session",
        "notification_states",
        ["guild_id", "channel_id", "session_id"],
    )
    op.create_index(
        "uq_notification_states_active_recipient",
        "notification_states",
        ["guild_id", "channel_id", "session_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("is_active IS true"),
    )


def downgrade() -> None:
    """Drop every Voice Notify table."""
    op.drop_table("notification_states")
    op.drop_table("channel_sessions")
    op.drop_table("user_subscriptions")
    op.drop_table("monitored_channels")
    op.drop_table("guild_configs")
