"""
voicenotify.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- guild_configs        — Per-guild message template and user limits
- monitored_channels   — Voice channels watched per guild, with their emoji
- user_subscriptions   — (guild, user, channel) opt-ins created by reactions
- channel_sessions     — One row per continuous occupancy of a voice channel
- notification_states  — One row per tracked DM (recipient × session)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from voicenotify.constants import (
    DEFAULT_MAX_DISPLAY_USERS,
    DEFAULT_MAX_USERS,
    DEFAULT_MESSAGE,
)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Voice Notify ORM models."""


# ---------------------------------------------------------------------------
# GuildConfig — one row per configured guild
# ---------------------------------------------------------------------------
class GuildConfig(Base):
    __tablename__ = "guild_configs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)  # Discord snowflake
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    custom_message: Mapped[str] = mapped_column(
        String(500), nullable=False, default=DEFAULT_MESSAGE
    )
    max_users: Mapped[int] = mapped_column(Integer, default=DEFAULT_MAX_USERS)
    max_display_users: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_MAX_DISPLAY_USERS
    )
    admin_role_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildConfig id={self.id} name={self.name!r} max_users={self.max_users}>"


# ---------------------------------------------------------------------------
# MonitoredChannel — voice channels that trigger notifications
# ---------------------------------------------------------------------------
class MonitoredChannel(Base):
    """A voice channel watched for occupancy, and the emoji members react
    with to subscribe to it.

    ``emoji`` is stored in its string form (``🔔`` or ``<:name:id>``) so it
    compares directly against ``str(payload.emoji)`` from reaction events.
    """
    __tablename__ = "monitored_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_name: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "channel_id", name="uq_monitored_guild_channel"),
        Index("ix_monitored_guild_emoji", "guild_id", "emoji"),
    )

    def __repr__(self) -> str:
        return (
            f"<MonitoredChannel guild={self.guild_id} channel={self.channel_id} "
            f"emoji={self.emoji!r}>"
        )


# ---------------------------------------------------------------------------
# UserSubscription — reaction-driven opt-ins
# ---------------------------------------------------------------------------
class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "user_id", "channel_id",
            name="uq_subscriptions_guild_user_channel",
        ),
        Index("ix_subscriptions_guild_channel", "guild_id", "channel_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserSubscription guild={self.guild_id} user={self.user_id} "
            f"channel={self.channel_id}>"
        )


# ---------------------------------------------------------------------------
# ChannelSession — continuous occupancy of a monitored channel
# ---------------------------------------------------------------------------
class ChannelSession(Base):
    """One span during which a monitored channel had ≥1 non-bot member.

    At most one row per (guild_id, channel_id) may be active; the partial
    unique index enforces it at the database level.
    """
    __tablename__ = "channel_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index(
            "uq_channel_sessions_active",
            "guild_id",
            "channel_id",
            unique=True,
            postgresql_where=is_active.is_(True),
            sqlite_where=is_active.is_(True),
        ),
        Index("ix_channel_sessions_active", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChannelSession {self.session_id} guild={self.guild_id} "
            f"channel={self.channel_id} active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# NotificationState — one tracked DM per recipient per session
# ---------------------------------------------------------------------------
class NotificationState(Base):
    """A DM that mirrors a session's occupants for one recipient.

    ``user_list`` holds the occupant snapshot written at the last successful
    send or edit.  Once ``is_active`` is false the row is never touched again.
    """
    __tablename__ = "notification_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_list: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_notification_states_session",
            "guild_id", "channel_id", "session_id",
        ),
        # No duplicate live DMs for the same recipient in one session
        Index(
            "uq_notification_states_active_recipient",
            "guild_id", "channel_id", "session_id", "user_id",
            unique=True,
            postgresql_where=is_active.is_(True),
            sqlite_where=is_active.is_(True),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationState id={self.id} user={self.user_id} "
            f"session={self.session_id} active={self.is_active}>"
        )
