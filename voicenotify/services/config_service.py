"""
voicenotify.services.config_service — Guild Configuration Store
================================================================

Typed read/write access to ``guild_configs`` and ``monitored_channels``.
The notification pipeline only ever reads through
:func:`get_channel_config`; the ``/notify-config`` commands write through the
explicit upserts below.

All functions are synchronous — call them through ``run_db`` from async
code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import IntegrityError

from voicenotify.constants import (
    DEFAULT_MAX_DISPLAY_USERS,
    DEFAULT_MAX_USERS,
    DEFAULT_MESSAGE,
)
from voicenotify.database.engine import get_session
from voicenotify.database.models import GuildConfig, MonitoredChannel
from voicenotify.errors import NotConfigured

logger = logging.getLogger(__name__)

# Columns the upsert is allowed to touch
_GUILD_FIELDS: frozenset[str] = frozenset({
    "custom_message", "max_users", "max_display_users", "admin_role_id",
})


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GuildSettings:
    guild_id: int
    name: str
    custom_message: str
    max_users: int
    max_display_users: int
    admin_role_id: int | None = None


@dataclass(frozen=True, slots=True)
class MonitoredChannelInfo:
    guild_id: int
    channel_id: int
    channel_name: str
    emoji: str


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    """Everything needed to render a DM for one monitored channel."""

    guild_id: int
    channel_id: int
    channel_name: str
    emoji: str
    custom_message: str = DEFAULT_MESSAGE
    max_users: int = DEFAULT_MAX_USERS
    max_display_users: int = DEFAULT_MAX_DISPLAY_USERS


def _settings(row: GuildConfig) -> GuildSettings:
    return GuildSettings(
        guild_id=row.id,
        name=row.name,
        custom_message=row.custom_message,
        max_users=row.max_users,
        max_display_users=row.max_display_users,
        admin_role_id=row.admin_role_id,
    )


def _channel_info(row: MonitoredChannel) -> MonitoredChannelInfo:
    return MonitoredChannelInfo(
        guild_id=row.guild_id,
        channel_id=row.channel_id,
        channel_name=row.channel_name,
        emoji=row.emoji,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_guild_settings(engine: Engine, guild_id: int) -> GuildSettings | None:
    with get_session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        return _settings(row) if row else None


def get_channel_config(engine: Engine, guild_id: int, channel_id: int) -> ChannelConfig:
    """Resolve the guild settings and monitored-channel row for a voice channel.

    Raises
    ------
    NotConfigured
        If the guild has no configuration or the channel isn't monitored.
    """
    with get_session(engine) as session:
        guild = session.get(GuildConfig, guild_id)
        monitored = session.scalars(
            select(MonitoredChannel).where(
                MonitoredChannel.guild_id == guild_id,
                MonitoredChannel.channel_id == channel_id,
            )
        ).first()
        if guild is None or monitored is None:
            raise NotConfigured(guild_id, channel_id)

        return ChannelConfig(
            guild_id=guild_id,
            channel_id=channel_id,
            channel_name=monitored.channel_name,
            emoji=monitored.emoji,
            custom_message=guild.custom_message,
            max_users=guild.max_users,
            max_display_users=guild.max_display_users,
        )


def list_monitored_channels(engine: Engine, guild_id: int) -> list[MonitoredChannelInfo]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(MonitoredChannel)
            .where(MonitoredChannel.guild_id == guild_id)
            .order_by(MonitoredChannel.channel_name)
        ).all()
        return [_channel_info(r) for r in rows]


def find_channel_by_emoji(
    engine: Engine, guild_id: int, emoji: str
) -> MonitoredChannelInfo | None:
    """Map a reaction emoji back to the monitored channel registered with it."""
    with get_session(engine) as session:
        row = session.scalars(
            select(MonitoredChannel).where(
                MonitoredChannel.guild_id == guild_id,
                MonitoredChannel.emoji == emoji,
            )
        ).first()
        return _channel_info(row) if row else None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_guild_config(
    engine: Engine,
    guild_id: int,
    name: str,
    *,
    defaults: dict[str, Any] | None = None,
    **changes: Any,
) -> GuildSettings:
    """Create the guild row if missing, then apply *changes*.

    Postconditions: exactly one ``guild_configs`` row exists for *guild_id*;
    its name is *name*; every key in *changes* holds the given value; keys
    not in *changes* keep their stored value, or *defaults* / the model
    defaults for a freshly created row.

    Raises
    ------
    ValueError
        If *changes* names a column outside the editable set.
    """
    unknown = set(changes) - _GUILD_FIELDS
    if unknown:
        raise ValueError(f"Unknown guild config fields: {sorted(unknown)}")

    with get_session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        if row is None:
            initial = {
                "custom_message": DEFAULT_MESSAGE,
                "max_users": DEFAULT_MAX_USERS,
                "max_display_users": DEFAULT_MAX_DISPLAY_USERS,
                **(defaults or {}),
                **changes,
            }
            row = GuildConfig(id=guild_id, name=name, **initial)
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(row)
                    session.flush()
                logger.info("Created guild config for %s (%d)", name, guild_id)
                return _settings(row)
            except IntegrityError:
                # Another task created it first; fall through and update.
                row = session.get(GuildConfig, guild_id, populate_existing=True)

        row.name = name
        for key, value in changes.items():
            setattr(row, key, value)
        session.flush()
        return _settings(row)


def upsert_monitored_channel(
    engine: Engine,
    guild_id: int,
    channel_id: int,
    channel_name: str,
    emoji: str,
) -> MonitoredChannelInfo:
    """Start monitoring *channel_id*, or update its name/emoji if already monitored."""
    with get_session(engine) as session:
        row = session.scalars(
            select(MonitoredChannel).where(
                MonitoredChannel.guild_id == guild_id,
                MonitoredChannel.channel_id == channel_id,
            )
        ).first()
        if row is None:
            row = MonitoredChannel(
                guild_id=guild_id,
                channel_id=channel_id,
                channel_name=channel_name,
                emoji=emoji,
            )
            session.add(row)
            logger.info(
                "Monitoring channel #%s (%d) in guild %d with %s",
                channel_name, channel_id, guild_id, emoji,
            )
        else:
            row.channel_name = channel_name
            row.emoji = emoji
        session.flush()
        return _channel_info(row)


def remove_monitored_channel(engine: Engine, guild_id: int, channel_id: int) -> bool:
    """Stop monitoring a channel.  Returns False if it wasn't monitored."""
    with get_session(engine) as session:
        result = session.execute(
            delete(MonitoredChannel).where(
                MonitoredChannel.guild_id == guild_id,
                MonitoredChannel.channel_id == channel_id,
            )
        )
        removed = result.rowcount > 0
    if removed:
        logger.info("Stopped monitoring channel %d in guild %d", channel_id, guild_id)
    return removed
