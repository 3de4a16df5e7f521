"""
voicenotify.services.subscription_service — Subscription Store
===============================================================

CRUD over ``user_subscriptions``: one row per (guild, user, channel) that
asked to be DMed when someone joins the channel.  Subscriptions are created
and destroyed by reactions on the ``/notify init`` message, and bulk-removed
when a monitored channel goes away.
"""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import Engine, delete, func, select
from sqlalchemy.exc import IntegrityError

from voicenotify.database.engine import get_session
from voicenotify.database.models import MonitoredChannel, UserSubscription
from voicenotify.engine.events import ReactionEvent
from voicenotify.services.config_service import find_channel_by_emoji

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_subscription(engine: Engine, guild_id: int, user_id: int, channel_id: int) -> bool:
    """Subscribe *user_id* to *channel_id*.

    Returns True if a row was created, False if it already existed.
    """
    with get_session(engine) as session:
        exists = session.scalars(
            select(UserSubscription.id).where(
                UserSubscription.guild_id == guild_id,
                UserSubscription.user_id == user_id,
                UserSubscription.channel_id == channel_id,
            )
        ).first()
        if exists is not None:
            return False

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(UserSubscription(
                    guild_id=guild_id, user_id=user_id, channel_id=channel_id,
                ))
                session.flush()
        except IntegrityError:
            # A duplicate reaction event won the race
            return False

    logger.info("User %d subscribed to channel %d in guild %d", user_id, channel_id, guild_id)
    return True


def remove_subscription(engine: Engine, guild_id: int, user_id: int, channel_id: int) -> int:
    """Unsubscribe.  Returns the number of rows removed (0 or 1)."""
    with get_session(engine) as session:
        result = session.execute(
            delete(UserSubscription).where(
                UserSubscription.guild_id == guild_id,
                UserSubscription.user_id == user_id,
                UserSubscription.channel_id == channel_id,
            )
        )
        removed = result.rowcount
    if removed:
        logger.info(
            "User %d unsubscribed from channel %d in guild %d",
            user_id, channel_id, guild_id,
        )
    return removed


def remove_channel_subscriptions(engine: Engine, guild_id: int, channel_id: int) -> int:
    """Drop every subscription to *channel_id* (channel deleted or unmonitored)."""
    with get_session(engine) as session:
        result = session.execute(
            delete(UserSubscription).where(
                UserSubscription.guild_id == guild_id,
                UserSubscription.channel_id == channel_id,
            )
        )
        removed = result.rowcount
    if removed:
        logger.info(
            "Removed %d subscriptions for channel %d in guild %d",
            removed, channel_id, guild_id,
        )
    return removed


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_channel_subscribers(engine: Engine, guild_id: int, channel_id: int) -> list[int]:
    """User ids subscribed to *channel_id*, oldest subscription first."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(UserSubscription.user_id)
            .where(
                UserSubscription.guild_id == guild_id,
                UserSubscription.channel_id == channel_id,
            )
            .order_by(UserSubscription.id)
        ).all())


def get_user_subscriptions(engine: Engine, guild_id: int, user_id: int) -> list[int]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(UserSubscription.channel_id).where(
                UserSubscription.guild_id == guild_id,
                UserSubscription.user_id == user_id,
            )
        ).all())


def get_subscription_stats(engine: Engine, guild_id: int) -> dict[int, int]:
    """channel_id → subscriber count for every monitored channel in the guild.

    Channels nobody has subscribed to yet are reported with 0.
    """
    with get_session(engine) as session:
        rows = session.execute(
            select(UserSubscription.channel_id, func.count(UserSubscription.id))
            .where(UserSubscription.guild_id == guild_id)
            .group_by(UserSubscription.channel_id)
        ).all()
        counts = Counter({channel_id: count for channel_id, count in rows})

        monitored = session.scalars(
            select(MonitoredChannel.channel_id).where(MonitoredChannel.guild_id == guild_id)
        ).all()
        return {channel_id: counts.get(channel_id, 0) for channel_id in monitored}


# ---------------------------------------------------------------------------
# Reaction handling
# ---------------------------------------------------------------------------
def apply_reaction_add(engine: Engine, event: ReactionEvent) -> int | None:
    """Subscribe the reacting user to the channel registered with the emoji.

    Returns the channel id the reaction mapped to, or None when the emoji
    isn't a monitored channel's (or the reactor is a bot).
    """
    if event.user_is_bot:
        return None
    channel = find_channel_by_emoji(engine, event.guild_id, event.emoji)
    if channel is None:
        logger.debug("Reaction %s in guild %d matches no channel", event.emoji, event.guild_id)
        return None
    upsert_subscription(engine, event.guild_id, event.user_id, channel.channel_id)
    return channel.channel_id


def apply_reaction_remove(engine: Engine, event: ReactionEvent) -> int | None:
    """Inverse of :func:`apply_reaction_add`."""
    if event.user_is_bot:
        return None
    channel = find_channel_by_emoji(engine, event.guild_id, event.emoji)
    if channel is None:
        return None
    remove_subscription(engine, event.guild_id, event.user_id, channel.channel_id)
    return channel.channel_id
