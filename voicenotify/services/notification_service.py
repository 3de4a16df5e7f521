"""
voicenotify.services.notification_service — Notification Orchestrator
=======================================================================

Top-level state machine driven by the cogs.  For each voice channel:

======================================  ===========================================
Event                                   Action
======================================  ===========================================
join, no active session                 start session, DM absent subscribers
join, active session, >1 present        debounced refresh of tracked DMs
leave, channel now empty                end session (deactivates its DMs)
leave, people still present             debounced refresh with who's left
move A → B                              leave(A), then join(B)
======================================  ===========================================

Joins and non-empty leaves are only acted on when the channel is monitored
and its human head-count is within the guild's ``max_users``.  An emptied
channel always ends whatever session it has.

Every public ``handle_*`` coroutine catches and logs its own failures so a
bad event never reaches discord.py's dispatcher.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Engine

from voicenotify.database.engine import run_db
from voicenotify.engine.events import ChannelSnapshot, OccupancyEvent, Occupant, ReactionEvent
from voicenotify.errors import NotConfigured, TransientSendFailure, Unreachable
from voicenotify.services.config_service import (
    ChannelConfig,
    get_channel_config,
    remove_monitored_channel,
)
from voicenotify.services.directory import Directory
from voicenotify.services.message_update_service import MessageUpdateService
from voicenotify.services.session_service import (
    ActiveSession,
    SessionManager,
    format_occupant_snapshot,
)
from voicenotify.services.subscription_service import (
    apply_reaction_add,
    apply_reaction_remove,
    get_channel_subscribers,
    remove_channel_subscriptions,
)
from voicenotify.services.throttle import NotificationThrottle

logger = logging.getLogger(__name__)


class NotificationService:
    """Wires sessions, subscriptions, DM refresh and the rate limiter together.

    Usage::

        sessions = SessionManager(engine)
        updates = MessageUpdateService(sessions, directory)
        service = NotificationService(engine, sessions, updates, directory)

        await service.handle_occupancy_change(event)
    """

    def __init__(
        self,
        engine: Engine,
        sessions: SessionManager,
        updates: MessageUpdateService,
        directory: Directory,
        throttle: NotificationThrottle | None = None,
    ) -> None:
        self.engine = engine
        self.sessions = sessions
        self.updates = updates
        self.directory = directory
        self.throttle = throttle if throttle is not None else NotificationThrottle()

    # -------------------------------------------------------------------
    # Voice occupancy
    # -------------------------------------------------------------------
    async def handle_occupancy_change(self, event: OccupancyEvent) -> None:
        if event.member_is_bot:
            return
        try:
            if event.is_join:
                await self._handle_join(event.guild_id, event.after)
            elif event.is_leave:
                await self._handle_leave(event.guild_id, event.before)
            elif event.is_move:
                await self._handle_leave(event.guild_id, event.before)
                await self._handle_join(event.guild_id, event.after)
        except Exception:
            logger.exception(
                "Error handling voice state update for member %d in guild %d",
                event.member_id, event.guild_id,
            )

    async def _eligible_config(
        self, guild_id: int, channel: ChannelSnapshot, present: int
    ) -> ChannelConfig | None:
        try:
            config = await run_db(get_channel_config, self.engine, guild_id, channel.channel_id)
        except NotConfigured as exc:
            logger.debug("Ignoring voice change: %s", exc)
            return None
        if present > config.max_users:
            logger.debug(
                "Channel %s has %d users, exceeding limit of %d",
                channel.name, present, config.max_users,
            )
            return None
        return config

    async def _handle_join(self, guild_id: int, channel: ChannelSnapshot) -> None:
        humans = channel.humans
        config = await self._eligible_config(guild_id, channel, len(humans))
        if config is None:
            return

        active = await self.sessions.get_active_session(guild_id, channel.channel_id)
        if active is None and humans:
            await self._start_notification_session(guild_id, channel, config)
        elif active is not None and len(humans) > 1:
            self.updates.queue_refresh(
                guild_id, channel.channel_id, active.session_id, config, humans,
            )

        logger.info(
            "Processed voice join for %s in guild %d: %d users present",
            channel.name, guild_id, len(humans),
        )

    async def _handle_leave(self, guild_id: int, channel: ChannelSnapshot) -> None:
        humans = channel.humans
        if not humans:
            if await self.sessions.end_session(guild_id, channel.channel_id):
                logger.info("Ended session for empty channel %s in guild %d", channel.name, guild_id)
            return

        config = await self._eligible_config(guild_id, channel, len(humans))
        if config is None:
            return
        active = await self.sessions.get_active_session(guild_id, channel.channel_id)
        if active is not None:
            self.updates.queue_refresh(
                guild_id, channel.channel_id, active.session_id, config, humans,
            )

    async def _start_notification_session(
        self, guild_id: int, channel: ChannelSnapshot, config: ChannelConfig
    ) -> ActiveSession | None:
        humans = channel.humans
        active, created = await self.sessions.start_session(
            guild_id, channel.channel_id, humans,
        )
        if not created:
            return None

        subscribers = await run_db(
            get_channel_subscribers, self.engine, guild_id, channel.channel_id,
        )
        if not subscribers:
            logger.debug("No subscribers for channel %s", channel.name)
            return active

        sent = await self._fan_out(guild_id, channel, config, active, subscribers, humans)
        logger.info(
            "Started notification session for %s: %d DMs sent to %d subscribers",
            channel.name, sent, len(subscribers),
        )
        return active

    async def _fan_out(
        self,
        guild_id: int,
        channel: ChannelSnapshot,
        config: ChannelConfig,
        active: ActiveSession,
        subscribers: Sequence[int],
        humans: Sequence[Occupant],
    ) -> int:
        present = {o.id for o in humans}
        snapshot = format_occupant_snapshot(humans)
        sent = 0

        for user_id in subscribers:
            if user_id in present:
                logger.debug("User %d is already in %s, skipping notification", user_id, channel.name)
                continue
            if self.throttle.is_limited(user_id, guild_id):
                logger.debug("Rate limiting notification for user %d", user_id)
                continue
            try:
                message_id = await self.updates.send_new_dm(user_id, config, humans)
            except (Unreachable, TransientSendFailure) as exc:
                logger.debug("Initial DM not delivered: %s", exc)
                continue
            except Exception:
                logger.exception("Failed to send initial DM to user %d", user_id)
                continue

            self.throttle.record(user_id, guild_id)
            try:
                await self.sessions.create_notification(
                    guild_id, channel.channel_id, user_id, message_id,
                    active.session_id, snapshot,
                )
            except Exception:
                logger.exception("Failed to track DM %d for user %d", message_id, user_id)
                continue
            sent += 1

        return sent

    # -------------------------------------------------------------------
    # Channel lifecycle
    # -------------------------------------------------------------------
    async def handle_channel_deleted(self, guild_id: int, channel_id: int) -> None:
        """Forget a deleted voice channel: monitoring, subscriptions and session."""
        try:
            monitored = await run_db(remove_monitored_channel, self.engine, guild_id, channel_id)
            if not monitored:
                return
            await run_db(remove_channel_subscriptions, self.engine, guild_id, channel_id)
            await self.sessions.end_session(guild_id, channel_id)
        except Exception:
            logger.exception("Error cleaning up deleted channel %d in guild %d", channel_id, guild_id)

    # -------------------------------------------------------------------
    # Reactions
    # -------------------------------------------------------------------
    async def handle_reaction_add(self, event: ReactionEvent) -> None:
        try:
            await run_db(apply_reaction_add, self.engine, event)
        except Exception:
            logger.exception("Error handling reaction add from user %d", event.user_id)

    async def handle_reaction_remove(self, event: ReactionEvent) -> None:
        try:
            await run_db(apply_reaction_remove, self.engine, event)
        except Exception:
            logger.exception("Error handling reaction remove from user %d", event.user_id)

    # -------------------------------------------------------------------
    # Process lifecycle
    # -------------------------------------------------------------------
    async def initialize_on_startup(self, directory: Directory | None = None) -> dict | None:
        """Reconcile persisted sessions against live channels."""
        try:
            result = await self.sessions.reconcile_on_startup(directory or self.directory)
        except Exception:
            logger.exception("Error during startup session cleanup")
            return None
        logger.info("Session cleanup completed on startup")
        return result

    async def shutdown(self) -> None:
        """Run every pending refresh, then drop the session cache."""
        try:
            await self.updates.flush()
            self.sessions.clear_cache()
            logger.info("Notification service shutdown completed")
        except Exception:
            logger.exception("Error during notification service shutdown")

    def prune_rate_limits(self) -> int:
        return self.throttle.prune()
