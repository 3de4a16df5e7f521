"""
voicenotify.services.message_update_service — Debounced DM Refresh
====================================================================

Keeps every tracked DM of a session in sync with the channel's occupants.

Membership churn is coalesced per ``"{guild}-{channel}-{session}"`` key in a
:class:`DebounceQueue`; when the timer fires, :meth:`MessageUpdateService.refresh_session`
re-reads the *currently active* notification records and, per recipient:

1. recipient is in the channel      → skipped
2. edit the existing DM             → snapshot stored
3. edit failed transiently          → one replacement DM, new id stored
4. recipient unreachable / resend failed → record deactivated for good

A record closed mid-refresh (its session ended) counts as failed, and no
replacement is sent for a session that is no longer active.

Failures are isolated per recipient; nothing is retried beyond the single
replacement send.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from voicenotify.constants import DEFAULT_UPDATE_DELAY
from voicenotify.engine.debounce import DebounceQueue
from voicenotify.engine.events import Occupant
from voicenotify.engine.formatter import format_notification_message, format_user_list
from voicenotify.errors import TransientSendFailure, Unreachable
from voicenotify.services.config_service import ChannelConfig
from voicenotify.services.directory import Directory
from voicenotify.services.session_service import (
    NotificationRecord,
    SessionManager,
    format_occupant_snapshot,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshResult:
    updated: int = 0
    failed: int = 0
    skipped: int = 0


def render_notification(config: ChannelConfig, occupants: Sequence[Occupant]) -> str:
    """DM body for *config*'s channel with *occupants* (bots excluded)."""
    names = [o.display_name or o.username for o in occupants if not o.bot]
    user_list = format_user_list(names, config.max_display_users)
    return format_notification_message(
        config.custom_message,
        channel_name=config.channel_name,
        user_list=user_list,
        emoji=config.emoji,
    )


class MessageUpdateService:
    """Sends initial DMs and performs debounced refreshes of tracked ones."""

    def __init__(
        self,
        sessions: SessionManager,
        directory: Directory,
        queue: DebounceQueue | None = None,
        delay: float = DEFAULT_UPDATE_DELAY,
    ) -> None:
        self.sessions = sessions
        self.directory = directory
        self.queue = queue if queue is not None else DebounceQueue()
        self.delay = delay

    async def send_new_dm(
        self, user_id: int, config: ChannelConfig, occupants: Sequence[Occupant]
    ) -> int:
        """Send a fresh notification DM.  Returns the message id."""
        return await self.directory.send_dm(user_id, render_notification(config, occupants))

    # -------------------------------------------------------------------
    # Debounced refresh
    # -------------------------------------------------------------------
    def queue_refresh(
        self,
        guild_id: int,
        channel_id: int,
        session_id: str,
        config: ChannelConfig,
        occupants: Sequence[Occupant],
        delay: float | None = None,
    ) -> str:
        """Schedule a refresh of the session's DMs; returns the queue key.

        A later call for the same session replaces this one, so the refresh
        always renders the most recent occupant snapshot.
        """
        key = f"{guild_id}-{channel_id}-{session_id}"
        snapshot = tuple(occupants)

        async def _refresh() -> None:
            await self.refresh_session(guild_id, channel_id, session_id, config, snapshot)

        self.queue.schedule(key, _refresh, self.delay if delay is None else delay)
        return key

    async def refresh_session(
        self,
        guild_id: int,
        channel_id: int,
        session_id: str,
        config: ChannelConfig,
        occupants: Sequence[Occupant],
    ) -> RefreshResult:
        records = await self.sessions.list_active_notifications(guild_id, channel_id, session_id)
        result = RefreshResult()
        if not records:
            return result

        present = {o.id for o in occupants if not o.bot}
        content = render_notification(config, occupants)
        snapshot = format_occupant_snapshot(occupants)

        for record in records:
            if record.user_id in present:
                result.skipped += 1
                continue
            try:
                if await self._refresh_one(record, content, snapshot):
                    result.updated += 1
                else:
                    result.failed += 1
            except Exception:
                logger.exception(
                    "Failed to refresh notification %d for user %d",
                    record.id, record.user_id,
                )
                result.failed += 1

        logger.info(
            "Refreshed %s: %d updated, %d failed, %d skipped",
            session_id, result.updated, result.failed, result.skipped,
        )
        return result

    async def _refresh_one(
        self, record: NotificationRecord, content: str, snapshot: list[dict]
    ) -> bool:
        try:
            await self.directory.edit_dm(record.user_id, record.message_id, content)
        except Unreachable as exc:
            logger.debug("Deactivating notification %d: %s", record.id, exc)
            await self.sessions.deactivate_notification(record.id)
            return False
        except TransientSendFailure as exc:
            logger.warning("Could not edit DM %d for user %d: %s", record.message_id, record.user_id, exc)
            return await self._replace(record, content, snapshot)

        if not await self.sessions.update_notification(record.id, snapshot):
            logger.debug("Notification %d closed while its DM was being edited", record.id)
            return False
        return True

    async def _replace(
        self, record: NotificationRecord, content: str, snapshot: list[dict]
    ) -> bool:
        active = await self.sessions.get_active_session(record.guild_id, record.channel_id)
        if active is None or active.session_id != record.session_id:
            logger.debug("Session %s ended; not replacing DM %d", record.session_id, record.message_id)
            return False

        try:
            message_id = await self.directory.send_dm(record.user_id, content)
        except (Unreachable, TransientSendFailure) as exc:
            logger.debug("Replacement DM failed for notification %d: %s", record.id, exc)
            await self.sessions.deactivate_notification(record.id)
            return False

        if not await self.sessions.update_notification(record.id, snapshot, message_id=message_id):
            # Session ended mid-refresh; the replacement DM stays untracked
            logger.warning(
                "Notification %d closed before replacement DM %d for user %d was tracked",
                record.id, message_id, record.user_id,
            )
            return False
        logger.info("Replaced failed DM update with new message for user %d", record.user_id)
        return True

    # -------------------------------------------------------------------
    # Queue control
    # -------------------------------------------------------------------
    async def flush(self) -> None:
        await self.queue.flush_all()

    def clear(self) -> None:
        self.queue.cancel_all()
