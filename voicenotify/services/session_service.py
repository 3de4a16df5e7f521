"""
voicenotify.services.session_service — Occupancy Session Manager
=================================================================

Owns the lifecycle of a voice channel occupancy session and the
notification records hanging off it.

- At most one **active** ``channel_sessions`` row per (guild, channel).
  The partial unique index is the final arbiter; :meth:`SessionManager.start_session`
  resolves a lost race by returning the winner.
- ``notification_states`` rows are only ever modified while active.  Once
  deactivated a row is terminal.
- Active sessions are cached in-process in a :class:`SessionCache`; the
  database stays the source of truth and the cache is only a shortcut for
  :meth:`SessionManager.get_active_session`.  A load that overlaps
  :meth:`SessionManager.end_session` for the same channel is never cached.

The public API is async.  Each call runs one short synchronous unit of work
on a worker thread via :func:`run_db`, and any ``SQLAlchemyError`` surfaces
as :class:`~voicenotify.errors.StoreFailure`.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from voicenotify.database.engine import get_session, run_db
from voicenotify.database.models import ChannelSession, NotificationState
from voicenotify.engine.events import Occupant
from voicenotify.errors import StoreFailure

if TYPE_CHECKING:
    from voicenotify.services.directory import Directory

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActiveSession:
    guild_id: int
    channel_id: int
    session_id: str
    started_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    """Detached copy of an active ``notification_states`` row."""

    id: int
    guild_id: int
    channel_id: int
    user_id: int
    message_id: int
    session_id: str
    user_list: list[dict] = field(default_factory=list)


def _active(row: ChannelSession) -> ActiveSession:
    return ActiveSession(
        guild_id=row.guild_id,
        channel_id=row.channel_id,
        session_id=row.session_id,
        started_at=row.started_at,
    )


def _record(row: NotificationState) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        guild_id=row.guild_id,
        channel_id=row.channel_id,
        user_id=row.user_id,
        message_id=row.message_id,
        session_id=row.session_id,
        user_list=list(row.user_list or []),
    )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def generate_session_id() -> str:
    """``session_<epoch-ms>_<8 hex chars>``"""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def format_occupant_snapshot(occupants: Iterable[Occupant]) -> list[dict]:
    """Project occupants to the JSON stored in ``notification_states.user_list``.

    Bots are left out.
    """
    return [
        {
            "id": o.id,
            "username": o.username,
            "display_name": o.display_name,
            "avatar": o.avatar,
        }
        for o in occupants
        if not o.bot
    ]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------
class SessionCache:
    """(guild_id, channel_id) → :class:`ActiveSession`.

    Touched only from the event loop thread, so no locking.
    """

    def __init__(self) -> None:
        self._sessions: dict[tuple[int, int], ActiveSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, guild_id: int, channel_id: int) -> ActiveSession | None:
        return self._sessions.get((guild_id, channel_id))

    def put(self, session: ActiveSession) -> None:
        self._sessions[(session.guild_id, session.channel_id)] = session

    def evict(self, guild_id: int, channel_id: int) -> None:
        self._sessions.pop((guild_id, channel_id), None)

    def clear(self) -> None:
        self._sessions.clear()


# ---------------------------------------------------------------------------
# Synchronous units of work (run on a worker thread)
# ---------------------------------------------------------------------------
def _select_active_session(session, guild_id: int, channel_id: int) -> ChannelSession | None:
    return session.scalars(
        select(ChannelSession).where(
            ChannelSession.guild_id == guild_id,
            ChannelSession.channel_id == channel_id,
            ChannelSession.is_active.is_(True),
        )
    ).first()


def _load_active_session(engine: Engine, guild_id: int, channel_id: int) -> ActiveSession | None:
    with get_session(engine) as session:
        row = _select_active_session(session, guild_id, channel_id)
        return _active(row) if row else None


def _load_all_active_sessions(engine: Engine) -> list[ActiveSession]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(ChannelSession)
            .where(ChannelSession.is_active.is_(True))
            .order_by(ChannelSession.id)
        ).all()
        return [_active(r) for r in rows]


def _insert_session(
    engine: Engine, guild_id: int, channel_id: int, session_id: str
) -> tuple[ActiveSession, bool]:
    with get_session(engine) as session:
        existing = _select_active_session(session, guild_id, channel_id)
        if existing is not None:
            return _active(existing), False

        row = ChannelSession(
            guild_id=guild_id,
            channel_id=channel_id,
            session_id=session_id,
            is_active=True,
            started_at=datetime.now(UTC),
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(row)
                session.flush()
        except IntegrityError:
            # Lost the race against a concurrent start for the same channel
            winner = _select_active_session(session, guild_id, channel_id)
            if winner is None:
                raise
            return _active(winner), False
        return _active(row), True


def _close_session(engine: Engine, guild_id: int, channel_id: int) -> tuple[int, int]:
    now = datetime.now(UTC)
    with get_session(engine) as session:
        sessions = session.execute(
            update(ChannelSession)
            .where(
                ChannelSession.guild_id == guild_id,
                ChannelSession.channel_id == channel_id,
                ChannelSession.is_active.is_(True),
            )
            .values(is_active=False, ended_at=now)
        ).rowcount
        notifications = session.execute(
            update(NotificationState)
            .where(
                NotificationState.guild_id == guild_id,
                NotificationState.channel_id == channel_id,
                NotificationState.is_active.is_(True),
            )
            .values(is_active=False, last_updated=now)
        ).rowcount
    return sessions, notifications


def _load_active_notifications(
    engine: Engine, guild_id: int, channel_id: int, session_id: str
) -> list[NotificationRecord]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(NotificationState)
            .where(
                NotificationState.guild_id == guild_id,
                NotificationState.channel_id == channel_id,
                NotificationState.session_id == session_id,
                NotificationState.is_active.is_(True),
            )
            .order_by(NotificationState.id)
        ).all()
        return [_record(r) for r in rows]


def _insert_notification(
    engine: Engine,
    guild_id: int,
    channel_id: int,
    user_id: int,
    message_id: int,
    session_id: str,
    user_list: list[dict],
) -> NotificationRecord:
    now = datetime.now(UTC)
    with get_session(engine) as session:
        row = NotificationState(
            guild_id=guild_id,
            channel_id=channel_id,
            user_id=user_id,
            message_id=message_id,
            session_id=session_id,
            is_active=True,
            user_list=user_list,
            last_updated=now,
            created_at=now,
        )
        session.add(row)
        session.flush()
        return _record(row)


def _update_active_notification(engine: Engine, notification_id: int, values: dict[str, Any]) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            update(NotificationState)
            .where(
                NotificationState.id == notification_id,
                NotificationState.is_active.is_(True),
            )
            .values(**values)
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Session Manager
# ---------------------------------------------------------------------------
class SessionManager:
    """Async façade over session and notification persistence.

    Usage::

        sessions = SessionManager(engine)
        active, created = await sessions.start_session(guild_id, channel_id, occupants)
        ...
        await sessions.end_session(guild_id, channel_id)
    """

    def __init__(self, engine: Engine, cache: SessionCache | None = None) -> None:
        self.engine = engine
        self.cache = cache if cache is not None else SessionCache()
        # Bumped on every end; a load that straddles a bump is not cached
        self._generation: dict[tuple[int, int], int] = {}
        self._ending: dict[tuple[int, int], int] = {}

    async def _db(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await run_db(func, self.engine, *args)
        except SQLAlchemyError as exc:
            raise StoreFailure(f"{func.__name__} failed: {exc}") from exc

    def _cache_if_current(self, active: ActiveSession, generation: int) -> None:
        key = (active.guild_id, active.channel_id)
        if self._ending.get(key) or self._generation.get(key, 0) != generation:
            logger.debug("Not caching %s: an end for the channel raced the load", active.session_id)
            return
        self.cache.put(active)

    # -------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------
    async def get_active_session(self, guild_id: int, channel_id: int) -> ActiveSession | None:
        cached = self.cache.get(guild_id, channel_id)
        if cached is not None:
            return cached

        generation = self._generation.get((guild_id, channel_id), 0)
        active = await self._db(_load_active_session, guild_id, channel_id)
        if active is not None:
            self._cache_if_current(active, generation)
        return active

    async def start_session(
        self,
        guild_id: int,
        channel_id: int,
        occupants: Iterable[Occupant] = (),
    ) -> tuple[ActiveSession, bool]:
        """Open a new session for the channel.

        Returns ``(session, created)``.  ``created`` is False when another
        session was already active; callers must not fan out in that case.
        """
        generation = self._generation.get((guild_id, channel_id), 0)
        active, created = await self._db(
            _insert_session, guild_id, channel_id, generate_session_id()
        )
        self._cache_if_current(active, generation)
        if created:
            humans = sum(1 for o in occupants if not o.bot)
            logger.info(
                "Started session %s for channel %d in guild %d (%d present)",
                active.session_id, channel_id, guild_id, humans,
            )
        else:
            logger.debug(
                "Session %s already active for channel %d in guild %d",
                active.session_id, channel_id, guild_id,
            )
        return active, created

    async def end_session(self, guild_id: int, channel_id: int) -> int:
        """End the active session and deactivate its notifications.

        Idempotent; returns the number of session rows that were ended
        (0 when nothing was active).
        """
        key = (guild_id, channel_id)
        self._generation[key] = self._generation.get(key, 0) + 1
        self._ending[key] = self._ending.get(key, 0) + 1
        self.cache.evict(guild_id, channel_id)
        try:
            ended, deactivated = await self._db(_close_session, guild_id, channel_id)
        finally:
            self._ending[key] -= 1
            if not self._ending[key]:
                del self._ending[key]
            self._generation[key] += 1
            self.cache.evict(guild_id, channel_id)
        if ended:
            logger.info(
                "Ended session for channel %d in guild %d (%d notifications closed)",
                channel_id, guild_id, deactivated,
            )
        return ended

    # -------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------
    async def list_active_notifications(
        self, guild_id: int, channel_id: int, session_id: str
    ) -> list[NotificationRecord]:
        return await self._db(_load_active_notifications, guild_id, channel_id, session_id)

    async def create_notification(
        self,
        guild_id: int,
        channel_id: int,
        user_id: int,
        message_id: int,
        session_id: str,
        user_list: list[dict],
    ) -> NotificationRecord:
        record = await self._db(
            _insert_notification,
            guild_id, channel_id, user_id, message_id, session_id, user_list,
        )
        logger.debug("Tracking DM %d to user %d for %s", message_id, user_id, session_id)
        return record

    async def update_notification(
        self,
        notification_id: int,
        user_list: list[dict],
        message_id: int | None = None,
    ) -> bool:
        """Store a new snapshot (and optionally a replacement message id).

        Returns False if the record is no longer active.
        """
        values: dict[str, Any] = {"user_list": user_list, "last_updated": datetime.now(UTC)}
        if message_id is not None:
            values["message_id"] = message_id
        return await self._db(_update_active_notification, notification_id, values)

    async def deactivate_notification(self, notification_id: int) -> bool:
        return await self._db(
            _update_active_notification,
            notification_id,
            {"is_active": False, "last_updated": datetime.now(UTC)},
        )

    # -------------------------------------------------------------------
    # Startup reconciliation
    # -------------------------------------------------------------------
    async def reconcile_on_startup(self, directory: Directory) -> dict:
        """End every active session whose channel is gone or empty.

        Sessions are checked one at a time.  A failed channel lookup ends
        that session; a failed end is logged and the sweep continues.

        Returns ``{"checked": N, "ended": M}``.
        """
        sessions = await self._db(_load_all_active_sessions)
        ended = 0

        for active in sessions:
            try:
                occupants = await directory.get_occupants(active.guild_id, active.channel_id)
            except Exception:
                logger.warning(
                    "Could not resolve channel %d in guild %d during reconciliation",
                    active.channel_id, active.guild_id, exc_info=True,
                )
                occupants = None

            if occupants and any(not o.bot for o in occupants):
                self.cache.put(active)
                continue

            try:
                await self.end_session(active.guild_id, active.channel_id)
                ended += 1
            except StoreFailure:
                logger.exception("Failed to end orphaned session %s", active.session_id)

        logger.info(
            "Session reconciliation: checked %d active sessions, ended %d",
            len(sessions), ended,
        )
        return {"checked": len(sessions), "ended": ended}

    def clear_cache(self) -> None:
        self.cache.clear()
