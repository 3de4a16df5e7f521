"""
voicenotify.services.throttle — Initial-DM rate-limit ledger
=============================================================

Remembers when each user last received an *initial* notification DM in
each guild, so a channel that empties and refills in quick succession
doesn't spam its subscribers.  Refreshes of existing DMs are never
throttled.

The ledger is process-local and advisory: losing it on restart only means
one extra DM may slip through.
"""

from __future__ import annotations

import logging
import time

from voicenotify.constants import RATE_LIMIT_HORIZON_SECONDS, RATE_LIMIT_SECONDS

logger = logging.getLogger(__name__)


class NotificationThrottle:
    """(user_id, guild_id) → timestamp of the last successful initial send.

    - A user is limited for ``min_interval`` seconds after a send.
    - :meth:`prune` drops entries older than ``horizon`` seconds; the bot
      calls it every few minutes from the tasks cog.
    """

    def __init__(
        self,
        min_interval: float = RATE_LIMIT_SECONDS,
        horizon: float = RATE_LIMIT_HORIZON_SECONDS,
    ) -> None:
        self.min_interval = min_interval
        self.horizon = horizon
        self._last_sent: dict[tuple[int, int], float] = {}

    def __len__(self) -> int:
        return len(self._last_sent)

    def is_limited(self, user_id: int, guild_id: int, now: float | None = None) -> bool:
        """Return True if *user_id* got an initial DM in *guild_id* too recently."""
        last = self._last_sent.get((user_id, guild_id))
        if last is None:
            return False
        now = time.time() if now is None else now
        return (now - last) < self.min_interval

    def record(self, user_id: int, guild_id: int, now: float | None = None) -> None:
        """Mark a successful initial send."""
        self._last_sent[(user_id, guild_id)] = time.time() if now is None else now

    def prune(self, now: float | None = None) -> int:
        """Forget entries older than the horizon.  Returns how many were dropped."""
        now = time.time() if now is None else now
        cutoff = now - self.horizon
        stale = [key for key, ts in self._last_sent.items() if ts < cutoff]
        for key in stale:
            del self._last_sent[key]
        if stale:
            logger.debug("Pruned %d rate-limit entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._last_sent.clear()
