"""
voicenotify.engine.debounce — Keyed Debounce Queue
===================================================

Coalesces bursts of triggers for the same key into one delayed action.
Each :meth:`DebounceQueue.schedule` call for a key replaces whatever was
pending for it, so only the most recent action runs once the key has been
quiet for *delay* seconds.

Timers are plain ``asyncio`` tasks sleeping on the running loop.  A task
that has already woken up and started its action is never cancelled by a
later ``schedule``; the new action simply queues behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[object]]


@dataclass(slots=True)
class _Pending:
    action: Action
    task: asyncio.Task


class DebounceQueue:
    """Per-key cancellable timers with flush and cancel-all.

    Usage::

        queue = DebounceQueue()
        queue.schedule("guild-channel-session", refresh, delay=0.5)
        await queue.flush_all()   # on shutdown
    """

    def __init__(self) -> None:
        self._pending: dict[str, _Pending] = {}
        self._running: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    # -------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------
    def schedule(self, key: str, action: Action, delay: float) -> None:
        """Run *action* after *delay* seconds unless *key* is rescheduled first.

        Must be called from inside a running event loop.
        """
        existing = self._pending.pop(key, None)
        if existing is not None:
            existing.task.cancel()

        task = asyncio.get_running_loop().create_task(
            self._fire_later(key, action, delay), name=f"debounce:{key}"
        )
        self._pending[key] = _Pending(action=action, task=task)
        logger.debug("Queued update for %s with %.0fms delay", key, delay * 1000)

    async def _fire_later(self, key: str, action: Action, delay: float) -> None:
        await asyncio.sleep(delay)

        entry = self._pending.get(key)
        if entry is None or entry.task is not asyncio.current_task():
            return
        del self._pending[key]

        task = asyncio.current_task()
        self._running.add(task)
        try:
            await action()
        except Exception:
            logger.exception("Error processing queued update for %s", key)
        finally:
            self._running.discard(task)

    # -------------------------------------------------------------------
    # Drain / reset
    # -------------------------------------------------------------------
    async def flush_all(self) -> None:
        """Run every pending action now and wait for all of them to finish.

        Actions already executing are awaited too, so nothing queued before
        the call is lost.
        """
        pending = list(self._pending.items())
        self._pending.clear()
        for _, entry in pending:
            entry.task.cancel()

        results = await asyncio.gather(
            *(entry.action() for _, entry in pending),
            return_exceptions=True,
        )
        for (key, _), result in zip(pending, results):
            if isinstance(result, Exception):
                logger.error(
                    "Error flushing queued update for %s", key, exc_info=result,
                )

        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

        logger.debug("Flushed %d queued updates", len(pending))

    def cancel_all(self) -> None:
        """Drop every pending action without running it."""
        for entry in self._pending.values():
            entry.task.cancel()
        count = len(self._pending)
        self._pending.clear()
        logger.debug("Cleared %d queued updates", count)
