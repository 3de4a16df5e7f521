"""
voicenotify.bot.cogs.tasks — Periodic Background Tasks
=======================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Rate-limit prune** — every 5 minutes, forgets initial-DM timestamps
  older than the configured horizon.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

if TYPE_CHECKING:
    from voicenotify.bot.core import VoiceNotifyBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: VoiceNotifyBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.rate_limit_prune_loop.start()

    async def cog_unload(self) -> None:
        self.rate_limit_prune_loop.cancel()

    @tasks.loop(minutes=5)
    async def rate_limit_prune_loop(self):
        try:
            pruned = self.bot.notifications.prune_rate_limits()
            if pruned:
                logger.info("Pruned %d stale rate-limit entries", pruned)
        except Exception:
            logger.exception("Rate-limit prune failed", extra={"task": "rate_limit_prune"})

    @rate_limit_prune_loop.before_loop
    async def _wait_prune(self):
        await self.bot.wait_until_ready()


async def setup(bot: VoiceNotifyBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
