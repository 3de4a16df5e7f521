"""
voicenotify.bot.core — Bot Instance & Cog Loader
=================================================

Defines :class:`VoiceNotifyBot`, a ``commands.Bot`` subclass that:

1. Carries the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   the :class:`NotificationService` (``bot.notifications``) so every Cog can
   reach them through ``self.bot``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on first ``on_ready`` (guild-scoped for dev,
   global for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Reconciles persisted sessions against live channels once, before the
   voice cog starts handling events.
5. Drains pending DM refreshes before the gateway connection closes.
"""

from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from voicenotify.config import VoiceNotifyConfig
from voicenotify.engine.debounce import DebounceQueue
from voicenotify.services.directory import DiscordDirectory
from voicenotify.services.message_update_service import MessageUpdateService
from voicenotify.services.notification_service import NotificationService
from voicenotify.services.session_service import SessionCache, SessionManager
from voicenotify.services.throttle import NotificationThrottle

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "voicenotify.bot.cogs.voice",
    "voicenotify.bot.cogs.reactions",
    "voicenotify.bot.cogs.admin",
    "voicenotify.bot.cogs.tasks",
]


class VoiceNotifyBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`VoiceNotifyConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: VoiceNotifyConfig, engine: Engine) -> None:
        # GUILDS, GUILD_VOICE_STATES, GUILD_MESSAGE_REACTIONS and DM_MESSAGES
        # are in default().  GUILD_MEMBERS is privileged and must be enabled
        # in the Developer Portal; voice channel member lists depend on it.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False
        intents.message_content = False

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description=f"{cfg.bot_name} — voice channel notifications",
        )

        self.cfg = cfg
        self.engine = engine

        self.directory = DiscordDirectory(self)
        self.sessions = SessionManager(engine, SessionCache())
        self.updates = MessageUpdateService(
            self.sessions,
            self.directory,
            DebounceQueue(),
            delay=cfg.update_delay_seconds,
        )
        self.notifications = NotificationService(
            engine,
            self.sessions,
            self.updates,
            self.directory,
            NotificationThrottle(cfg.rate_limit_seconds, cfg.rate_limit_horizon_seconds),
        )

        # Set once startup reconciliation has finished; the voice cog waits on it.
        self.reconciled = asyncio.Event()
        self._synced = False

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  A broken Cog is logged and skipped."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated.

        Also fires after every reconnect; the one-time work is guarded.
        """
        assert self.user is not None
        logger.info(
            "Logged in as %s (ID: %s) in %d guilds",
            self.user.name, self.user.id, len(self.guilds),
        )
        if self._synced:
            return
        self._synced = True

        # --- Slash-command sync ---------------------------------------------
        try:
            dev_guild_id = os.getenv("DEV_GUILD_ID")
            if dev_guild_id:
                guild = discord.Object(id=int(dev_guild_id))
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
            else:
                synced = await self.tree.sync()
                logger.info("Synced %d commands globally", len(synced))
        except discord.HTTPException:
            logger.exception("Slash-command sync failed")

        # --- Orphaned session cleanup ---------------------------------------
        try:
            await self.notifications.initialize_on_startup(self.directory)
        finally:
            self.reconciled.set()

    async def close(self) -> None:
        """Graceful shutdown: drain pending refreshes, close the gateway,
        then release database connections."""
        logger.info("Bot shutting down…")
        await self.notifications.shutdown()
        await super().close()
        self.engine.dispose()
