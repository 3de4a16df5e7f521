"""
voicenotify.bot.cogs.reactions — Subscription Reactions
========================================================

Listens for raw reaction add/remove events and subscribes or unsubscribes
the reacting member to the voice channel registered with that emoji.

Uses raw events to avoid cache misses on old subscription messages.  The
emoji is matched in its string form (``🔔`` or ``<:name:id>``), the same
form ``/notify-config add-channel`` stores.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from voicenotify.engine.events import ReactionEvent

if TYPE_CHECKING:
    from voicenotify.bot.core import VoiceNotifyBot

logger = logging.getLogger(__name__)


def build_reaction_event(
    payload: discord.RawReactionActionEvent, bot_user_id: int | None = None
) -> ReactionEvent | None:
    """Normalize a raw reaction payload; None for DMs."""
    if payload.guild_id is None:
        return None
    member = payload.member
    is_bot = (member is not None and member.bot) or payload.user_id == bot_user_id
    return ReactionEvent(
        guild_id=payload.guild_id,
        message_id=payload.message_id,
        emoji=str(payload.emoji),
        user_id=payload.user_id,
        user_is_bot=is_bot,
    )


class Reactions(commands.Cog, name="Reactions"):
    """Maps channel emoji reactions to subscriptions."""

    def __init__(self, bot: VoiceNotifyBot) -> None:
        self.bot = bot

    def _bot_user_id(self) -> int | None:
        return self.bot.user.id if self.bot.user else None

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        """Fire when any reaction is added, even on uncached messages."""
        event = build_reaction_event(payload, self._bot_user_id())
        if event is None or event.user_is_bot:
            return
        logger.info(
            "Gateway event: REACTION_ADD %s from user %s on message %s",
            event.emoji, payload.user_id, payload.message_id,
        )
        await self.bot.notifications.handle_reaction_add(event)

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        """Fire when any reaction is removed.  ``payload.member`` is never set here."""
        event = build_reaction_event(payload, self._bot_user_id())
        if event is None or event.user_is_bot:
            return
        logger.info(
            "Gateway event: REACTION_REMOVE %s from user %s on message %s",
            event.emoji, payload.user_id, payload.message_id,
        )
        await self.bot.notifications.handle_reaction_remove(event)


async def setup(bot: VoiceNotifyBot) -> None:
    await bot.add_cog(Reactions(bot))
