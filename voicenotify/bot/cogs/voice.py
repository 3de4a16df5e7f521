"""
voicenotify.bot.cogs.voice — Voice Occupancy Listener
======================================================

Turns ``on_voice_state_update`` into an :class:`OccupancyEvent` and hands it
to the notification service.  Mute/deafen/stream changes (same channel
before and after) are dropped here.

Also forgets voice channels that get deleted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from voicenotify.engine.events import ChannelSnapshot, OccupancyEvent

if TYPE_CHECKING:
    from voicenotify.bot.core import VoiceNotifyBot

logger = logging.getLogger(__name__)


def build_occupancy_event(
    member: discord.Member,
    before: discord.VoiceState,
    after: discord.VoiceState,
) -> OccupancyEvent | None:
    """Normalize a voice state change; None when the channel didn't change."""
    before_ch = before.channel
    after_ch = after.channel
    if before_ch is not None and after_ch is not None and before_ch.id == after_ch.id:
        return None
    if before_ch is None and after_ch is None:
        return None
    return OccupancyEvent(
        guild_id=member.guild.id,
        member_id=member.id,
        before=ChannelSnapshot.from_channel(before_ch) if before_ch else None,
        after=ChannelSnapshot.from_channel(after_ch) if after_ch else None,
        member_is_bot=member.bot,
    )


class Voice(commands.Cog, name="Voice"):
    """Feeds voice channel joins, leaves and moves into the notifier."""

    def __init__(self, bot: VoiceNotifyBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Track voice join/leave/move events."""
        event = build_occupancy_event(member, before, after)
        if event is None:
            return

        logger.info(
            "Gateway event: VOICE_STATE %s (%s → %s, bot=%s)",
            member.name,
            getattr(before.channel, "name", "None"),
            getattr(after.channel, "name", "None"),
            member.bot,
        )
        try:
            await self.bot.reconciled.wait()
            await self.bot.notifications.handle_occupancy_change(event)
        except Exception:
            logger.exception("Error processing voice state update for user %s", member.id)

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            return
        logger.info("Gateway event: CHANNEL_DELETE #%s (%s)", channel.name, channel.id)
        await self.bot.notifications.handle_channel_deleted(channel.guild.id, channel.id)


async def setup(bot: VoiceNotifyBot) -> None:
    await bot.add_cog(Voice(bot))
