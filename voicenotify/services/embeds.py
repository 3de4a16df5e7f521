"""
voicenotify.services.embeds — Discord embed builders
=====================================================

All embed construction lives here so the admin cog only needs to supply
data — no layout concerns.
"""

from __future__ import annotations

import discord

from voicenotify.services.config_service import GuildSettings, MonitoredChannelInfo


def build_success_embed(title: str, description: str) -> discord.Embed:
    return discord.Embed(
        title=f"✅ {title}",
        description=description,
        color=discord.Color.green(),
    )


def build_error_embed(title: str, description: str) -> discord.Embed:
    return discord.Embed(
        title=f"❌ {title}",
        description=description,
        color=discord.Color.red(),
    )


def build_config_embed(
    guild_name: str,
    settings: GuildSettings,
    channels: list[MonitoredChannelInfo],
    stats: dict[int, int] | None = None,
) -> discord.Embed:
    """Summary of a guild's notification setup for ``/notify-config list``."""
    stats = stats or {}
    embed = discord.Embed(
        title="\U0001f527 Voice Notify Configuration",
        description=f"Settings for **{guild_name}**",
        color=discord.Color.blurple(),
    )
    embed.add_field(
        name="Message Template",
        value=f"```{settings.custom_message}```",
        inline=False,
    )
    embed.add_field(name="Max Users", value=str(settings.max_users), inline=True)
    embed.add_field(name="Max Display", value=str(settings.max_display_users), inline=True)
    embed.add_field(
        name="Admin Role",
        value=f"<@&{settings.admin_role_id}>" if settings.admin_role_id else "Administrators only",
        inline=True,
    )

    if channels:
        lines = [
            f"{ch.emoji} <#{ch.channel_id}> — {stats.get(ch.channel_id, 0)} subscribers"
            for ch in channels
        ]
        embed.add_field(name="Monitored Channels", value="\n".join(lines), inline=False)
    else:
        embed.add_field(
            name="Monitored Channels",
            value="None yet — use `/notify-config add-channel`.",
            inline=False,
        )
    return embed


def build_subscription_embed(channels: list[MonitoredChannelInfo]) -> discord.Embed:
    """The message members react to in order to subscribe."""
    embed = discord.Embed(
        title="\U0001f50a Voice Channel Notifications",
        description=(
            "React with a channel's emoji to get a DM when someone joins it.\n"
            "Remove your reaction to unsubscribe."
        ),
        color=discord.Color.blurple(),
    )
    lines = [f"{ch.emoji} — **{ch.channel_name}**" for ch in channels]
    embed.add_field(name="Channels", value="\n".join(lines) or "No channels configured.", inline=False)
    embed.set_footer(text="The DM updates live while the channel stays occupied.")
    return embed
