"""
voicenotify.bot.cogs.admin — Admin Slash Commands
==================================================

``/notify-config`` — per-guild setup:
- setup           — create the admin role and default configuration
- message         — set the DM template (``{channelName}``, ``{userList}``, ``{emoji}``)
- add-channel     — monitor a voice channel with a subscription emoji
- remove-channel  — stop monitoring (drops its subscriptions and session)
- max-users       — skip notifications once a channel is this full
- max-display     — how many names a DM lists before "N others"
- list            — show the current configuration

``/notify init`` — post the subscription message members react to.

All commands require the Administrator permission or the guild's
configured admin role.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands
from discord.ext import commands

from voicenotify.constants import (
    MAX_DISPLAY_RANGE,
    MAX_EMOJI_LENGTH,
    MAX_MESSAGE_LENGTH,
    MAX_USERS_RANGE,
)
from voicenotify.database.engine import run_db
from voicenotify.engine.formatter import normalize_emoji
from voicenotify.services.config_service import (
    find_channel_by_emoji,
    get_guild_settings,
    list_monitored_channels,
    remove_monitored_channel,
    upsert_guild_config,
    upsert_monitored_channel,
)
from voicenotify.services.embeds import (
    build_config_embed,
    build_error_embed,
    build_subscription_embed,
    build_success_embed,
)
from voicenotify.services.subscription_service import (
    get_subscription_stats,
    remove_channel_subscriptions,
)

if TYPE_CHECKING:
    from voicenotify.bot.core import VoiceNotifyBot

logger = logging.getLogger(__name__)


def is_bot_admin():
    """Check: guild Administrator, or holder of the guild's admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: VoiceNotifyBot = interaction.client  # type: ignore[assignment]
        user = interaction.user
        if interaction.guild_id is None or not isinstance(user, discord.Member):
            return False
        if user.guild_permissions.administrator:
            return True
        settings = await run_db(get_guild_settings, bot.engine, interaction.guild_id)
        if settings is None or settings.admin_role_id is None:
            return False
        return any(role.id == settings.admin_role_id for role in user.roles)
    return app_commands.check(predicate)


def _guild_defaults(bot: VoiceNotifyBot) -> dict[str, Any]:
    return {
        "custom_message": bot.cfg.default_message,
        "max_users": bot.cfg.default_max_users,
        "max_display_users": bot.cfg.default_max_display_users,
    }


class Admin(commands.Cog, name="Admin"):
    """Server administration commands for Voice Notify."""

    config_group = app_commands.Group(
        name="notify-config",
        description="Configure voice channel notifications",
        guild_only=True,
        default_permissions=discord.Permissions(administrator=True),
    )
    notify_group = app_commands.Group(
        name="notify",
        description="Manage notification subscriptions",
        guild_only=True,
        default_permissions=discord.Permissions(administrator=True),
    )

    def __init__(self, bot: VoiceNotifyBot) -> None:
        self.bot = bot

    async def _update_guild(self, guild: discord.Guild, **changes: Any):
        return await run_db(
            upsert_guild_config,
            self.bot.engine,
            guild.id,
            guild.name,
            defaults=_guild_defaults(self.bot),
            **changes,
        )

    # -------------------------------------------------------------------
    # /notify-config setup
    # -------------------------------------------------------------------
    @config_group.command(name="setup", description="Initial setup: admin role and defaults.")
    @is_bot_admin()
    async def setup_guild(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        assert guild is not None
        await interaction.response.defer(ephemeral=True)

        role_name = self.bot.cfg.admin_role_name
        role = discord.utils.get(guild.roles, name=role_name)
        if role is None:
            try:
                role = await guild.create_role(
                    name=role_name,
                    reason="Voice Notify: admin role for /notify-config",
                )
                logger.info("Created %s role in guild %s", role_name, guild.name)
            except discord.Forbidden:
                await interaction.followup.send(
                    embed=build_error_embed(
                        "Setup Failed",
                        f"I don't have permission to create the **{role_name}** role.",
                    ),
                    ephemeral=True,
                )
                return

        await self._update_guild(guild, admin_role_id=role.id)
        await interaction.followup.send(
            embed=build_success_embed(
                "Setup Complete",
                f"Members with {role.mention} can now manage notifications.\n"
                "Next: `/notify-config add-channel`, then `/notify init`.",
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify-config message
    # -------------------------------------------------------------------
    @config_group.command(name="message", description="Set the notification DM template.")
    @app_commands.describe(text="Template; use {channelName}, {userList} and {emoji}")
    @is_bot_admin()
    async def set_message(
        self,
        interaction: discord.Interaction,
        text: app_commands.Range[str, 1, MAX_MESSAGE_LENGTH],
    ) -> None:
        assert interaction.guild is not None
        await self._update_guild(interaction.guild, custom_message=text)
        await interaction.response.send_message(
            embed=build_success_embed("Message Updated", f"Notification message set to:\n`{text}`"),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify-config add-channel
    # -------------------------------------------------------------------
    @config_group.command(name="add-channel", description="Monitor a voice channel.")
    @app_commands.describe(
        voice_channel="Voice channel to monitor",
        emoji="Emoji members react with to subscribe",
    )
    @app_commands.rename(voice_channel="voice-channel")
    @is_bot_admin()
    async def add_channel(
        self,
        interaction: discord.Interaction,
        voice_channel: discord.VoiceChannel,
        emoji: app_commands.Range[str, 1, MAX_EMOJI_LENGTH],
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        normalized = normalize_emoji(emoji)

        taken = await run_db(find_channel_by_emoji, self.bot.engine, guild.id, normalized)
        if taken is not None and taken.channel_id != voice_channel.id:
            await interaction.response.send_message(
                embed=build_error_embed(
                    "Emoji In Use",
                    f"{normalized} is already used for **{taken.channel_name}**.",
                ),
                ephemeral=True,
            )
            return

        await self._update_guild(guild)
        await run_db(
            upsert_monitored_channel,
            self.bot.engine,
            guild.id,
            voice_channel.id,
            voice_channel.name,
            normalized,
        )
        await interaction.response.send_message(
            embed=build_success_embed(
                "Channel Added",
                f"Now monitoring {voice_channel.mention} with {normalized}.\n"
                "Run `/notify init` again to refresh the subscription message.",
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify-config remove-channel
    # -------------------------------------------------------------------
    @config_group.command(name="remove-channel", description="Stop monitoring a voice channel.")
    @app_commands.describe(voice_channel="Voice channel to stop monitoring")
    @app_commands.rename(voice_channel="voice-channel")
    @is_bot_admin()
    async def remove_channel(
        self,
        interaction: discord.Interaction,
        voice_channel: discord.VoiceChannel,
    ) -> None:
        guild = interaction.guild
        assert guild is not None

        removed = await run_db(remove_monitored_channel, self.bot.engine, guild.id, voice_channel.id)
        if not removed:
            await interaction.response.send_message(
                embed=build_error_embed(
                    "Not Monitored", f"{voice_channel.mention} isn't being monitored.",
                ),
                ephemeral=True,
            )
            return

        subs = await run_db(remove_channel_subscriptions, self.bot.engine, guild.id, voice_channel.id)
        await self.bot.sessions.end_session(guild.id, voice_channel.id)
        await interaction.response.send_message(
            embed=build_success_embed(
                "Channel Removed",
                f"Stopped monitoring {voice_channel.mention} ({subs} subscriptions removed).",
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify-config max-users & max-display
    # -------------------------------------------------------------------
    @config_group.command(name="max-users", description="Skip notifications above this many users.")
    @app_commands.describe(number="Maximum number of users (1-50)")
    @is_bot_admin()
    async def max_users(
        self,
        interaction: discord.Interaction,
        number: app_commands.Range[int, MAX_USERS_RANGE[0], MAX_USERS_RANGE[1]],
    ) -> None:
        assert interaction.guild is not None
        await self._update_guild(interaction.guild, max_users=number)
        await interaction.response.send_message(
            embed=build_success_embed(
                "Max Users Updated",
                f"Notifications are skipped once a channel has more than {number} users.",
            ),
            ephemeral=True,
        )

    @config_group.command(name="max-display", description="How many names a DM lists.")
    @app_commands.describe(number="Maximum users to display (1-20)")
    @is_bot_admin()
    async def max_display(
        self,
        interaction: discord.Interaction,
        number: app_commands.Range[int, MAX_DISPLAY_RANGE[0], MAX_DISPLAY_RANGE[1]],
    ) -> None:
        assert interaction.guild is not None
        await self._update_guild(interaction.guild, max_display_users=number)
        await interaction.response.send_message(
            embed=build_success_embed(
                "Max Display Updated", f"DMs now list at most {number} names.",
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify-config list
    # -------------------------------------------------------------------
    @config_group.command(name="list", description="Show the current configuration.")
    @is_bot_admin()
    async def list_config(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        assert guild is not None

        settings = await run_db(get_guild_settings, self.bot.engine, guild.id)
        if settings is None:
            await interaction.response.send_message(
                embed=build_error_embed(
                    "Not Configured", "Run `/notify-config setup` first.",
                ),
                ephemeral=True,
            )
            return

        channels = await run_db(list_monitored_channels, self.bot.engine, guild.id)
        stats = await run_db(get_subscription_stats, self.bot.engine, guild.id)
        await interaction.response.send_message(
            embed=build_config_embed(guild.name, settings, channels, stats),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /notify init
    # -------------------------------------------------------------------
    @notify_group.command(name="init", description="Post the subscription message.")
    @app_commands.describe(text_channel="Text channel to post the subscription message in")
    @app_commands.rename(text_channel="text-channel")
    @is_bot_admin()
    async def init_subscriptions(
        self,
        interaction: discord.Interaction,
        text_channel: discord.TextChannel,
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        await interaction.response.defer(ephemeral=True)

        perms = text_channel.permissions_for(guild.me)
        missing = [
            name for name, ok in (
                ("View Channel", perms.view_channel),
                ("Send Messages", perms.send_messages),
                ("Embed Links", perms.embed_links),
                ("Add Reactions", perms.add_reactions),
            ) if not ok
        ]
        if missing:
            await interaction.followup.send(
                embed=build_error_embed(
                    "Missing Permissions",
                    f"I'm missing these permissions in {text_channel.mention}:\n"
                    + "\n".join(f"• {p}" for p in missing),
                ),
                ephemeral=True,
            )
            return

        channels = await run_db(list_monitored_channels, self.bot.engine, guild.id)
        valid = []
        for ch in channels:
            if guild.get_channel(ch.channel_id) is not None:
                valid.append(ch)
                continue
            # Voice channel was deleted while we weren't watching
            await run_db(remove_monitored_channel, self.bot.engine, guild.id, ch.channel_id)
            await run_db(remove_channel_subscriptions, self.bot.engine, guild.id, ch.channel_id)
            logger.info("Removed deleted voice channel %s from monitoring", ch.channel_name)

        if not valid:
            await interaction.followup.send(
                embed=build_error_embed(
                    "No Monitored Channels",
                    "No voice channels are configured.  Use `/notify-config add-channel` first.",
                ),
                ephemeral=True,
            )
            return

        message = await text_channel.send(embed=build_subscription_embed(valid))
        for ch in valid:
            try:
                await message.add_reaction(ch.emoji)
            except discord.HTTPException:
                logger.warning("Could not add reaction %s for %s", ch.emoji, ch.channel_name)

        logger.info(
            "Created subscription message in #%s (%d) for guild %s",
            text_channel.name, text_channel.id, guild.name,
        )
        await interaction.followup.send(
            embed=build_success_embed(
                "Subscription Message Created",
                f"Posted in {text_channel.mention} with {len(valid)} channels.",
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler for missing permissions
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            embed = build_error_embed(
                "Permission Denied",
                "You need Administrator or the bot admin role to use this command.",
            )
        else:
            logger.exception("Admin command failed", exc_info=error)
            embed = build_error_embed("Command Failed", "Something went wrong; check the bot logs.")

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: VoiceNotifyBot) -> None:
    await bot.add_cog(Admin(bot))
