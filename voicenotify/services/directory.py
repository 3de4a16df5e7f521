"""
voicenotify.services.directory — Platform Directory
====================================================

The narrow slice of Discord the notification services need: who is in a
voice channel, and sending / editing a DM.  Services depend on the
:class:`Directory` protocol so tests can pass a fake; the bot passes a
:class:`DiscordDirectory` wrapping its own client.

Error mapping (discord.py → :mod:`voicenotify.errors`):

=============================  ==========================
``Forbidden``                  ``Unreachable``
``NotFound`` (user)            ``Unreachable``
``NotFound`` (DM message)      ``TransientSendFailure``
other ``HTTPException``        ``TransientSendFailure``
=============================  ==========================
"""

from __future__ import annotations

import logging
from typing import Protocol

import discord

from voicenotify.engine.events import Occupant
from voicenotify.errors import TransientSendFailure, Unreachable

logger = logging.getLogger(__name__)


class Directory(Protocol):
    async def get_occupants(self, guild_id: int, channel_id: int) -> list[Occupant] | None:
        """Current members of a voice channel, or None if the channel is gone."""
        ...

    async def send_dm(self, user_id: int, content: str) -> int:
        """Send a DM and return the new message id."""
        ...

    async def edit_dm(self, user_id: int, message_id: int, content: str) -> None:
        ...


class DiscordDirectory:
    """:class:`Directory` backed by a live ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def get_occupants(self, guild_id: int, channel_id: int) -> list[Occupant] | None:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            return None
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            return None
        return [Occupant.from_member(m) for m in channel.members]

    async def _resolve_user(self, user_id: int) -> discord.User:
        user = self.client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self.client.fetch_user(user_id)
        except discord.NotFound as exc:
            raise Unreachable(user_id, "unknown user") from exc
        except discord.HTTPException as exc:
            raise TransientSendFailure(user_id, str(exc)) from exc

    async def send_dm(self, user_id: int, content: str) -> int:
        user = await self._resolve_user(user_id)
        try:
            message = await user.send(content)
        except discord.Forbidden as exc:
            raise Unreachable(user_id, "DMs closed") from exc
        except discord.HTTPException as exc:
            raise TransientSendFailure(user_id, str(exc)) from exc
        logger.debug("Sent DM %d to %s (%d)", message.id, user, user_id)
        return message.id

    async def edit_dm(self, user_id: int, message_id: int, content: str) -> None:
        user = await self._resolve_user(user_id)
        try:
            channel = user.dm_channel or await user.create_dm()
            await channel.get_partial_message(message_id).edit(content=content)
        except discord.Forbidden as exc:
            raise Unreachable(user_id, "DMs closed") from exc
        except discord.NotFound as exc:
            raise TransientSendFailure(user_id, f"message {message_id} is gone") from exc
        except discord.HTTPException as exc:
            raise TransientSendFailure(user_id, str(exc)) from exc
        logger.debug("Edited DM %d for %s (%d)", message_id, user, user_id)
