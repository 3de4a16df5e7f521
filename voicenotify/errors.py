"""
voicenotify.errors — Error Kinds
=================================

Every failure the notification pipeline distinguishes between:

- :class:`NotConfigured` — guild or channel isn't set up.  Ignored quietly.
- :class:`Unreachable` — the recipient can't receive DMs.  The notification
  is deactivated, never retried.
- :class:`TransientSendFailure` — an edit/send failed for reasons not tied
  to the recipient.  One replacement send is attempted.
- :class:`StoreFailure` — the database rejected the operation.  Propagated
  and logged; only the current unit of work is abandoned.
"""

from __future__ import annotations


class VoiceNotifyError(Exception):
    """Base class for all Voice Notify errors."""


class NotConfigured(VoiceNotifyError):
    """The guild has no configuration or the channel isn't monitored."""

    def __init__(self, guild_id: int, channel_id: int | None = None) -> None:
        self.guild_id = guild_id
        self.channel_id = channel_id
        target = f"channel {channel_id} in guild {guild_id}" if channel_id else f"guild {guild_id}"
        super().__init__(f"{target} is not configured for notifications")


class Unreachable(VoiceNotifyError):
    """The recipient has DMs closed, blocked the bot, or no longer exists."""

    def __init__(self, user_id: int, reason: str = "") -> None:
        self.user_id = user_id
        super().__init__(f"user {user_id} cannot receive DMs{': ' + reason if reason else ''}")


class TransientSendFailure(VoiceNotifyError):
    """A DM edit or send failed for reasons unrelated to the recipient."""

    def __init__(self, user_id: int, reason: str = "") -> None:
        self.user_id = user_id
        super().__init__(f"DM delivery to user {user_id} failed{': ' + reason if reason else ''}")


class StoreFailure(VoiceNotifyError):
    """The persistence layer raised while handling a unit of work."""
