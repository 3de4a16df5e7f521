"""
voicenotify.engine.events — Event Envelopes
============================================

Gateway payloads are normalized into these frozen dataclasses before they
reach the services, so nothing below the cogs depends on discord.py types.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["Occupant", "ChannelSnapshot", "OccupancyEvent", "ReactionEvent"]


@dataclass(frozen=True, slots=True)
class Occupant:
    """A member currently connected to a voice channel."""

    id: int
    username: str
    display_name: str
    avatar: str | None = None
    bot: bool = False

    @classmethod
    def from_member(cls, member) -> Occupant:
        """Build from a ``discord.Member`` (or anything shaped like one)."""
        return cls(
            id=member.id,
            username=member.name,
            display_name=member.display_name,
            avatar=member.avatar.key if member.avatar else None,
            bot=member.bot,
        )


@dataclass(frozen=True, slots=True)
class ChannelSnapshot:
    """A voice channel and who is in it right after the change."""

    channel_id: int
    name: str
    occupants: tuple[Occupant, ...] = ()

    @property
    def humans(self) -> list[Occupant]:
        return [o for o in self.occupants if not o.bot]

    @classmethod
    def from_channel(cls, channel) -> ChannelSnapshot:
        return cls(
            channel_id=channel.id,
            name=channel.name,
            occupants=tuple(Occupant.from_member(m) for m in channel.members),
        )


@dataclass(frozen=True, slots=True)
class OccupancyEvent:
    """A member's voice state changed.

    ``before`` is the channel they left (if any), ``after`` the channel they
    joined (if any).  Both snapshots list occupants *after* the change.
    """

    guild_id: int
    member_id: int
    before: ChannelSnapshot | None = None
    after: ChannelSnapshot | None = None
    member_is_bot: bool = False

    @property
    def is_join(self) -> bool:
        return self.before is None and self.after is not None

    @property
    def is_leave(self) -> bool:
        return self.before is not None and self.after is None

    @property
    def is_move(self) -> bool:
        return (
            self.before is not None
            and self.after is not None
            and self.before.channel_id != self.after.channel_id
        )


@dataclass(frozen=True, slots=True)
class ReactionEvent:
    """A reaction was added to or removed from a guild message."""

    guild_id: int
    message_id: int
    emoji: str
    user_id: int
    user_is_bot: bool = False
