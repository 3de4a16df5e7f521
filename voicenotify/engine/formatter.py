"""
voicenotify.engine.formatter — Notification Text Rendering
===========================================================

Pure functions: user list → readable sentence fragment, template →
DM content.  No I/O, no state.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from voicenotify.constants import DEFAULT_EMOJI

logger = logging.getLogger(__name__)

_CUSTOM_EMOJI_RE = re.compile(r"^<a?:[A-Za-z0-9_]+:\d+>$")

# Same ranges the subscription message accepts: emoticons, symbols &
# pictographs, transport, flags, misc symbols, dingbats, supplemental.
_UNICODE_EMOJI_RE = re.compile(
    "[\U0001f600-\U0001f64f"
    "\U0001f300-\U0001f5ff"
    "\U0001f680-\U0001f6ff"
    "\U0001f1e0-\U0001f1ff"
    "\U0001f900-\U0001f9ff"
    "\u2600-\u26ff"
    "\u2700-\u27bf]"
)


def format_user_list(names: Sequence[str], max_display: int = 5) -> str:
    """Join *names* into ``"A"``, ``"A and B"`` or ``"A, B, and C"``.

    When there are more names than *max_display*, the ``"N others"`` tail
    takes the last display slot::

        >>> format_user_list(["A", "B", "C", "D", "E", "F"], 3)
        'A, B, and 4 others'
    """
    names = list(names)
    if not names:
        return "No users"

    if len(names) <= max_display:
        if len(names) == 1:
            return names[0]
        if len(names) == 2:
            return f"{names[0]} and {names[1]}"
        return f"{', '.join(names[:-1])}, and {names[-1]}"

    shown = names[: max(max_display - 1, 1)]
    remaining = len(names) - len(shown)
    others = f"{remaining} other{'' if remaining == 1 else 's'}"
    if len(shown) == 1:
        return f"{shown[0]} and {others}"
    return f"{', '.join(shown)}, and {others}"


def format_notification_message(
    template: str,
    *,
    channel_name: str,
    user_list: str,
    emoji: str | None = None,
) -> str:
    """Fill ``{channelName}``, ``{userList}`` and ``{emoji}`` in *template*.

    Templates are admin-supplied free text, so placeholders are replaced
    literally rather than with :meth:`str.format`.
    """
    message = template.replace("{channelName}", channel_name)
    message = message.replace("{userList}", user_list)
    message = message.replace("{emoji}", emoji or DEFAULT_EMOJI)
    if not message.strip():
        logger.warning("Notification template rendered empty; using fallback text")
        return f"{DEFAULT_EMOJI} Users in {channel_name}: {user_list}"
    return message


def normalize_emoji(raw: str) -> str:
    """Return the canonical string form of a channel emoji.

    Custom emoji (``<:name:id>`` / ``<a:name:id>``) are kept verbatim, as is
    any string carrying a Unicode emoji.  Anything else becomes 🔊.
    """
    value = (raw or "").strip()
    if _CUSTOM_EMOJI_RE.match(value):
        return value
    if value and _UNICODE_EMOJI_RE.search(value):
        return value
    return DEFAULT_EMOJI
