"""
voicenotify.constants — Shared Constants
=========================================

Single source of truth for defaults and limits.
Import from here instead of duplicating in cogs and services.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Guild configuration defaults (applied on first /notify-config use)
# ---------------------------------------------------------------------------
DEFAULT_MESSAGE = "\U0001f50a Users in {channelName}: {userList}"  # 🔊
DEFAULT_MAX_USERS = 10
DEFAULT_MAX_DISPLAY_USERS = 5
DEFAULT_ADMIN_ROLE_NAME = "Bot Admin"

# Bounds enforced by the slash commands
MAX_USERS_RANGE: tuple[int, int] = (1, 50)
MAX_DISPLAY_RANGE: tuple[int, int] = (1, 20)
MAX_MESSAGE_LENGTH = 500
MAX_EMOJI_LENGTH = 50

# Fallback emoji for channels and templates
DEFAULT_EMOJI = "\U0001f50a"  # 🔊

# ---------------------------------------------------------------------------
# Update pipeline timing (seconds)
# ---------------------------------------------------------------------------
# Debounce window for membership-triggered DM refreshes
DEFAULT_UPDATE_DELAY = 0.5

# Minimum gap between two initial DMs to the same user in the same guild
RATE_LIMIT_SECONDS = 5.0

# Ledger entries older than this are pruned
RATE_LIMIT_HORIZON_SECONDS = 300.0
