"""
voicenotify.config — YAML Configuration Loader
===============================================

**Why this file exists:**
This module reads ``config.yaml`` for **process-wide** settings (debounce
delay, rate-limit window, defaults applied to newly configured guilds).
Per-guild settings (message template, user limits, monitored channels) live
in the database and are edited with the ``/notify-config`` commands.

Usage::

    from voicenotify.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.update_delay_seconds)  # 0.5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from voicenotify.constants import (
    DEFAULT_ADMIN_ROLE_NAME,
    DEFAULT_MAX_DISPLAY_USERS,
    DEFAULT_MAX_USERS,
    DEFAULT_MESSAGE,
    DEFAULT_UPDATE_DELAY,
    RATE_LIMIT_HORIZON_SECONDS,
    RATE_LIMIT_SECONDS,
)


# ---------------------------------------------------------------------------
# Typed settings object — process-wide only.
# Per-guild settings live in the DB ``guild_configs`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class VoiceNotifyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    bot_name: str

    # Update pipeline
    update_delay_seconds: float = DEFAULT_UPDATE_DELAY
    rate_limit_seconds: float = RATE_LIMIT_SECONDS
    rate_limit_horizon_seconds: float = RATE_LIMIT_HORIZON_SECONDS

    # Defaults for guilds created by /notify-config
    default_message: str = DEFAULT_MESSAGE
    default_max_users: int = DEFAULT_MAX_USERS
    default_max_display_users: int = DEFAULT_MAX_DISPLAY_USERS
    admin_role_name: str = DEFAULT_ADMIN_ROLE_NAME


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> VoiceNotifyConfig:
    """Read *path* and return a :class:`VoiceNotifyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return VoiceNotifyConfig(
        bot_name=raw["bot_name"],
        update_delay_seconds=float(
            raw.get("update_delay_seconds", DEFAULT_UPDATE_DELAY)
        ),
        rate_limit_seconds=float(raw.get("rate_limit_seconds", RATE_LIMIT_SECONDS)),
        rate_limit_horizon_seconds=float(
            raw.get("rate_limit_horizon_seconds", RATE_LIMIT_HORIZON_SECONDS)
        ),
        default_message=raw.get("default_message") or DEFAULT_MESSAGE,
        default_max_users=int(raw.get("default_max_users", DEFAULT_MAX_USERS)),
        default_max_display_users=int(
            raw.get("default_max_display_users", DEFAULT_MAX_DISPLAY_USERS)
        ),
        admin_role_name=raw.get("admin_role_name") or DEFAULT_ADMIN_ROLE_NAME,
    )
