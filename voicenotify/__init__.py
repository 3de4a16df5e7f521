"""
Voice Notify — Voice Channel Occupancy Alerts for Discord
==========================================================
Direct-messages subscribed members when people join monitored voice
channels, and keeps each DM live-updated as the channel fills and empties.
Members subscribe by reacting to a message with a channel's emoji.

Package layout::

    voicenotify/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Defaults shared by cogs and services
    ├── errors.py          # NotConfigured / Unreachable / TransientSendFailure / StoreFailure
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Guild config, subscriptions, sessions, notification state
    ├── engine/
    │   ├── events.py      # OccupancyEvent / ReactionEvent envelopes
    │   ├── formatter.py   # User-list + template rendering (pure)
    │   └── debounce.py    # Keyed, cancellable timer queue
    ├── services/
    │   ├── config_service.py        # Guild config + monitored channels
    │   ├── subscription_service.py  # Reaction-driven subscriptions
    │   ├── session_service.py       # Occupancy session lifecycle
    │   ├── message_update_service.py  # Debounced DM refresh pipeline
    │   ├── notification_service.py  # Join/leave/move state machine
    │   ├── directory.py   # Discord lookups + DM send/edit
    │   ├── throttle.py    # Initial-send rate-limit ledger
    │   └── embeds.py      # Embed builders for slash commands
    └── bot/
        ├── core.py        # Bot subclass, cog loader, startup/shutdown
        └── cogs/
            ├── voice.py     # Voice state → notification pipeline
            ├── reactions.py # Reaction add/remove → subscriptions
            ├── admin.py     # /notify-config and /notify
            └── tasks.py     # Rate-limit ledger pruning
"""

__version__ = "0.1.0"
