"""
voicenotify.bot.__main__ — Entry point for ``python -m voicenotify.bot``
========================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the VoiceNotifyBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m voicenotify.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from voicenotify.bot.core import VoiceNotifyBot
from voicenotify.config import load_config
from voicenotify.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("voicenotify")


def main() -> None:
    """Bootstrap and run the Voice Notify bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Bot: %s", cfg.bot_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = VoiceNotifyBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM; close() drains pending updates).
    logger.info("Starting Voice Notify bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
