"""
taxgate.bot.__main__ — Entry point for ``python -m taxgate.bot``
================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the ConfigStore with its own ConfigCache.
5. Start the PG LISTEN/NOTIFY background listener.
6. Create the TaxGateBot and hand it config + engine + store.
7. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m taxgate.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from taxgate.bot.core import TaxGateBot
from taxgate.config import load_config
from taxgate.database.engine import create_db_engine, init_db
from taxgate.engine.cache import ConfigCache
from taxgate.services.config_store import ConfigStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("taxgate")


def main() -> None:
    """Bootstrap and run the TaxGate bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Infrastructure configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Versioned points configuration (defaults are created on first read).
    cache = ConfigCache(ttl_seconds=cfg.config_cache_ttl_seconds)
    store = ConfigStore(engine, cache)
    config = store.get_config()
    logger.info("Tax configuration v%d active", config.version)

    # 5. Cross-process invalidation (API writes → bot cache).
    cache.start_listener(engine)

    # 6. Bot.
    bot = TaxGateBot(cfg=cfg, engine=engine, store=store)

    # 7. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("\U0001f680 Starting TaxGate bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
