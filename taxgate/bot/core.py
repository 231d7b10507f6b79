"""
taxgate.bot.core — Bot Instance & Cog Loader
=============================================

Defines :class:`TaxGateBot`, a ``commands.Bot`` subclass that:

1. Carries the shared config (``bot.cfg``), DB engine (``bot.engine``) and
   :class:`ConfigStore` (``bot.store``) so every Cog can reach them.
2. Builds the long-lived services once: points, timeout scheduler, the
   Discord gateway, and the verification state machine.
3. Loads every Cog listed in :data:`EXTENSIONS`.
4. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from taxgate.bot.gateway import DiscordGateway
from taxgate.config import TaxGateConfig
from taxgate.services.config_store import ConfigStore
from taxgate.services.points_service import PointsService
from taxgate.services.timeout_scheduler import TimeoutScheduler
from taxgate.services.verification_service import VerificationService

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "taxgate.bot.cogs.verification",
    "taxgate.bot.cogs.social",
    "taxgate.bot.cogs.meta",
    "taxgate.bot.cogs.admin",
    "taxgate.bot.cogs.tasks",
]


class TaxGateBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`TaxGateConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    store:
        The versioned points configuration store.
    """

    def __init__(self, cfg: TaxGateConfig, engine: Engine, store: ConfigStore) -> None:
        # Privileged intents (must enable in Developer Portal):
        #   MESSAGE_CONTENT — message length drives the quality multiplier
        #   GUILD_MEMBERS   — join events start verification
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — verification & $TAX points",
        )

        self.cfg = cfg
        self.engine = engine
        self.store = store

        self.points_service = PointsService(engine, store)
        self.scheduler = TimeoutScheduler()
        self.gateway = DiscordGateway(self)
        self.verification = VerificationService(
            engine,
            self.points_service,
            self.gateway,
            self.scheduler,
            timeout_seconds=cfg.verification_timeout_seconds,
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog must not stop the rest."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        self._audit_moderation_permissions()

    async def close(self) -> None:
        """Graceful shutdown — cancel timeouts and stop the listener thread."""
        logger.info("Bot shutting down…")
        await self.scheduler.shutdown()
        self.store.cache.stop_listener()
        await super().close()

    def _audit_moderation_permissions(self) -> None:
        """Warn if the bot cannot time out or kick members in the primary guild."""
        guild = self.get_guild(self.cfg.guild_id)
        if guild is None:
            logger.warning(
                "Permission audit skipped: guild %d not found", self.cfg.guild_id,
            )
            return
        me = guild.me
        if me is None:
            return
        perms = me.guild_permissions
        if not perms.moderate_members:
            logger.warning(
                "Missing Moderate Members in %s — new members cannot be restricted",
                guild.name,
            )
        if not perms.kick_members:
            logger.warning(
                "Missing Kick Members in %s — timed-out members cannot be removed",
                guild.name,
            )
