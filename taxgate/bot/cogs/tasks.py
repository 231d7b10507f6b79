"""
taxgate.bot.cogs.tasks — Periodic Background Tasks
=====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Verification sweep** — every minute, enforces PENDING sessions whose
  deadline passed without an in-process timeout (e.g. across a restart),
  then purges closed sessions.
- **Config change log** — drains the ConfigStore's change queue and logs
  each newly written version.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from taxgate.database.engine import run_db

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.verification_sweep.start()
        self.config_changes_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.verification_sweep.cancel()
        self.config_changes_loop.cancel()

    # -------------------------------------------------------------------
    # Verification sweep — runs every minute
    # -------------------------------------------------------------------
    @tasks.loop(minutes=1)
    async def verification_sweep(self):
        """Recover missed timeouts, then purge closed sessions."""
        try:
            enforced = await self.bot.verification.recover_expired_sessions()
            purged = await run_db(self.bot.verification.purge_expired_sessions)
            if enforced or purged:
                logger.info(
                    "Verification sweep complete: %d enforced, %d purged", enforced, purged,
                )
        except Exception:
            logger.exception("Verification sweep failed", extra={"task": "verification"})

    @verification_sweep.before_loop
    async def _wait_sweep(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Config change log — runs every 30 seconds
    # -------------------------------------------------------------------
    @tasks.loop(seconds=30)
    async def config_changes_loop(self):
        """Log every configuration version written since the last tick."""
        for config in self.bot.store.drain_changes():
            logger.info(
                "Tax configuration v%d now active (updated by %s)",
                config.version, config.updated_by or "system",
            )


async def setup(bot: TaxGateBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
