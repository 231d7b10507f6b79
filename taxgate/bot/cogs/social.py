"""
taxgate.bot.cogs.social — Message $TAX Engine
===============================================

Listens for on_message events and runs each through the points pipeline.

Pipeline:
1. on_message fires → gate checks (bot, DM, system message, command)
2. PointsService.process_message (runs on background thread via run_db)
3. Optional reply when the award reaches ``notification_threshold``
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from taxgate.constants import CURRENCY
from taxgate.database.engine import run_db

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

logger = logging.getLogger(__name__)

_CHAT_MESSAGE_TYPES = (discord.MessageType.default, discord.MessageType.reply)


class Social(commands.Cog, name="Social"):
    """Awards $TAX for guild messages."""

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Core $TAX loop — fires on every guild message."""
        try:
            await self._handle_message(message)
        except Exception:
            logger.exception(
                "Error processing message %s from user %s",
                message.id,
                message.author.id,
                extra={"event_type": "message", "user_id": message.author.id,
                       "message_id": message.id},
            )

    async def _handle_message(self, message: discord.Message) -> None:
        """Inner message handler (separated for error isolation)."""

        # Gate 1: Ignore bots
        if message.author.bot:
            return

        # Gate 2: Ignore DMs
        if message.guild is None:
            return

        # Gate 3: Only ordinary chat (no join notices, pins, …)
        if message.type not in _CHAT_MESSAGE_TYPES:
            return

        # Gate 4: Prefix commands earn nothing
        if message.content.startswith(self.bot.cfg.bot_prefix):
            return

        is_reply = message.type == discord.MessageType.reply
        points = await run_db(
            self.bot.points_service.process_message,
            message.author.id,
            message.guild.id,
            message.content,
            is_reply,
        )
        if points <= 0:
            return

        config = await run_db(self.bot.store.get_config, message.guild.id)
        if not config.enable_point_notifications or points < config.notification_threshold:
            return

        stats = await run_db(self.bot.points_service.get_user_stats, message.author.id)
        if stats is None:
            return
        await message.reply(
            f"\U0001f4b0 +{points} {CURRENCY} points! "
            f"Total: {stats.tax_points} {CURRENCY} (Rank #{stats.rank})",
            mention_author=False,
        )


async def setup(bot: TaxGateBot) -> None:
    await bot.add_cog(Social(bot))
