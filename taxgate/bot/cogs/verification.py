"""
taxgate.bot.cogs.verification — Join Gate
===========================================

- on_member_join → restrict, DM the token, post the prompt, arm the timeout
- /verify token:… → redeem the token (works in DMs)
- join notices are tracked and deleted once the member is verified and
  speaks
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from taxgate.services.verification_service import REJECT_MESSAGES, RejectReason

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

logger = logging.getLogger(__name__)


class Verification(commands.Cog, name="Verification"):
    """Gates new members behind a one-time token."""

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            if member.bot:
                return
            logger.info("\U0001f44b New member: %s (%d)", member.display_name, member.id)
            await self.bot.verification.issue_challenge(
                member.guild.id, member.id, member.name, member.display_name,
            )
        except Exception:
            logger.exception(
                "Error handling new member %s", member.id,
                extra={"event_type": "member_join", "user_id": member.id},
            )

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            if message.guild is None or message.author.bot:
                return
            if message.type == discord.MessageType.new_member:
                self.bot.verification.track_join_message(
                    message.author.id, message.guild.id, message.id,
                )
                self.bot.gateway.remember_channel(message.id, message.channel.id)
                return
            await self.bot.verification.cleanup_join_message(
                message.author.id, message.guild.id,
            )
        except Exception:
            logger.exception(
                "Error tracking join notice for message %s", message.id,
                extra={"event_type": "message", "user_id": message.author.id},
            )

    @app_commands.command(name="verify", description="Redeem your verification token.")
    @app_commands.describe(token="The token the bot sent you by DM")
    async def verify(self, interaction: discord.Interaction, token: str) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            outcome = await self.bot.verification.validate_challenge(
                interaction.user.id, token, interaction.user.display_name,
            )
            reply = outcome.message
        except Exception:
            logger.exception("Error in /verify for user %s", interaction.user.id)
            reply = REJECT_MESSAGES[RejectReason.FAILED]
        await interaction.followup.send(reply, ephemeral=True)


async def setup(bot: TaxGateBot) -> None:
    await bot.add_cog(Verification(bot))
