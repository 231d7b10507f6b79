"""
taxgate.bot.gateway — discord.py implementation of GroupGateway
================================================================

How the abstract verification steps map onto Discord:

===================  ============================================
restrict_member      member timeout (cannot post, react or speak)
restore_member       clear the timeout
remove_member        kick (the member may rejoin immediately)
post_challenge       DM the token + post a prompt in the verify
                     channel (or the guild's system channel)
===================  ============================================

A timed-out member cannot use components in the guild, so the token
travels by DM and is redeemed there with ``/verify``.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

logger = logging.getLogger(__name__)

# Long enough to outlive the verification window plus a missed sweep
RESTRICT_DURATION = timedelta(hours=1)

# Upper bound on remembered prompt and join-notice channels
MAX_REMEMBERED_MESSAGES = 1000


class DiscordGateway:
    """Executes verification side effects through the bot's connection."""

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot
        # message id → channel id for prompts and join notices we may touch later;
        # each is edited or deleted at most once
        self._message_channels: OrderedDict[int, int] = OrderedDict()

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def _guild(self, group_id: int) -> discord.Guild:
        guild = self.bot.get_guild(group_id)
        if guild is None:
            raise LookupError(f"Guild {group_id} is not available")
        return guild

    async def _member(self, group_id: int, member_id: int) -> discord.Member:
        guild = self._guild(group_id)
        return guild.get_member(member_id) or await guild.fetch_member(member_id)

    def _prompt_channel(self, guild: discord.Guild) -> discord.TextChannel | None:
        channel_id = self.bot.cfg.verify_channel_id
        if channel_id:
            channel = guild.get_channel(channel_id)
            if isinstance(channel, discord.TextChannel):
                return channel
        return guild.system_channel

    def _channel_for(self, group_id: int, message_id: int) -> discord.TextChannel:
        guild = self._guild(group_id)
        channel_id = self._message_channels.get(message_id)
        channel = guild.get_channel(channel_id) if channel_id else self._prompt_channel(guild)
        if not isinstance(channel, discord.TextChannel):
            raise LookupError(f"No channel known for message {message_id}")
        return channel

    def remember_channel(self, message_id: int, channel_id: int) -> None:
        self._message_channels[message_id] = channel_id
        self._message_channels.move_to_end(message_id)
        while len(self._message_channels) > MAX_REMEMBERED_MESSAGES:
            self._message_channels.popitem(last=False)

    # -------------------------------------------------------------------
    # GroupGateway
    # -------------------------------------------------------------------
    async def restrict_member(self, group_id: int, member_id: int) -> None:
        member = await self._member(group_id, member_id)
        await member.timeout(RESTRICT_DURATION, reason="TaxGate: awaiting verification")

    async def restore_member(self, group_id: int, member_id: int) -> None:
        member = await self._member(group_id, member_id)
        await member.timeout(None, reason="TaxGate: verified")

    async def remove_member(self, group_id: int, member_id: int) -> None:
        member = await self._member(group_id, member_id)
        await member.kick(reason="TaxGate: verification timed out")

    async def post_challenge(
        self, group_id: int, member_id: int, display_name: str, token: str
    ) -> int | None:
        guild = self._guild(group_id)
        minutes = max(1, self.bot.cfg.verification_timeout_seconds // 60)

        try:
            member = await self._member(group_id, member_id)
            await member.send(
                f"\U0001f44b Welcome to **{guild.name}**, {display_name}!\n\n"
                f"\U0001f512 To unlock the chat, run this here within {minutes} minutes:\n"
                f"`/verify token:{token}`"
            )
        except discord.HTTPException:
            logger.warning("Could not DM the challenge to member %d", member_id)

        channel = self._prompt_channel(guild)
        if channel is None:
            logger.warning("No prompt channel in guild %d", group_id)
            return None
        prompt = await channel.send(
            f"\U0001f44b Welcome <@{member_id}>!\n\n"
            "\U0001f512 Check your DMs and use `/verify` to gain access to the chat.",
            allowed_mentions=discord.AllowedMentions(users=True),
        )
        self.remember_channel(prompt.id, channel.id)
        return prompt.id

    async def edit_message(self, group_id: int, message_id: int, text: str) -> None:
        channel = self._channel_for(group_id, message_id)
        self._message_channels.pop(message_id, None)
        await channel.get_partial_message(message_id).edit(content=text)

    async def delete_message(self, group_id: int, message_id: int) -> None:
        channel = self._channel_for(group_id, message_id)
        self._message_channels.pop(message_id, None)
        await channel.get_partial_message(message_id).delete()
