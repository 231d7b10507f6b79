"""
tests/test_bot_gateway.py — Discord Gateway Tests
===================================================
Exercises ``DiscordGateway`` against mocked discord.py guilds, members
and channels: timeouts, kicks, the DM + prompt challenge, and prompt
edits/deletes.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from taxgate.bot import gateway as gateway_mod
from taxgate.bot.gateway import RESTRICT_DURATION, DiscordGateway

GUILD_ID = 100
MEMBER_ID = 42


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _make_channel(channel_id: int = 500, sent_id: int = 555) -> MagicMock:
    ch = MagicMock(spec=discord.TextChannel)
    ch.id = channel_id
    ch.send = AsyncMock(return_value=SimpleNamespace(id=sent_id))
    partial = MagicMock()
    partial.edit = AsyncMock()
    partial.delete = AsyncMock()
    ch.get_partial_message = MagicMock(return_value=partial)
    return ch


def _make_member() -> MagicMock:
    member = MagicMock()
    member.timeout = AsyncMock()
    member.kick = AsyncMock()
    member.send = AsyncMock()
    return member


@pytest.fixture
def member():
    return _make_member()


@pytest.fixture
def system_channel():
    return _make_channel()


@pytest.fixture
def guild(member, system_channel):
    g = MagicMock()
    g.id = GUILD_ID
    g.name = "Tax Haven"
    g.get_member = MagicMock(return_value=member)
    g.fetch_member = AsyncMock(return_value=member)
    g.get_channel = MagicMock(return_value=None)
    g.system_channel = system_channel
    return g


@pytest.fixture
def gateway(guild):
    bot = MagicMock()
    bot.cfg = SimpleNamespace(verify_channel_id=None, verification_timeout_seconds=300)
    bot.get_guild = MagicMock(side_effect=lambda gid: guild if gid == GUILD_ID else None)
    return DiscordGateway(bot)


class TestModeration:
    def test_restrict_times_member_out(self, gateway, member):
        run_async(gateway.restrict_member(GUILD_ID, MEMBER_ID))
        args, kwargs = member.timeout.call_args
        assert args[0] == RESTRICT_DURATION
        assert "verification" in kwargs["reason"]

    def test_restore_clears_timeout(self, gateway, member):
        run_async(gateway.restore_member(GUILD_ID, MEMBER_ID))
        assert member.timeout.call_args[0][0] is None

    def test_remove_kicks(self, gateway, member):
        run_async(gateway.remove_member(GUILD_ID, MEMBER_ID))
        member.kick.assert_awaited_once()

    def test_uncached_member_is_fetched(self, gateway, guild, member):
        guild.get_member.return_value = None
        run_async(gateway.remove_member(GUILD_ID, MEMBER_ID))
        guild.fetch_member.assert_awaited_once_with(MEMBER_ID)
        member.kick.assert_awaited_once()

    def test_unknown_guild_raises(self, gateway):
        with pytest.raises(LookupError):
            run_async(gateway.restrict_member(999, MEMBER_ID))


class TestChallengePrompt:
    def test_dm_and_prompt(self, gateway, member, system_channel):
        prompt_id = run_async(gateway.post_challenge(GUILD_ID, MEMBER_ID, "Alice", "TOKEN123"))
        assert prompt_id == 555
        dm_text = member.send.call_args[0][0]
        assert "/verify token:TOKEN123" in dm_text
        assert "5 minutes" in dm_text
        prompt_text = system_channel.send.call_args[0][0]
        assert f"<@{MEMBER_ID}>" in prompt_text
        assert "TOKEN123" not in prompt_text

    def test_prefers_configured_verify_channel(self, gateway, guild, system_channel):
        verify_channel = _make_channel(channel_id=600, sent_id=777)
        gateway.bot.cfg = SimpleNamespace(verify_channel_id=600, verification_timeout_seconds=300)
        guild.get_channel = MagicMock(side_effect=lambda cid: verify_channel if cid == 600 else None)
        assert run_async(gateway.post_challenge(GUILD_ID, MEMBER_ID, "Alice", "T")) == 777
        system_channel.send.assert_not_awaited()

    def test_closed_dms_still_post_prompt(self, gateway, member, system_channel):
        response = MagicMock(status=403, reason="Forbidden")
        member.send.side_effect = discord.Forbidden(response, "Cannot send messages to this user")
        assert run_async(gateway.post_challenge(GUILD_ID, MEMBER_ID, "Alice", "T")) == 555
        system_channel.send.assert_awaited_once()

    def test_no_prompt_channel(self, gateway, guild):
        guild.system_channel = None
        assert run_async(gateway.post_challenge(GUILD_ID, MEMBER_ID, "Alice", "T")) is None


class TestPromptMessages:
    def test_edit_uses_remembered_channel(self, gateway, guild):
        channel = _make_channel(channel_id=700)
        guild.get_channel = MagicMock(side_effect=lambda cid: channel if cid == 700 else None)
        gateway.remember_channel(321, 700)
        run_async(gateway.edit_message(GUILD_ID, 321, "done"))
        channel.get_partial_message.assert_called_once_with(321)
        channel.get_partial_message.return_value.edit.assert_awaited_once_with(content="done")

    def test_delete_falls_back_to_prompt_channel(self, gateway, system_channel):
        run_async(gateway.delete_message(GUILD_ID, 555))
        system_channel.get_partial_message.return_value.delete.assert_awaited_once()

    def test_delete_without_any_channel_raises(self, gateway, guild):
        guild.system_channel = None
        with pytest.raises(LookupError):
            run_async(gateway.delete_message(GUILD_ID, 555))

    def test_edited_prompt_is_forgotten(self, gateway, guild):
        channel = _make_channel(channel_id=700)
        guild.get_channel = MagicMock(side_effect=lambda cid: channel if cid == 700 else None)
        gateway.remember_channel(321, 700)
        run_async(gateway.edit_message(GUILD_ID, 321, "done"))
        assert 321 not in gateway._message_channels

    def test_deleted_notice_is_forgotten(self, gateway, guild):
        channel = _make_channel(channel_id=700)
        guild.get_channel = MagicMock(side_effect=lambda cid: channel if cid == 700 else None)
        gateway.remember_channel(321, 700)
        run_async(gateway.delete_message(GUILD_ID, 321))
        assert 321 not in gateway._message_channels

    def test_remembered_channels_are_bounded(self, gateway, monkeypatch):
        monkeypatch.setattr(gateway_mod, "MAX_REMEMBERED_MESSAGES", 3)
        for message_id in range(1, 6):
            gateway.remember_channel(message_id, 700)
        assert list(gateway._message_channels) == [3, 4, 5]

    def test_posted_prompt_is_remembered(self, gateway, system_channel):
        prompt_id = run_async(gateway.post_challenge(GUILD_ID, MEMBER_ID, "Alice", "T"))
        assert gateway._message_channels[prompt_id] == system_channel.id
