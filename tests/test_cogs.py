"""
tests/test_cogs.py — Cog Listener & Command Tests
===================================================
Drives the Social and Verification cogs with a lightweight mock bot:
message gating, point notifications, join handling, join-notice
tracking, the /verify command reply, and /taxconfig apitoken.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import jwt
import pytest

from taxgate.api.tokens import JWT_ALGORITHM
from taxgate.bot.cogs.admin import Admin, parse_field_value
from taxgate.bot.cogs.social import Social
from taxgate.bot.cogs.verification import Verification
from taxgate.engine.tax_config import DEFAULT_CONFIG, validate_updates
from taxgate.services.points_service import UserStats
from taxgate.services.verification_service import ChallengeOutcome, RejectReason


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _make_bot(config=DEFAULT_CONFIG) -> MagicMock:
    """Create a lightweight mock TaxGateBot."""
    bot = MagicMock()
    bot.cfg = SimpleNamespace(bot_prefix="!")
    bot.store.get_config = MagicMock(return_value=config)
    bot.points_service.process_message = MagicMock(return_value=0)
    bot.points_service.get_user_stats = MagicMock(
        return_value=UserStats(tax_points=120, total_earned=120, streak=1, messages=3, rank=4),
    )
    bot.verification.issue_challenge = AsyncMock()
    bot.verification.cleanup_join_message = AsyncMock(return_value=False)
    bot.verification.track_join_message = MagicMock()
    bot.verification.validate_challenge = AsyncMock()
    return bot


def _make_message(
    *,
    content: str = "hello there friend",
    bot_author: bool = False,
    guild: bool = True,
    msg_type: discord.MessageType = discord.MessageType.default,
) -> MagicMock:
    msg = MagicMock()
    msg.id = 9001
    msg.content = content
    msg.type = msg_type
    msg.author.id = 42
    msg.author.bot = bot_author
    msg.guild = SimpleNamespace(id=100) if guild else None
    msg.channel.id = 500
    msg.reply = AsyncMock()
    return msg


# ===========================================================================
# Social — message → $TAX
# ===========================================================================
class TestSocialGates:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"bot_author": True},
            {"guild": False},
            {"msg_type": discord.MessageType.new_member},
            {"msg_type": discord.MessageType.pins_add},
            {"content": "!points"},
        ],
    )
    def test_gated_messages_skip_pipeline(self, kwargs):
        bot = _make_bot()
        run_async(Social(bot).on_message(_make_message(**kwargs)))
        bot.points_service.process_message.assert_not_called()

    def test_plain_message_processed(self):
        bot = _make_bot()
        run_async(Social(bot).on_message(_make_message()))
        bot.points_service.process_message.assert_called_once_with(
            42, 100, "hello there friend", False,
        )

    def test_reply_flag(self):
        bot = _make_bot()
        run_async(Social(bot).on_message(_make_message(msg_type=discord.MessageType.reply)))
        assert bot.points_service.process_message.call_args[0][3] is True


class TestSocialNotifications:
    def test_no_reply_when_disabled(self):
        bot = _make_bot()
        bot.points_service.process_message.return_value = 52
        msg = _make_message()
        run_async(Social(bot).on_message(msg))
        msg.reply.assert_not_awaited()

    def test_reply_when_threshold_met(self):
        bot = _make_bot(replace(DEFAULT_CONFIG, enable_point_notifications=True))
        bot.points_service.process_message.return_value = 52
        msg = _make_message()
        run_async(Social(bot).on_message(msg))
        text = msg.reply.call_args[0][0]
        assert text == "\U0001f4b0 +52 $TAX points! Total: 120 $TAX (Rank #4)"

    def test_no_reply_below_threshold(self):
        bot = _make_bot(replace(DEFAULT_CONFIG, enable_point_notifications=True))
        bot.points_service.process_message.return_value = 2
        msg = _make_message()
        run_async(Social(bot).on_message(msg))
        msg.reply.assert_not_awaited()

    def test_pipeline_error_is_contained(self):
        bot = _make_bot()
        bot.points_service.process_message.side_effect = RuntimeError("db down")
        run_async(Social(bot).on_message(_make_message()))


# ===========================================================================
# Verification — join gate
# ===========================================================================
class TestVerificationCog:
    def test_member_join_issues_challenge(self):
        bot = _make_bot()
        member = MagicMock()
        member.bot = False
        member.id = 42
        member.name = "alice"
        member.display_name = "Alice"
        member.guild.id = 100
        run_async(Verification(bot).on_member_join(member))
        bot.verification.issue_challenge.assert_awaited_once_with(100, 42, "alice", "Alice")

    def test_bot_join_ignored(self):
        bot = _make_bot()
        member = MagicMock()
        member.bot = True
        run_async(Verification(bot).on_member_join(member))
        bot.verification.issue_challenge.assert_not_awaited()

    def test_join_notice_tracked(self):
        bot = _make_bot()
        msg = _make_message(msg_type=discord.MessageType.new_member)
        run_async(Verification(bot).on_message(msg))
        bot.verification.track_join_message.assert_called_once_with(42, 100, 9001)
        bot.gateway.remember_channel.assert_called_once_with(9001, 500)
        bot.verification.cleanup_join_message.assert_not_awaited()

    def test_regular_message_triggers_cleanup(self):
        bot = _make_bot()
        run_async(Verification(bot).on_message(_make_message()))
        bot.verification.cleanup_join_message.assert_awaited_once_with(42, 100)

    def _interaction(self) -> MagicMock:
        interaction = MagicMock()
        interaction.user.id = 42
        interaction.user.display_name = "Alice"
        interaction.response.defer = AsyncMock()
        interaction.followup.send = AsyncMock()
        return interaction

    def test_verify_command_replies_with_outcome(self):
        bot = _make_bot()
        bot.verification.validate_challenge.return_value = ChallengeOutcome(
            ok=False, reason=RejectReason.NOT_FOR_YOU,
        )
        interaction = self._interaction()
        cog = Verification(bot)
        run_async(cog.verify.callback(cog, interaction, "abc"))
        bot.verification.validate_challenge.assert_awaited_once_with(42, "abc", "Alice")
        interaction.followup.send.assert_awaited_once_with(
            "❌ This verification link is not for you.", ephemeral=True,
        )

    def test_verify_command_error_reply(self):
        bot = _make_bot()
        bot.verification.validate_challenge.side_effect = RuntimeError("boom")
        interaction = self._interaction()
        cog = Verification(bot)
        run_async(cog.verify.callback(cog, interaction, "abc"))
        interaction.followup.send.assert_awaited_once_with(
            "❌ Verification failed. Please try again.", ephemeral=True,
        )


# ===========================================================================
# Admin — /taxconfig value parsing
# ===========================================================================
class TestParseFieldValue:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("750", 750),
            ("1.5", 1.5),
            ("true", True),
            ("Off", False),
            ('[{"days": 3, "multiplier": 1.2}]', [{"days": 3, "multiplier": 1.2}]),
            ("banana", "banana"),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_field_value(raw) == expected

    def test_non_finite_json_is_parsed_then_rejected(self):
        value = parse_field_value("NaN")
        assert value != value
        assert validate_updates({"welcome_bonus": value}) == {}


# ===========================================================================
# Admin — /taxconfig apitoken
# ===========================================================================
class TestApiToken:
    def _interaction(self) -> MagicMock:
        interaction = MagicMock()
        interaction.user.id = 4242
        interaction.user.name = "alice"
        interaction.response.send_message = AsyncMock()
        return interaction

    def test_token_is_sent_ephemerally(self):
        cog = Admin(_make_bot())
        interaction = self._interaction()
        run_async(cog.apitoken.callback(cog, interaction))
        args, kwargs = interaction.response.send_message.call_args
        assert kwargs["ephemeral"] is True
        token = args[0].split("`")[1]
        payload = jwt.decode(token, os.environ["JWT_SECRET"], algorithms=[JWT_ALGORITHM])
        assert payload["sub"] == "4242"
        assert payload["is_admin"] is True

    def test_unconfigured_secret_is_reported(self):
        cog = Admin(_make_bot())
        interaction = self._interaction()
        with patch.dict(os.environ, {"JWT_SECRET": "change-me"}):
            run_async(cog.apitoken.callback(cog, interaction))
        text = interaction.response.send_message.call_args[0][0]
        assert "not configured" in text
