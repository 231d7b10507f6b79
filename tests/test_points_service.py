"""
tests/test_points_service.py — Points Service Integration Tests
=================================================================
Runs ``PointsService`` end to end against an in-memory SQLite database:
message awards, the verification gate, cooldown and daily cap, milestone
top-ups, the welcome bonus, stats and leaderboards.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import make_user
from taxgate.database.models import GroupActivity, User
from taxgate.services.points_service import PointsService

# Wednesday noon UTC: no weekend or night-owl multiplier
NOW = datetime(2026, 1, 14, 12, 0, tzinfo=UTC)
TEXT = "hello there friend"


@pytest.fixture
def service(db_engine, store):
    return PointsService(db_engine, store)


def _user(engine, user_id: int = 1000) -> User:
    with Session(engine) as session:
        user = session.get(User, user_id)
        session.expunge(user)
        return user


class TestProcessMessage:
    def test_unknown_user_earns_nothing(self, service):
        assert service.process_message(404, 100, TEXT, now=NOW) == 0

    def test_unverified_user_earns_nothing(self, service, db_engine):
        make_user(db_engine, verified=False)
        assert service.process_message(1000, 100, TEXT, now=NOW) == 0
        assert _user(db_engine).tax_points == 0

    def test_first_message_gets_daily_bonus(self, service, db_engine):
        make_user(db_engine)
        assert service.process_message(1000, 100, TEXT, now=NOW) == 52
        user = _user(db_engine)
        assert user.tax_points == 52
        assert user.total_points_earned == 52
        assert user.messages_count == 1
        assert user.daily_streak == 1

    def test_second_message_after_cooldown(self, service, db_engine):
        make_user(db_engine)
        service.process_message(1000, 100, TEXT, now=NOW)
        assert service.process_message(1000, 100, TEXT, now=NOW + timedelta(minutes=1)) == 2
        assert _user(db_engine).tax_points == 54

    def test_cooldown_blocks(self, service, db_engine):
        make_user(db_engine)
        service.process_message(1000, 100, TEXT, now=NOW)
        assert service.process_message(1000, 100, TEXT, now=NOW + timedelta(seconds=10)) == 0
        assert _user(db_engine).messages_count == 1

    def test_short_message_earns_nothing(self, service, db_engine):
        make_user(db_engine)
        assert service.process_message(1000, 100, "hey", now=NOW) == 0

    def test_group_counters_updated(self, service, db_engine):
        make_user(db_engine)
        service.process_message(1000, 100, TEXT, now=NOW)
        with Session(db_engine) as session:
            activity = session.get(GroupActivity, (1000, 100))
            assert activity.points_earned == 52
            assert activity.daily_points == 52
            assert activity.messages_count == 1

    def test_daily_cap_blocks(self, service, db_engine, store):
        store.update_config({"max_points_per_day": 50})
        make_user(db_engine)
        assert service.process_message(1000, 100, TEXT, now=NOW) == 52
        assert service.process_message(1000, 100, TEXT, now=NOW + timedelta(minutes=1)) == 0

    def test_daily_cap_resets_next_day(self, service, db_engine, store):
        store.update_config({"max_points_per_day": 50})
        make_user(db_engine)
        service.process_message(1000, 100, TEXT, now=NOW)
        tomorrow = NOW + timedelta(days=1)
        # Day two: bonus + streak advances to 2 (still below the first tier)
        assert service.process_message(1000, 100, TEXT, now=tomorrow) == 52
        assert _user(db_engine).daily_streak == 2

    def test_cap_is_per_group(self, service, db_engine, store):
        store.update_config({"max_points_per_day": 50})
        make_user(db_engine)
        service.process_message(1000, 100, TEXT, now=NOW)
        assert service.process_message(1000, 200, TEXT, now=NOW + timedelta(minutes=1)) > 0

    def test_group_override_used(self, service, db_engine, store):
        store.update_group_override(100, {"daily_first_message_bonus": 0})
        make_user(db_engine)
        assert service.process_message(1000, 100, TEXT, now=NOW) == 2

    def test_milestone_top_up(self, service, db_engine):
        make_user(db_engine, tax_points=960)
        assert service.process_message(1000, 100, TEXT, now=NOW) == 52
        user = _user(db_engine)
        assert user.tax_points == 960 + 52 + 100
        assert user.tax_points <= user.total_points_earned


class TestWelcomeBonus:
    def test_awards_configured_bonus(self, service, db_engine):
        make_user(db_engine, verified=True)
        assert service.award_welcome_bonus(1000, 100) == 500
        assert _user(db_engine).tax_points == 500

    def test_disabled(self, service, db_engine, store):
        store.update_config({"enable_welcome_bonus": False})
        make_user(db_engine)
        assert service.award_welcome_bonus(1000) == 0
        assert _user(db_engine).tax_points == 0

    def test_group_override_amount(self, service, db_engine, store):
        store.update_group_override(100, {"welcome_bonus": 25})
        make_user(db_engine)
        assert service.award_welcome_bonus(1000, 100) == 25

    def test_unknown_user(self, service):
        assert service.award_welcome_bonus(404) == 0

    def test_welcome_bonus_ignores_daily_cap(self, service, db_engine):
        make_user(db_engine)
        service.award_welcome_bonus(1000, 100)
        with Session(db_engine) as session:
            assert session.get(GroupActivity, (1000, 100)) is None


class TestReads:
    def test_stats_and_rank(self, service, db_engine):
        make_user(db_engine, 1, "Top", tax_points=900)
        make_user(db_engine, 2, "Mid", tax_points=500)
        make_user(db_engine, 3, "Low", tax_points=100)
        stats = service.get_user_stats(2)
        assert stats.tax_points == 500
        assert stats.rank == 2

    def test_ties_share_rank(self, service, db_engine):
        make_user(db_engine, 1, "A", tax_points=500)
        make_user(db_engine, 2, "B", tax_points=500)
        assert service.get_user_stats(1).rank == 1
        assert service.get_user_stats(2).rank == 1

    def test_stats_unknown_user(self, service):
        assert service.get_user_stats(404) is None

    def test_global_leaderboard(self, service, db_engine):
        make_user(db_engine, 1, "Low", tax_points=100)
        make_user(db_engine, 2, "High", tax_points=900)
        make_user(db_engine, 3, "Hidden", tax_points=5000, verified=False)
        make_user(db_engine, 4, "Zero", tax_points=0)
        entries = service.get_leaderboard()
        assert [(e.position, e.display_name) for e in entries] == [(1, "High"), (2, "Low")]

    def test_leaderboard_limit(self, service, db_engine):
        for i in range(1, 6):
            make_user(db_engine, i, f"U{i}", tax_points=i * 10)
        assert [e.user_id for e in service.get_leaderboard(limit=2)] == [5, 4]

    def test_group_leaderboard(self, service, db_engine):
        make_user(db_engine, 1, "Alice")
        make_user(db_engine, 2, "Bob")
        service.process_message(1, 100, TEXT, now=NOW)
        service.process_message(2, 100, "x" * 40, now=NOW)
        service.process_message(2, 200, TEXT, now=NOW + timedelta(minutes=1))
        entries = service.get_leaderboard(100)
        assert [e.display_name for e in entries] == ["Bob", "Alice"]
        assert entries[0].tax_points == 53
        assert entries[1].tax_points == 52

    def test_empty_leaderboard(self, service):
        assert service.get_leaderboard() == []
