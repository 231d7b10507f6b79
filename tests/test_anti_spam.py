"""
tests/test_anti_spam.py — Cooldown, Daily Cap & Milestone Checks
=================================================================
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from taxgate.engine.anti_spam import (
    cooldown_elapsed,
    daily_cap_reached,
    find_milestone,
)
from taxgate.engine.tax_config import DEFAULT_CONFIG, Milestone

NOW = datetime(2026, 1, 14, 12, 0, tzinfo=UTC)


class TestCooldown:
    def test_never_awarded(self):
        assert cooldown_elapsed(None, DEFAULT_CONFIG, NOW) is True

    def test_within_cooldown(self):
        assert cooldown_elapsed(NOW - timedelta(seconds=29), DEFAULT_CONFIG, NOW) is False

    def test_exactly_at_cooldown(self):
        assert cooldown_elapsed(NOW - timedelta(seconds=30), DEFAULT_CONFIG, NOW) is True

    def test_zero_cooldown(self):
        config = replace(DEFAULT_CONFIG, cooldown_seconds=0)
        assert cooldown_elapsed(NOW, config, NOW) is True

    def test_naive_timestamp_treated_as_utc(self):
        naive = datetime(2026, 1, 14, 11, 59, 50)
        assert cooldown_elapsed(naive, DEFAULT_CONFIG, NOW) is False


class TestDailyCap:
    def test_cap_reached_at_limit(self):
        assert daily_cap_reached(500, DEFAULT_CONFIG) is True
        assert daily_cap_reached(499, DEFAULT_CONFIG) is False


class TestMilestones:
    @pytest.mark.parametrize(
        "old, new, expected",
        [
            (950, 1050, Milestone(1000, 100)),
            (999, 1000, Milestone(1000, 100)),
            (1000, 1100, None),
            (1050, 1100, None),
            (4000, 5500, Milestone(5000, 250)),
        ],
    )
    def test_crossing(self, old, new, expected):
        assert find_milestone(old, new, DEFAULT_CONFIG) == expected

    def test_only_first_crossed_when_jumping_several(self):
        assert find_milestone(0, 20000, DEFAULT_CONFIG) == Milestone(1000, 100)
