"""
taxgate.engine.points — Per-Message Points Pipeline
=====================================================

Pure calculation pipeline.  No Discord I/O, no DB I/O inside the engine.

Pipeline stages (in order):
  base → quality (may zero out) → reply bonus → daily-first bonus + streak
  → streak multiplier → time multiplier → diminishing returns → round/floor

The one side effect: when the message is the member's first in the guild
today (and the daily bonus is enabled) the streak transition is applied to
the ``user`` object passed in.  Inside a SQLAlchemy session that change is
flushed with the rest of the unit of work.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from taxgate.constants import as_utc, start_of_day, utcnow
from taxgate.engine.tax_config import TaxConfig

logger = logging.getLogger(__name__)

__all__ = [
    "HOURLY_ESTIMATE_CAP",
    "MessageContext",
    "advance_streak",
    "calculate_points",
    "estimate_hourly_messages",
    "is_first_message_today",
    "is_night_owl_hour",
    "quality_multiplier",
    "streak_multiplier",
    "time_multiplier",
]

# Upper bound on the trailing-hour message estimate
HOURLY_ESTIMATE_CAP = 50


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Everything about a message the pipeline needs besides its text.

    ``activity`` is the member's GroupActivity row for ``group_id`` as it
    stood *before* this message (None if they have never posted there).
    """

    group_id: int
    timestamp: datetime = field(default_factory=utcnow)
    is_reply: bool = False
    activity: Any = None


# ---------------------------------------------------------------------------
# Stage helpers
# ---------------------------------------------------------------------------
def quality_multiplier(message_text: str, config: TaxConfig) -> float:
    """0 for too-short messages, ``quality_multiplier`` for long ones, else 1."""
    length = len(message_text)
    if length < config.min_message_length:
        return 0.0
    if length >= config.quality_message_length:
        return config.quality_multiplier
    return 1.0


def streak_multiplier(streak: int, config: TaxConfig) -> float:
    """Multiplier of the highest tier with ``days <= streak``, clamped."""
    multiplier = 1.0
    for tier in config.streak_multipliers:
        if streak >= tier.days:
            multiplier = tier.multiplier
        else:
            break
    return min(multiplier, config.max_streak_multiplier)


def is_night_owl_hour(hour: int, config: TaxConfig) -> bool:
    window = config.night_owl_bonus
    # Window wraps midnight: inclusive OR, not a range check
    return hour >= window.start_hour or hour <= window.end_hour


def time_multiplier(moment: datetime, config: TaxConfig) -> float:
    """Weekend and night-owl bonuses, composed multiplicatively."""
    moment = as_utc(moment)
    multiplier = 1.0
    if moment.weekday() >= 5:
        multiplier *= config.weekend_multiplier
    if is_night_owl_hour(moment.hour, config):
        multiplier *= config.night_owl_bonus.bonus
    return multiplier


def is_first_message_today(activity: Any, now: datetime) -> bool:
    last = as_utc(getattr(activity, "last_message_date", None))
    if last is None:
        return True
    return last < start_of_day(now)


def estimate_hourly_messages(activity: Any, now: datetime) -> int:
    """Coarse trailing-hour message estimate.

    If the member posted in this guild within the last hour, their whole
    guild message count (capped at :data:`HOURLY_ESTIMATE_CAP`) stands in
    for the hourly count; otherwise 0.  Known to overestimate for
    long-time members.
    """
    last = as_utc(getattr(activity, "last_message_date", None))
    if last is None:
        return 0
    if last > as_utc(now) - timedelta(hours=1):
        return min(activity.messages_count or 0, HOURLY_ESTIMATE_CAP)
    return 0


def advance_streak(current: int, last_streak_date: datetime | None, now: datetime) -> int:
    """Next streak value for activity on the calendar day of *now*.

    Yesterday → +1, a longer gap → reset to 1, same day → unchanged.
    """
    if last_streak_date is None:
        return 1
    days = (start_of_day(now) - start_of_day(last_streak_date)).days
    if days == 1:
        return current + 1
    if days > 1:
        return 1
    return current


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Full calculation pipeline
# ---------------------------------------------------------------------------
def calculate_points(
    user: Any,
    message_text: str,
    context: MessageContext,
    config: TaxConfig,
) -> int:
    """Points earned by one message.  Always ``>= 0``.

    Parameters
    ----------
    user : object with ``daily_streak`` and ``last_streak_date`` (mutated
        by the streak transition)
    message_text : raw message content
    context : MessageContext for the guild/time/reply state
    config : guild-resolved TaxConfig
    """
    now = as_utc(context.timestamp)
    points = float(config.base_message_points)

    # 1. Quality: a too-short message earns nothing
    if config.enable_quality_multiplier:
        quality = quality_multiplier(message_text, config)
        if quality == 0:
            return 0
        points *= quality

    # 2. Reply bonus (additive)
    if context.is_reply:
        points += config.reply_bonus

    # 3. First message of the day in this guild → bonus + streak transition
    if config.enable_daily_bonus and is_first_message_today(context.activity, now):
        points += config.daily_first_message_bonus
        old_streak = user.daily_streak or 0
        user.daily_streak = advance_streak(
            old_streak, as_utc(user.last_streak_date), now,
        )
        user.last_streak_date = now
        if user.daily_streak != old_streak:
            logger.debug("Streak for user %s: %d → %d", getattr(user, "id", "?"),
                         old_streak, user.daily_streak)

    # 4. Streak multiplier
    if config.enable_streak_multiplier:
        points *= streak_multiplier(user.daily_streak or 0, config)

    # 5. Time-of-day / weekend
    if config.enable_time_multiplier:
        points *= time_multiplier(now, config)

    # 6. Diminishing returns
    if estimate_hourly_messages(context.activity, now) > config.diminishing_returns_threshold:
        points *= config.diminishing_returns_factor

    return max(1, _round_half_up(points))
