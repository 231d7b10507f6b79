"""
taxgate.engine.anti_spam — Rate-limit gates & milestone detection
==================================================================

Pure checks evaluated by the points service *before* any calculation:

* cooldown — per-member minimum spacing between point awards
* daily cap — per-guild ``daily_points`` ceiling that resets at UTC midnight

and *after* an award:

* milestone crossing — lifetime total passes a configured threshold
"""

from __future__ import annotations

from datetime import datetime

from taxgate.constants import as_utc
from taxgate.engine.tax_config import Milestone, TaxConfig


def cooldown_elapsed(
    last_point_award: datetime | None, config: TaxConfig, now: datetime
) -> bool:
    """True if at least ``cooldown_seconds`` have passed since the last award."""
    last = as_utc(last_point_award)
    if last is None:
        return True
    return (as_utc(now) - last).total_seconds() >= config.cooldown_seconds


def daily_cap_reached(daily_points: int, config: TaxConfig) -> bool:
    return daily_points >= config.max_points_per_day


def find_milestone(old_total: int, new_total: int, config: TaxConfig) -> Milestone | None:
    """First milestone with ``old_total < points <= new_total``, if any."""
    for milestone in config.milestone_rewards:
        if old_total < milestone.points <= new_total:
            return milestone
    return None
