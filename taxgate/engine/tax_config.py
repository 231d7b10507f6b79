"""
taxgate.engine.tax_config — Immutable Points Configuration Snapshot
====================================================================

A :class:`TaxConfig` is one frozen version of every points tuning knob:
rewards, quality thresholds, the streak and milestone tables, anti-spam
caps, time-of-day bonuses, feature toggles, and per-guild overrides.

Nothing here touches the database.  :mod:`taxgate.services.config_store`
persists versions; this module owns the defaults, the bounds table used to
validate admin patches, and the per-guild override merge.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

__all__ = [
    "BOOLEAN_FIELDS",
    "DEFAULT_CONFIG",
    "GroupOverride",
    "Milestone",
    "NUMERIC_BOUNDS",
    "NightOwlBonus",
    "StreakTier",
    "TaxConfig",
    "apply_group_override",
    "config_from_dict",
    "validate_updates",
]


# ---------------------------------------------------------------------------
# Table entries
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakTier:
    days: int
    multiplier: float


@dataclass(frozen=True, slots=True)
class Milestone:
    points: int
    bonus: int


@dataclass(frozen=True, slots=True)
class NightOwlBonus:
    """Wrapping hour window: qualifies when ``hour >= start or hour <= end``."""

    start_hour: int = 22
    end_hour: int = 6
    bonus: float = 1.2


@dataclass(frozen=True, slots=True)
class GroupOverride:
    group_id: int
    overrides: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# TaxConfig — the snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TaxConfig:
    """One immutable version of the points configuration."""

    # Metadata
    version: int = 1
    is_active: bool = True
    last_updated: datetime | None = None
    updated_by: int | None = None

    # Base awards
    welcome_bonus: int = 500
    base_message_points: int = 2
    daily_first_message_bonus: int = 50

    # Quality
    min_message_length: int = 5
    quality_message_length: int = 30
    quality_multiplier: float = 1.5
    reply_bonus: int = 3

    # Streaks
    streak_multipliers: tuple[StreakTier, ...] = (
        StreakTier(3, 1.2),
        StreakTier(7, 1.5),
        StreakTier(14, 1.8),
        StreakTier(30, 2.0),
    )
    max_streak_multiplier: float = 2.5

    # Anti-spam
    cooldown_seconds: int = 30
    max_points_per_hour: int = 100
    max_points_per_day: int = 500
    diminishing_returns_threshold: int = 20
    diminishing_returns_factor: float = 0.7

    # Special bonuses
    milestone_rewards: tuple[Milestone, ...] = (
        Milestone(1000, 100),
        Milestone(5000, 250),
        Milestone(10000, 500),
        Milestone(25000, 1000),
    )
    weekend_multiplier: float = 1.3
    night_owl_bonus: NightOwlBonus = NightOwlBonus()

    # Feature toggles
    enable_welcome_bonus: bool = True
    enable_daily_bonus: bool = True
    enable_streak_multiplier: bool = True
    enable_quality_multiplier: bool = True
    enable_time_multiplier: bool = True
    enable_milestone_rewards: bool = True
    enable_point_notifications: bool = False

    # Notifications
    notification_threshold: int = 10
    enable_rank_notifications: bool = False
    enable_streak_notifications: bool = True

    # Per-guild patches
    group_overrides: tuple[GroupOverride, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict of the tunable fields (metadata excluded)."""
        return {
            name: _dump(getattr(self, name))
            for name in _DATA_FIELDS
        }

    def override_for(self, group_id: int) -> GroupOverride | None:
        for entry in self.group_overrides:
            if entry.group_id == group_id:
                return entry
        return None


DEFAULT_CONFIG = TaxConfig()

_METADATA_FIELDS = frozenset({"version", "is_active", "last_updated", "updated_by"})
_DATA_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(TaxConfig) if f.name not in _METADATA_FIELDS
)


def _dump(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_dump(v) for v in value]
    if isinstance(value, (StreakTier, Milestone, NightOwlBonus, GroupOverride)):
        return {f.name: _dump(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


# ---------------------------------------------------------------------------
# Bounds — (min, max, integral)
# ---------------------------------------------------------------------------
NUMERIC_BOUNDS: dict[str, tuple[float, float, bool]] = {
    "welcome_bonus": (0, 10000, True),
    "base_message_points": (0, 100, True),
    "daily_first_message_bonus": (0, 1000, True),
    "min_message_length": (1, 100, True),
    "quality_message_length": (1, 500, True),
    "quality_multiplier": (1, 5, False),
    "reply_bonus": (0, 50, True),
    "max_streak_multiplier": (1, 10, False),
    "cooldown_seconds": (0, 3600, True),
    "max_points_per_hour": (1, 10000, True),
    "max_points_per_day": (1, 50000, True),
    "diminishing_returns_threshold": (1, 1000, True),
    "diminishing_returns_factor": (0.1, 1, False),
    "weekend_multiplier": (1, 5, False),
    "notification_threshold": (0, 1000, True),
}

BOOLEAN_FIELDS: tuple[str, ...] = (
    "enable_welcome_bonus",
    "enable_daily_bonus",
    "enable_streak_multiplier",
    "enable_quality_multiplier",
    "enable_time_multiplier",
    "enable_milestone_rewards",
    "enable_point_notifications",
    "enable_rank_notifications",
    "enable_streak_notifications",
)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; never accept it as a number
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _check_number(name: str, value: Any) -> int | float | None:
    low, high, integral = NUMERIC_BOUNDS[name]
    if not _is_number(value):
        logger.warning("Invalid type for %s: %r (expected a number)", name, value)
        return None
    if not low <= value <= high:
        logger.warning(
            "Invalid value for %s: %s. Must be between %s and %s", name, value, low, high,
        )
        return None
    if integral:
        if float(value) != int(value):
            logger.warning("Invalid value for %s: %s. Must be a whole number", name, value)
            return None
        return int(value)
    return float(value)


def _parse_streak_table(raw: Any) -> tuple[StreakTier, ...] | None:
    if not isinstance(raw, (list, tuple)):
        return None
    tiers: list[StreakTier] = []
    for item in raw:
        if isinstance(item, StreakTier):
            item = {"days": item.days, "multiplier": item.multiplier}
        if not isinstance(item, dict):
            return None
        days, mult = item.get("days"), item.get("multiplier")
        if not (_is_number(days) and _is_number(mult)):
            return None
        if days < 1 or int(days) != days or not 1 <= mult <= 10:
            return None
        tiers.append(StreakTier(int(days), float(mult)))
    return tuple(sorted(tiers, key=lambda t: t.days))


def _parse_milestones(raw: Any) -> tuple[Milestone, ...] | None:
    if not isinstance(raw, (list, tuple)):
        return None
    table: list[Milestone] = []
    for item in raw:
        if isinstance(item, Milestone):
            item = {"points": item.points, "bonus": item.bonus}
        if not isinstance(item, dict):
            return None
        points, bonus = item.get("points"), item.get("bonus")
        if not (_is_number(points) and _is_number(bonus)):
            return None
        if points < 1 or bonus < 1 or int(points) != points or int(bonus) != bonus:
            return None
        table.append(Milestone(int(points), int(bonus)))
    return tuple(sorted(table, key=lambda m: m.points))


def _parse_night_owl(raw: Any) -> NightOwlBonus | None:
    if isinstance(raw, NightOwlBonus):
        raw = {"start_hour": raw.start_hour, "end_hour": raw.end_hour, "bonus": raw.bonus}
    if not isinstance(raw, dict):
        return None
    start, end, bonus = raw.get("start_hour"), raw.get("end_hour"), raw.get("bonus")
    if not all(_is_number(v) for v in (start, end, bonus)):
        return None
    if int(start) != start or int(end) != end:
        return None
    if not (0 <= start <= 23 and 0 <= end <= 23 and 1 <= bonus <= 5):
        return None
    return NightOwlBonus(int(start), int(end), float(bonus))


def _parse_group_overrides(raw: Any) -> tuple[GroupOverride, ...] | None:
    if not isinstance(raw, (list, tuple)):
        return None
    entries: dict[int, GroupOverride] = {}
    for item in raw:
        if isinstance(item, GroupOverride):
            item = {"group_id": item.group_id, "overrides": item.overrides}
        if not isinstance(item, dict) or not _is_number(item.get("group_id")):
            return None
        overrides = item.get("overrides") or {}
        if not isinstance(overrides, dict):
            return None
        # Overrides may patch any tunable field except the override list itself
        patch = {k: v for k, v in overrides.items() if k != "group_overrides"}
        clean = validate_updates(patch)
        group_id = int(item["group_id"])
        entries[group_id] = GroupOverride(group_id, _dump(clean))
    return tuple(entries.values())


_TABLE_PARSERS = {
    "streak_multipliers": _parse_streak_table,
    "milestone_rewards": _parse_milestones,
    "night_owl_bonus": _parse_night_owl,
    "group_overrides": _parse_group_overrides,
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_updates(updates: dict[str, Any]) -> dict[str, Any]:
    """Return the subset of *updates* that passes validation.

    Out-of-range or malformed fields are logged and dropped; the rest of
    the patch survives.  Table fields come back parsed and sorted.
    """
    validated: dict[str, Any] = {}
    for name, value in updates.items():
        if name in NUMERIC_BOUNDS:
            checked = _check_number(name, value)
            if checked is not None:
                validated[name] = checked
        elif name in BOOLEAN_FIELDS:
            if isinstance(value, bool):
                validated[name] = value
            else:
                logger.warning("Invalid type for %s: %r (expected a boolean)", name, value)
        elif name in _TABLE_PARSERS:
            parsed = _TABLE_PARSERS[name](value)
            if parsed is None:
                logger.warning("Invalid table for %s: %r — ignoring", name, value)
            else:
                validated[name] = parsed
        else:
            logger.warning("Unknown config field %r — ignoring", name)
    return validated


def config_from_dict(data: dict[str, Any], **metadata: Any) -> TaxConfig:
    """Build a :class:`TaxConfig` from a stored JSON document.

    Missing or invalid fields fall back to the defaults.
    """
    return replace(DEFAULT_CONFIG, **validate_updates(data), **metadata)


def apply_group_override(config: TaxConfig, group_id: int | None) -> TaxConfig:
    """Merge the override for *group_id* onto *config* (override wins per-field)."""
    if group_id is None:
        return config
    entry = config.override_for(group_id)
    if entry is None or not entry.overrides:
        return config
    return replace(config, **validate_updates(entry.overrides))
