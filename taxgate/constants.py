"""
taxgate.constants — Shared Constants & Helpers
================================================

Single source of truth for presentation constants and the UTC day helpers.
Import from here instead of duplicating in cogs, services, and the engine.
"""

from __future__ import annotations

from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Presentation (used by bot replies and the config summary)
# ---------------------------------------------------------------------------
CURRENCY = "$TAX"

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


# ---------------------------------------------------------------------------
# Time helpers. Every day boundary in TaxGate is a UTC calendar day.
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize *value* to an aware UTC datetime.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; those are treated as already being UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def start_of_day(value: datetime) -> datetime:
    """Midnight (UTC) of the calendar day containing *value*."""
    value = as_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
