"""
taxgate.config — YAML Configuration Loader
===========================================

**Why this file exists:**
This module reads ``config.yaml`` for **infrastructure-only** settings
(Discord identity, admin role, verification timing, etc.).  All points
tuning values (welcome bonus, multipliers, anti-spam caps, milestones) live
in the versioned ``tax_configs`` table and are edited through ``/taxconfig``
or the admin API.

Usage::

    from taxgate.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "TaxGate Dev"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

# Defaults for optional keys
DEFAULT_VERIFICATION_TIMEOUT = 300
DEFAULT_CONFIG_CACHE_TTL = 300


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Points tuning lives in the DB ``tax_configs`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TaxGateConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake

    # Dashboard
    dashboard_port: int

    # Admin / Hardened Access
    admin_role_id: int  # Discord role required for /taxconfig

    # Optional
    verify_channel_id: int | None = None  # Where join prompts are posted
    verification_timeout_seconds: int = DEFAULT_VERIFICATION_TIMEOUT
    config_cache_ttl_seconds: int = DEFAULT_CONFIG_CACHE_TTL


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TaxGateConfig:
    """Read *path* and return a :class:`TaxGateConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    return TaxGateConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        verify_channel_id=(
            int(raw["verify_channel_id"]) if raw.get("verify_channel_id") else None
        ),
        verification_timeout_seconds=int(
            raw.get("verification_timeout_seconds", DEFAULT_VERIFICATION_TIMEOUT)
        ),
        config_cache_ttl_seconds=int(
            raw.get("config_cache_ttl_seconds", DEFAULT_CONFIG_CACHE_TTL)
        ),
    )
