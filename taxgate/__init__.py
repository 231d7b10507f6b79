"""
TaxGate — Verification Gate & $TAX Points for Discord Communities
==================================================================
Gates new members behind a one-time verification challenge, then rewards
ongoing participation with ``$TAX`` points computed from a versioned,
hot-reloadable rule set.

Package layout::

    taxgate/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Presentation constants + UTC helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (users, sessions, config versions)
    ├── engine/
    │   ├── tax_config.py  # Immutable TaxConfig snapshot, bounds, overrides
    │   ├── cache.py       # Config snapshot cache + PG LISTEN/NOTIFY
    │   ├── points.py      # Per-message point calculation pipeline
    │   ├── anti_spam.py   # Cooldown, daily cap, milestone checks
    │   └── tokens.py      # Verification token encode/decode
    ├── services/
    │   ├── config_store.py        # Versioned config reads/writes
    │   ├── ledger.py              # Atomic point/counter mutations
    │   ├── points_service.py      # Message → points orchestration, stats
    │   ├── verification_service.py # Join challenge state machine
    │   ├── timeout_scheduler.py   # Deferred challenge deadline enforcement
    │   └── gateway.py             # Transport boundary (Protocol)
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── gateway.py     # Discord implementation of GroupGateway
    │   └── cogs/
    │       ├── verification.py  # on_member_join + /verify
    │       ├── social.py        # on_message points pipeline
    │       ├── meta.py          # /points, /leaderboard
    │       ├── admin.py         # /taxconfig
    │       └── tasks.py         # Expired-session recovery & purge
    └── api/
        ├── main.py        # FastAPI app
        ├── tokens.py      # Admin JWT secret + minting
        ├── deps.py        # JWT admin auth + engine/store deps
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
