"""
taxgate.services.config_store — Versioned Points Configuration
===============================================================

Reads and writes :class:`~taxgate.engine.tax_config.TaxConfig` versions in
the ``tax_configs`` table.

* Reads go through the store's own :class:`~taxgate.engine.cache.ConfigCache`
  and never raise: any failure degrades to the built-in defaults.
* Writes never edit a version in place.  They insert ``max(version) + 1``,
  deactivate every other row in the same transaction, record an
  ``admin_log`` entry, invalidate the cache, and publish the new snapshot
  on :attr:`ConfigStore.changes` (plus a PG NOTIFY for other processes).
"""

from __future__ import annotations

import logging
import queue
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from taxgate.constants import CURRENCY, as_utc, utcnow
from taxgate.database.models import AdminLog, TaxConfigVersion
from taxgate.engine.cache import ConfigCache, notify_before_commit
from taxgate.engine.tax_config import (
    DEFAULT_CONFIG,
    TaxConfig,
    apply_group_override,
    config_from_dict,
    validate_updates,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _row_to_config(row: TaxConfigVersion) -> TaxConfig:
    return config_from_dict(
        row.data or {},
        version=row.version,
        is_active=row.is_active,
        last_updated=as_utc(row.last_updated),
        updated_by=row.updated_by,
    )


def _flag(enabled: bool) -> str:
    return "✅" if enabled else "❌"


class ConfigStore:
    """Versioned config persistence with a bounded-staleness read cache.

    Usage:
        store = ConfigStore(engine, ConfigCache(ttl_seconds=300))
        cfg = store.get_config(guild_id)
        new_cfg = store.update_config({"welcome_bonus": 750}, actor_id=42)
    """

    def __init__(self, engine: Engine, cache: ConfigCache | None = None) -> None:
        self.engine = engine
        self.cache = cache if cache is not None else ConfigCache()
        # Every written version is published here for interested consumers
        self.changes: queue.SimpleQueue[TaxConfig] = queue.SimpleQueue()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_config(self, group_id: int | None = None) -> TaxConfig:
        """Active config with *group_id*'s override merged on top.

        Never raises — falls back to :data:`DEFAULT_CONFIG`.
        """
        try:
            base = self.cache.get()
            if base is None:
                base = self._load_active()
                self.cache.put(base)
            return apply_group_override(base, group_id)
        except Exception:
            logger.exception("Error loading tax configuration — using defaults")
            return DEFAULT_CONFIG

    def _load_active(self) -> TaxConfig:
        with Session(self.engine) as session:
            row = self._active_row(session)
            if row is None:
                logger.info("No active $TAX configuration — creating defaults")
                row = self._insert_version(
                    session,
                    DEFAULT_CONFIG.to_dict(),
                    actor_id=None,
                    action="CREATE",
                    reason="default configuration",
                )
                session.commit()
                config = _row_to_config(row)
                self._publish(config)
                return config
            return _row_to_config(row)

    @staticmethod
    def _active_row(session: Session) -> TaxConfigVersion | None:
        return session.scalar(
            select(TaxConfigVersion)
            .where(TaxConfigVersion.is_active.is_(True))
            .order_by(TaxConfigVersion.version.desc())
            .limit(1)
        )

    def get_config_history(self, limit: int = 10) -> list[TaxConfig]:
        """Most recent versions, newest first.  Empty list on failure."""
        try:
            with Session(self.engine) as session:
                rows = session.scalars(
                    select(TaxConfigVersion)
                    .order_by(TaxConfigVersion.version.desc())
                    .limit(limit)
                ).all()
                return [_row_to_config(r) for r in rows]
        except Exception:
            logger.exception("Error fetching config history")
            return []

    def get_config_summary(self) -> str:
        """Human-readable summary of the active configuration."""
        try:
            c = self.get_config()
            updated = c.last_updated.date().isoformat() if c.last_updated else "never"
            return (
                f"\U0001f527 **Tax Configuration v{c.version}**\n\n"
                f"\U0001f4b0 **Rewards:**\n"
                f"• Welcome: {c.welcome_bonus} {CURRENCY}\n"
                f"• Message: {c.base_message_points} {CURRENCY}\n"
                f"• Daily bonus: {c.daily_first_message_bonus} {CURRENCY}\n"
                f"• Reply bonus: {c.reply_bonus} {CURRENCY}\n\n"
                f"⚡ **Multipliers:**\n"
                f"• Quality: {c.quality_multiplier}x ({c.quality_message_length}+ chars)\n"
                f"• Weekend: {c.weekend_multiplier}x\n"
                f"• Max streak: {c.max_streak_multiplier}x\n\n"
                f"\U0001f6e1️ **Limits:**\n"
                f"• Cooldown: {c.cooldown_seconds}s\n"
                f"• Max/hour: {c.max_points_per_hour} {CURRENCY}\n"
                f"• Max/day: {c.max_points_per_day} {CURRENCY}\n\n"
                f"\U0001f4ca **Features:**\n"
                f"• Welcome bonus: {_flag(c.enable_welcome_bonus)}\n"
                f"• Streak multiplier: {_flag(c.enable_streak_multiplier)}\n"
                f"• Time multiplier: {_flag(c.enable_time_multiplier)}\n"
                f"• Notifications: {_flag(c.enable_point_notifications)}\n\n"
                f"\U0001f550 Last updated: {updated}"
            )
        except Exception:
            logger.exception("Error generating config summary")
            return "❌ Error loading configuration"

    def clear_cache(self) -> None:
        self.cache.invalidate()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def update_config(self, updates: dict[str, Any], actor_id: int | None = None) -> TaxConfig:
        """Validate *updates* and write them as a new active version.

        Invalid fields are logged and dropped; the remaining fields apply.
        """
        validated = validate_updates(updates)
        with Session(self.engine) as session:
            current = self._active_row(session)
            base = _row_to_config(current) if current is not None else DEFAULT_CONFIG
            merged = replace(base, **validated)
            row = self._insert_version(
                session,
                merged.to_dict(),
                actor_id=actor_id,
                action="UPDATE",
                before=current.data if current is not None else None,
                reason=f"fields: {', '.join(sorted(validated)) or 'none'}",
            )
            session.commit()
            config = _row_to_config(row)

        self.cache.invalidate()
        self._publish(config)
        logger.info(
            "Tax configuration updated to version %d by admin %s", config.version, actor_id,
        )
        return config

    def update_group_override(
        self, group_id: int, overrides: dict[str, Any], actor_id: int | None = None
    ) -> TaxConfig:
        """Merge *overrides* into the override entry for *group_id*."""
        current = self._fresh_config()
        entries = [
            {"group_id": e.group_id, "overrides": dict(e.overrides)}
            for e in current.group_overrides
        ]
        for entry in entries:
            if entry["group_id"] == group_id:
                entry["overrides"].update(overrides)
                break
        else:
            entries.append({"group_id": group_id, "overrides": dict(overrides)})
        return self.update_config({"group_overrides": entries}, actor_id)

    def remove_group_override(self, group_id: int, actor_id: int | None = None) -> TaxConfig:
        current = self._fresh_config()
        entries = [
            {"group_id": e.group_id, "overrides": dict(e.overrides)}
            for e in current.group_overrides
            if e.group_id != group_id
        ]
        return self.update_config({"group_overrides": entries}, actor_id)

    def revert_to_version(self, version: int, actor_id: int | None = None) -> TaxConfig:
        """Clone *version*'s fields into a brand-new version.

        Raises
        ------
        LookupError
            If *version* does not exist.
        """
        with Session(self.engine) as session:
            target = session.scalar(
                select(TaxConfigVersion).where(TaxConfigVersion.version == version)
            )
            if target is None:
                raise LookupError(f"Configuration version {version} not found")
            current = self._active_row(session)
            row = self._insert_version(
                session,
                dict(target.data),
                actor_id=actor_id,
                action="REVERT",
                before=current.data if current is not None else None,
                reason=f"revert to version {version}",
            )
            session.commit()
            config = _row_to_config(row)

        self.cache.invalidate()
        self._publish(config)
        logger.info(
            "Tax configuration reverted to version %d (new version %d)",
            version, config.version,
        )
        return config

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _fresh_config(self) -> TaxConfig:
        with Session(self.engine) as session:
            row = self._active_row(session)
            return _row_to_config(row) if row is not None else DEFAULT_CONFIG

    @staticmethod
    def _insert_version(
        session: Session,
        data: dict[str, Any],
        *,
        actor_id: int | None,
        action: str,
        before: dict | None = None,
        reason: str | None = None,
    ) -> TaxConfigVersion:
        """Insert a new active version and deactivate all others (same txn)."""
        latest = session.scalar(select(func.max(TaxConfigVersion.version))) or 0
        row = TaxConfigVersion(
            version=latest + 1,
            is_active=True,
            last_updated=utcnow(),
            updated_by=actor_id,
            data=data,
        )
        session.add(row)
        session.flush()

        session.execute(
            update(TaxConfigVersion)
            .where(TaxConfigVersion.id != row.id)
            .values(is_active=False)
        )
        session.add(AdminLog(
            actor_id=actor_id,
            action_type=action,
            target_table="tax_configs",
            target_id=str(row.version),
            before_snapshot=before,
            after_snapshot=data,
            reason=reason,
        ))
        notify_before_commit(session, row.version)
        return row

    def _publish(self, config: TaxConfig) -> None:
        self.changes.put(config)
        logger.debug("Published tax configuration version %d", config.version)

    def drain_changes(self) -> list[TaxConfig]:
        """Pop every version published since the last drain (oldest first)."""
        drained: list[TaxConfig] = []
        while True:
            try:
                drained.append(self.changes.get_nowait())
            except queue.Empty:
                return drained
