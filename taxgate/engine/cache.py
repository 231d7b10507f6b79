"""
taxgate.engine.cache — Config Snapshot Cache with PG LISTEN/NOTIFY
===================================================================

Holds the single active :class:`~taxgate.engine.tax_config.TaxConfig`
snapshot in memory with an expiry timestamp.  The owning
:class:`~taxgate.services.config_store.ConfigStore` refills it on a miss;
writers call :meth:`ConfigCache.invalidate`.

When the bot and the admin API run as separate processes, a config write
in one must reach the other.  On PostgreSQL the store emits a NOTIFY on
:data:`NOTIFY_CHANNEL` inside the write transaction, and
:meth:`ConfigCache.start_listener` runs a LISTEN thread that invalidates
the local snapshot.  Readers never block on writers; the worst case is a
stale read bounded by the TTL.
"""

from __future__ import annotations

import logging
import random
import select as _select
import threading
import time
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taxgate.engine.tax_config import TaxConfig

logger = logging.getLogger(__name__)

# The PG channel name used for config invalidation
NOTIFY_CHANNEL = "tax_config_changed"

DEFAULT_TTL_SECONDS = 300.0


class ConfigCache:
    """Thread-safe single-snapshot cache with a bounded staleness window.

    Usage:
        cache = ConfigCache(ttl_seconds=300)
        cfg = cache.get()            # None on miss / expiry
        cache.put(loaded_config)
        cache.invalidate()           # after a write
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock=time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: TaxConfig | None = None
        self._expires_at: float = 0.0

        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Snapshot access
    # -------------------------------------------------------------------
    def get(self) -> TaxConfig | None:
        """Return the cached snapshot, or None if empty or expired."""
        with self._lock:
            if self._snapshot is None or self._clock() >= self._expires_at:
                return None
            return self._snapshot

    def put(self, config: TaxConfig) -> None:
        with self._lock:
            self._snapshot = config
            self._expires_at = self._clock() + self.ttl_seconds

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
            self._expires_at = 0.0
        logger.debug("Config cache invalidated")

    # -------------------------------------------------------------------
    # Cross-process invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, payload: str) -> None:
        """Drop the snapshot when another process announces a new version."""
        logger.info("Config cache invalidation via NOTIFY (version %s)", payload or "?")
        self.invalidate()

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self, engine: Engine) -> None:
        """Start a background thread that LISTENs on :data:`NOTIFY_CHANNEL`.

        No-op for non-PostgreSQL engines.  Reconnects with exponential
        backoff + jitter and gives up after ten consecutive failures.
        """
        if engine.dialect.name != "postgresql":
            logger.info("Config NOTIFY listener skipped (dialect=%s)", engine.dialect.name)
            return

        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            raw_url = engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)

                    attempt = 0

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            self.handle_notify(notify.payload or "")

                except Exception:
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Config cache falls back to TTL expiry only.",
                            max_reconnect_attempts,
                        )
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(
            target=_listen_thread, daemon=True, name="pg-config-listener"
        )
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")


def notify_before_commit(session: Session, version: int) -> None:
    """Queue a NOTIFY inside the current transaction (fires on commit).

    Only PostgreSQL supports NOTIFY; other dialects skip silently.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": NOTIFY_CHANNEL, "payload": str(int(version))},
    )
