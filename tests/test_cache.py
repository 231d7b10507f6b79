"""
tests/test_cache.py — ConfigCache Unit Tests
==============================================

Tests the TTL window (with an injected clock), explicit invalidation,
NOTIFY handling (without a real PG connection), and the listener no-op
on non-PostgreSQL engines.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from taxgate.engine.cache import ConfigCache, notify_before_commit
from taxgate.engine.tax_config import DEFAULT_CONFIG


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestSnapshotTTL:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return ConfigCache(ttl_seconds=300, clock=clock)

    def test_empty_cache_misses(self, cache):
        assert cache.get() is None

    def test_put_then_get_hits(self, cache):
        cache.put(DEFAULT_CONFIG)
        assert cache.get() is DEFAULT_CONFIG

    def test_snapshot_survives_within_ttl(self, cache, clock):
        cache.put(DEFAULT_CONFIG)
        clock.now += 299
        assert cache.get() is DEFAULT_CONFIG

    def test_snapshot_expires_at_ttl(self, cache, clock):
        cache.put(DEFAULT_CONFIG)
        clock.now += 300
        assert cache.get() is None

    def test_invalidate_drops_snapshot(self, cache):
        cache.put(DEFAULT_CONFIG)
        cache.invalidate()
        assert cache.get() is None

    def test_zero_ttl_never_serves(self, clock):
        cache = ConfigCache(ttl_seconds=0, clock=clock)
        cache.put(DEFAULT_CONFIG)
        assert cache.get() is None


class TestNotify:
    def test_notify_invalidates(self):
        cache = ConfigCache(ttl_seconds=300)
        cache.put(DEFAULT_CONFIG)
        cache.handle_notify("7")
        assert cache.get() is None

    def test_empty_payload_still_invalidates(self):
        cache = ConfigCache(ttl_seconds=300)
        cache.put(DEFAULT_CONFIG)
        cache.handle_notify("")
        assert cache.get() is None

    def test_notify_skipped_on_sqlite(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "sqlite"
        notify_before_commit(session, 3)
        session.execute.assert_not_called()

    def test_notify_queued_on_postgres(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        notify_before_commit(session, 3)
        session.execute.assert_called_once()
        params = session.execute.call_args[0][1]
        assert params == {"channel": "tax_config_changed", "payload": "3"}


class TestListenerLifecycle:
    def test_listener_skipped_for_sqlite(self):
        cache = ConfigCache()
        engine = MagicMock()
        engine.dialect.name = "sqlite"
        cache.start_listener(engine)
        assert cache._listener_thread is None

    def test_stop_without_start_is_safe(self):
        ConfigCache().stop_listener()
