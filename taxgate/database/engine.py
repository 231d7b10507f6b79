"""
taxgate.database.engine — Database Connection & Async Helper
=============================================================

**Why this file exists:**
Discord bots run on an ``asyncio`` event loop.  SQLAlchemy + psycopg2 is
**synchronous** — calling the DB directly from a listener would freeze
the whole bot until the query returns.

Every cog therefore ships its DB work to a thread pool::

    user = await run_db(points_service.get_user_stats, user_id)

Usage::

    from taxgate.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from taxgate.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`taxgate.database.models`.

    Safe to call on every startup.  The default points configuration is
    synthesized lazily by :class:`~taxgate.services.config_store.ConfigStore`
    on first read.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the bot's event loop
    is never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
