"""
taxgate.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn taxgate.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from taxgate.api.deps import get_store  # noqa: E402
from taxgate.api.routes.admin import router as admin_router  # noqa: E402
from taxgate.api.routes.public import router as public_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins from CORS_ALLOW_ORIGINS (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the store and start cache invalidation."""
    store = get_store()
    store.cache.start_listener(store.engine)
    logger.info("TaxGate API started — engine ready (%s)", store.engine.url.database)
    yield
    store.cache.stop_listener()
    logger.info("TaxGate API shutting down")


app = FastAPI(
    title="TaxGate Dashboard API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(public_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
