"""
taxgate.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from taxgate.api.tokens import JWT_ALGORITHM, load_jwt_secret
from taxgate.database.engine import create_db_engine
from taxgate.engine.cache import ConfigCache
from taxgate.services.config_store import ConfigStore
from taxgate.services.points_service import PointsService

JWT_SECRET: str = load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_store() -> ConfigStore:
    """Process-wide ConfigStore; its cache is invalidated by PG NOTIFY."""
    return ConfigStore(get_engine(), ConfigCache())


def get_points_service(
    store: Annotated[ConfigStore, Depends(get_store)],
) -> PointsService:
    return PointsService(store.engine, store)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def admin_actor_id(admin: dict) -> int | None:
    """Discord id of the admin in a JWT payload, if it is numeric."""
    try:
        return int(admin.get("sub"))
    except (TypeError, ValueError):
        return None
