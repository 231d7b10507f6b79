"""
taxgate.api.routes.admin — Points configuration management
=============================================================

Every write creates a new version in ``tax_configs``; nothing is edited
in place.  The bot process picks the change up through PG NOTIFY.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from taxgate.api.deps import admin_actor_id, get_current_admin, get_store
from taxgate.engine.tax_config import TaxConfig, validate_updates
from taxgate.services.config_store import ConfigStore

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ConfigPatch(BaseModel):
    updates: dict[str, Any] = Field(default_factory=dict)


class GroupOverridePatch(BaseModel):
    overrides: dict[str, Any] = Field(default_factory=dict)


def _config_dict(config: TaxConfig) -> dict:
    return {
        "version": config.version,
        "is_active": config.is_active,
        "last_updated": config.last_updated.isoformat() if config.last_updated else None,
        "updated_by": str(config.updated_by) if config.updated_by else None,
        "values": config.to_dict(),
    }


@router.get("/me")
def me(admin: dict = Depends(get_current_admin)):
    """Echo the claims of the bearer token."""
    return {
        "id": admin["sub"],
        "username": admin.get("username", "Unknown"),
        "is_admin": True,
    }


# ---------------------------------------------------------------------------
# Active configuration
# ---------------------------------------------------------------------------
@router.get("/config")
def get_active_config(
    group_id: int | None = Query(None),
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    """Active configuration, optionally resolved for one guild."""
    return _config_dict(store.get_config(group_id))


@router.get("/config/summary")
def get_summary(
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    return {"summary": store.get_config_summary()}


@router.put("/config")
def update_config(
    body: ConfigPatch,
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    """Write a new version.  Invalid fields are reported, the rest applied."""
    accepted = validate_updates(body.updates)
    rejected = sorted(set(body.updates) - set(accepted))
    if not accepted:
        raise HTTPException(422, {"message": "No valid fields to update", "rejected": rejected})

    config = store.update_config(body.updates, admin_actor_id(admin))
    logger.info(
        "Admin %s updated tax config → v%d (%s)",
        admin.get("sub"), config.version, ", ".join(sorted(accepted)),
    )
    return {**_config_dict(config), "rejected": rejected}


@router.get("/config/history")
def get_history(
    limit: int = Query(10, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    return {"versions": [_config_dict(c) for c in store.get_config_history(limit)]}


@router.post("/config/revert/{version}")
def revert_config(
    version: int,
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    try:
        config = store.revert_to_version(version, admin_actor_id(admin))
    except LookupError:
        raise HTTPException(404, f"Configuration version {version} not found")
    return _config_dict(config)


@router.post("/config/cache/clear")
def clear_cache(
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    store.clear_cache()
    return {"cleared": True}


# ---------------------------------------------------------------------------
# Per-guild overrides
# ---------------------------------------------------------------------------
@router.put("/config/groups/{group_id}")
def put_group_override(
    group_id: int,
    body: GroupOverridePatch,
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    accepted = validate_updates(
        {k: v for k, v in body.overrides.items() if k != "group_overrides"}
    )
    if not accepted:
        raise HTTPException(422, "No valid override fields")
    config = store.update_group_override(group_id, body.overrides, admin_actor_id(admin))
    return _config_dict(config)


@router.delete("/config/groups/{group_id}")
def delete_group_override(
    group_id: int,
    admin: dict = Depends(get_current_admin),
    store: ConfigStore = Depends(get_store),
):
    current = store.get_config()
    if current.override_for(group_id) is None:
        raise HTTPException(404, f"No override for group {group_id}")
    config = store.remove_group_override(group_id, admin_actor_id(admin))
    return _config_dict(config)
