"""
taxgate.api.routes.public — Read-only public endpoints
=========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from taxgate.api.deps import get_points_service
from taxgate.services.points_service import PointsService

router = APIRouter(tags=["public"])


# ---------------------------------------------------------------------------
# GET /leaderboard
# ---------------------------------------------------------------------------
@router.get("/leaderboard")
def get_leaderboard(
    group_id: int | None = Query(None),
    limit: int = Query(10, ge=1, le=100),
    points: PointsService = Depends(get_points_service),
):
    """Top members by balance, or by points earned in one guild."""
    entries = points.get_leaderboard(group_id, limit)
    return {
        "group_id": str(group_id) if group_id is not None else None,
        "entries": [
            {
                "position": e.position,
                "user_id": str(e.user_id),
                "display_name": e.display_name,
                "tax_points": e.tax_points,
            }
            for e in entries
        ],
    }


# ---------------------------------------------------------------------------
# GET /users/{user_id}/stats
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/stats")
def get_user_stats(
    user_id: int,
    points: PointsService = Depends(get_points_service),
):
    stats = points.get_user_stats(user_id)
    if stats is None:
        raise HTTPException(404, "User not found")
    return {
        "user_id": str(user_id),
        "tax_points": stats.tax_points,
        "total_earned": stats.total_earned,
        "streak": stats.streak,
        "messages": stats.messages,
        "rank": stats.rank,
    }
