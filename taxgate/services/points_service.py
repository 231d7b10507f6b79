"""
taxgate.services.points_service — Message → $TAX Orchestration
================================================================

Shared service callable by both the bot and the dashboard API.

``process_message`` runs the full per-message pipeline inside one
transaction:

1. Load the member (unknown or unverified → 0)
2. Resolve the guild's config from the :class:`ConfigStore`
3. Gate: cooldown since the last award
4. Gate: per-guild daily cap (reset at UTC midnight)
5. Calculate points (pure engine; may advance the streak)
6. Award + bump message counters (atomic UPDATEs)
7. Milestone top-up if a threshold was crossed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from taxgate.constants import as_utc, utcnow
from taxgate.database.models import GroupActivity, User
from taxgate.engine.points import MessageContext, calculate_points
from taxgate.services import ledger

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taxgate.services.config_store import ConfigStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserStats:
    tax_points: int
    total_earned: int
    streak: int
    messages: int
    rank: int


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    user_id: int
    display_name: str
    tax_points: int
    position: int


class PointsService:
    """Points pipeline bound to an engine and a config store."""

    def __init__(self, engine: Engine, store: ConfigStore) -> None:
        self.engine = engine
        self.store = store

    # -------------------------------------------------------------------
    # Awards
    # -------------------------------------------------------------------
    def process_message(
        self,
        sender_id: int,
        group_id: int,
        text: str,
        is_reply: bool = False,
        *,
        now: datetime | None = None,
    ) -> int:
        """Award points for one guild message.  Returns the amount (0 if gated)."""
        now = as_utc(now) if now is not None else utcnow()
        try:
            with Session(self.engine) as session:
                user = session.get(User, sender_id)
                if user is None or not user.is_verified:
                    return 0

                config = self.store.get_config(group_id)

                if not ledger.check_cooldown(user, config, now):
                    logger.debug("Cooldown active for user %d", sender_id)
                    return 0

                if not ledger.check_daily_cap(session, sender_id, group_id, config, now):
                    session.commit()
                    return 0

                activity = user.activity_for(group_id)
                context = MessageContext(
                    group_id=group_id, timestamp=now, is_reply=is_reply, activity=activity,
                )
                points = calculate_points(user, text, context, config)
                if points <= 0:
                    session.commit()
                    return 0

                new_total = ledger.award_points(session, sender_id, points, group_id, now=now)
                ledger.increment_messages(session, sender_id, group_id, now=now)
                if new_total is not None:
                    ledger.apply_milestone_bonus(
                        session, sender_id, new_total - points, new_total, config, now=now,
                    )
                session.commit()
        except Exception:
            logger.exception(
                "Error processing message points for user %d in group %d",
                sender_id, group_id,
            )
            return 0

        logger.info(
            "\U0001f4b0 %d $TAX awarded to user %d in group %d", points, sender_id, group_id,
        )
        return points

    def award_welcome_bonus(self, user_id: int, group_id: int | None = None) -> int:
        """Credit the welcome bonus after a successful verification."""
        try:
            config = self.store.get_config(group_id)
            if not config.enable_welcome_bonus:
                logger.info("Welcome bonus disabled — user %d gets nothing", user_id)
                return 0
            points = config.welcome_bonus
            with Session(self.engine) as session:
                new_total = ledger.award_points(session, user_id, points)
                if new_total is None:
                    return 0
                ledger.apply_milestone_bonus(session, user_id, new_total - points, new_total, config)
                session.commit()
        except Exception:
            logger.exception("Error awarding welcome bonus to user %d", user_id)
            return 0

        logger.info("\U0001f389 Welcome bonus: %d $TAX awarded to user %d", points, user_id)
        return points

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_user_stats(self, user_id: int) -> UserStats | None:
        """Balance, lifetime total, streak, message count, and global rank."""
        try:
            with Session(self.engine) as session:
                user = session.get(User, user_id)
                if user is None:
                    return None
                above = session.scalar(
                    select(func.count(User.id)).where(User.tax_points > user.tax_points)
                ) or 0
                return UserStats(
                    tax_points=user.tax_points,
                    total_earned=user.total_points_earned,
                    streak=user.daily_streak,
                    messages=user.messages_count,
                    rank=above + 1,
                )
        except Exception:
            logger.exception("Error getting stats for user %d", user_id)
            return None

    def get_leaderboard(
        self, group_id: int | None = None, limit: int = 10
    ) -> list[LeaderboardEntry]:
        """Top verified members globally, or by points earned in one guild."""
        try:
            with Session(self.engine) as session:
                if group_id is not None:
                    rows = session.execute(
                        select(User.id, User.display_name, GroupActivity.points_earned)
                        .join(GroupActivity, GroupActivity.user_id == User.id)
                        .where(
                            GroupActivity.group_id == group_id,
                            User.is_verified.is_(True),
                        )
                        .order_by(GroupActivity.points_earned.desc(), User.id)
                        .limit(limit)
                    ).all()
                else:
                    rows = session.execute(
                        select(User.id, User.display_name, User.tax_points)
                        .where(User.is_verified.is_(True), User.tax_points > 0)
                        .order_by(User.tax_points.desc(), User.id)
                        .limit(limit)
                    ).all()
        except Exception:
            logger.exception("Error getting leaderboard (group=%s)", group_id)
            return []

        return [
            LeaderboardEntry(
                user_id=row[0], display_name=row[1], tax_points=row[2] or 0, position=i,
            )
            for i, row in enumerate(rows, start=1)
        ]

    # -------------------------------------------------------------------
    # Config boundary passthroughs
    # -------------------------------------------------------------------
    def get_config_summary(self) -> str:
        return self.store.get_config_summary()

    def clear_config_cache(self) -> None:
        self.store.clear_cache()
