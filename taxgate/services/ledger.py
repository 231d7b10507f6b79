"""
taxgate.services.ledger — Atomic $TAX Ledger Mutations
=======================================================

Every counter change is a single ``UPDATE … SET col = col + :n`` statement
so concurrent messages from the same (or different) members can never lose
an update.  Nothing here reads a counter, adds to it in Python, and writes
it back.

All functions take an open :class:`~sqlalchemy.orm.Session`; the caller
owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taxgate.constants import start_of_day, utcnow
from taxgate.database.models import GroupActivity, User, UserGroup
from taxgate.engine.anti_spam import cooldown_elapsed, daily_cap_reached, find_milestone
from taxgate.engine.tax_config import TaxConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row creation
# ---------------------------------------------------------------------------
def get_or_create_user(
    session: Session,
    user_id: int,
    display_name: str,
    username: str | None = None,
) -> User:
    """Fetch or insert a User row, refreshing the display name."""
    user = session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            display_name=display_name,
            username=username,
            tax_points=0,
            total_points_earned=0,
            messages_count=0,
            daily_streak=0,
        )
        session.add(user)
        session.flush()
    else:
        user.display_name = display_name
        if username is not None:
            user.username = username
    return user


def add_group_membership(session: Session, user_id: int, group_id: int) -> None:
    """Add *group_id* to the member's joined-group set (idempotent)."""
    if session.get(UserGroup, (user_id, group_id)) is not None:
        return
    try:
        with session.begin_nested():
            session.add(UserGroup(user_id=user_id, group_id=group_id))
            session.flush()
    except IntegrityError:
        logger.debug("Membership %d/%d inserted concurrently", user_id, group_id)


def ensure_group_activity(
    session: Session, user_id: int, group_id: int, *, now: datetime | None = None
) -> None:
    """Insert an empty GroupActivity row if none exists (idempotent).

    A fresh row starts its daily window at *now*.
    """
    if session.get(GroupActivity, (user_id, group_id)) is not None:
        return
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(GroupActivity(
                user_id=user_id,
                group_id=group_id,
                messages_count=0,
                points_earned=0,
                daily_points=0,
                last_daily_reset=now or utcnow(),
            ))
            session.flush()
    except IntegrityError:
        # Another handler created it first; the outer txn is still alive.
        logger.debug("GroupActivity %d/%d inserted concurrently", user_id, group_id)


# ---------------------------------------------------------------------------
# Counter mutations
# ---------------------------------------------------------------------------
def award_points(
    session: Session,
    user_id: int,
    amount: int,
    group_id: int | None = None,
    *,
    now: datetime | None = None,
) -> int | None:
    """Add *amount* to the member's balance and lifetime total.

    With *group_id*, the guild's ``points_earned`` and ``daily_points``
    grow by the same amount.  Returns the new lifetime total, or None if
    the user does not exist.
    """
    now = now or utcnow()
    result = session.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            tax_points=User.tax_points + amount,
            total_points_earned=User.total_points_earned + amount,
            last_activity_date=now,
            last_point_award=now,
        )
    )
    if result.rowcount == 0:
        return None
    # The UPDATE holds the row lock until commit, so this read is our own total
    new_total = session.scalar(
        select(User.total_points_earned).where(User.id == user_id)
    )

    if group_id is not None:
        ensure_group_activity(session, user_id, group_id, now=now)
        session.execute(
            update(GroupActivity)
            .where(GroupActivity.user_id == user_id, GroupActivity.group_id == group_id)
            .values(
                points_earned=GroupActivity.points_earned + amount,
                daily_points=GroupActivity.daily_points + amount,
                last_message_date=now,
            )
        )
    return new_total


def increment_messages(
    session: Session,
    user_id: int,
    group_id: int | None = None,
    *,
    now: datetime | None = None,
) -> None:
    """Bump the member's message counters by one."""
    now = now or utcnow()
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(messages_count=User.messages_count + 1)
    )
    if group_id is not None:
        ensure_group_activity(session, user_id, group_id, now=now)
        session.execute(
            update(GroupActivity)
            .where(GroupActivity.user_id == user_id, GroupActivity.group_id == group_id)
            .values(
                messages_count=GroupActivity.messages_count + 1,
                last_message_date=now,
            )
        )


def reset_daily_if_due(
    session: Session,
    user_id: int,
    group_id: int,
    *,
    now: datetime | None = None,
) -> int:
    """Zero ``daily_points`` if the last reset predates today; return the value.

    The reset is a conditional UPDATE, so two handlers racing across
    midnight reset at most once.
    """
    now = now or utcnow()
    session.execute(
        update(GroupActivity)
        .where(
            GroupActivity.user_id == user_id,
            GroupActivity.group_id == group_id,
            or_(
                GroupActivity.last_daily_reset.is_(None),
                GroupActivity.last_daily_reset < start_of_day(now),
            ),
        )
        .values(daily_points=0, last_daily_reset=now)
        .execution_options(synchronize_session=False)
    )
    return session.scalar(
        select(GroupActivity.daily_points).where(
            GroupActivity.user_id == user_id, GroupActivity.group_id == group_id,
        )
    ) or 0


# ---------------------------------------------------------------------------
# Gates — evaluated before points are calculated
# ---------------------------------------------------------------------------
def check_cooldown(user: User, config: TaxConfig, now: datetime | None = None) -> bool:
    """True if *user* may be awarded again (cooldown has elapsed)."""
    return cooldown_elapsed(user.last_point_award, config, now or utcnow())


def check_daily_cap(
    session: Session,
    user_id: int,
    group_id: int,
    config: TaxConfig,
    now: datetime | None = None,
) -> bool:
    """True if the member is still under ``max_points_per_day`` in *group_id*.

    Resets a stale daily counter first.  A member with no activity row in
    the guild has earned nothing there today.
    """
    if session.get(GroupActivity, (user_id, group_id)) is None:
        return True
    daily = reset_daily_if_due(session, user_id, group_id, now=now)
    if daily_cap_reached(daily, config):
        logger.debug(
            "Daily cap reached for user %d in group %d (%d/%d)",
            user_id, group_id, daily, config.max_points_per_day,
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------
def check_milestone(old_total: int, new_total: int, config: TaxConfig) -> int:
    """Bonus for the first threshold crossed, or 0."""
    milestone = find_milestone(old_total, new_total, config)
    return milestone.bonus if milestone is not None else 0


def apply_milestone_bonus(
    session: Session,
    user_id: int,
    old_total: int,
    new_total: int,
    config: TaxConfig,
    *,
    now: datetime | None = None,
) -> int:
    """Top up the first milestone crossed between *old_total* and *new_total*.

    Not subject to cooldown or the daily cap.  Returns the bonus (0 if no
    threshold was crossed or milestones are disabled).
    """
    if not config.enable_milestone_rewards:
        return 0
    bonus = check_milestone(old_total, new_total, config)
    if not bonus:
        return 0
    award_points(session, user_id, bonus, now=now)
    logger.info(
        "\U0001f3c6 Milestone crossed (%d → %d): +%d $TAX bonus for user %d",
        old_total, new_total, bonus, user_id,
    )
    return bonus
