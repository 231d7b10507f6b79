"""
taxgate.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                  — Community member profiles + $TAX running totals
- user_groups            — Set of guilds each member has joined
- group_activity         — Per-guild message/points counters + daily cap state
- verification_sessions  — Join challenges (PENDING → COMPLETED)
- tax_configs            — Versioned points configuration (one active row)
- admin_log              — Append-only audit trail of config writes
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all TaxGate ORM models."""


# ---------------------------------------------------------------------------
# Users — one row per Discord member
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    join_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # $TAX points
    tax_points: Mapped[int] = mapped_column(Integer, default=0)
    total_points_earned: Mapped[int] = mapped_column(Integer, default=0)
    messages_count: Mapped[int] = mapped_column(Integer, default=0)
    daily_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_streak_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_activity_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_point_award: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )  # cooldown clock

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    groups: Mapped[list[UserGroup]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    group_activity: Mapped[list[GroupActivity]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "tax_points <= total_points_earned", name="ck_users_points_le_total"
        ),
        Index("ix_users_tax_points_desc", "tax_points"),
        Index("ix_users_total_earned_desc", "total_points_earned"),
        Index("ix_users_verified", "is_verified"),
    )

    def activity_for(self, group_id: int) -> GroupActivity | None:
        """Return this user's GroupActivity row for *group_id*, if any."""
        for activity in self.group_activity:
            if activity.group_id == group_id:
                return activity
        return None

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.display_name!r} tax={self.tax_points}>"


# ---------------------------------------------------------------------------
# UserGroup — set of guilds a member has joined
# ---------------------------------------------------------------------------
class UserGroup(Base):
    __tablename__ = "user_groups"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="groups")

    def __repr__(self) -> str:
        return f"<UserGroup user={self.user_id} group={self.group_id}>"


# ---------------------------------------------------------------------------
# GroupActivity — per-guild counters
# ---------------------------------------------------------------------------
class GroupActivity(Base):
    """Per-guild engagement counters and daily-cap state for one member."""
    __tablename__ = "group_activity"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    group_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    messages_count: Mapped[int] = mapped_column(Integer, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    last_message_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    daily_points: Mapped[int] = mapped_column(Integer, default=0)
    last_daily_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    user: Mapped[User] = relationship(back_populates="group_activity")

    __table_args__ = (
        Index("ix_group_activity_group_points", "group_id", "points_earned"),
    )

    def __repr__(self) -> str:
        return (
            f"<GroupActivity user={self.user_id} group={self.group_id} "
            f"points={self.points_earned}>"
        )


# ---------------------------------------------------------------------------
# VerificationSession — one join challenge
# ---------------------------------------------------------------------------
class VerificationSession(Base):
    """A join challenge.  ``is_completed`` flips once and never back.

    ``expires_at`` doubles as the passive cleanup marker: the periodic
    sweep enforces overdue PENDING rows and purges everything past it.
    """
    __tablename__ = "verification_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    group_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    verification_code: Mapped[str] = mapped_column(String(200), nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    message_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_verification_user_group", "user_id", "group_id"),
        Index("ix_verification_code", "verification_code"),
        Index("ix_verification_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        state = "COMPLETED" if self.is_completed else "PENDING"
        return (
            f"<VerificationSession id={self.id} user={self.user_id} "
            f"group={self.group_id} {state}>"
        )


# ---------------------------------------------------------------------------
# TaxConfigVersion — immutable, versioned points configuration
# ---------------------------------------------------------------------------
class TaxConfigVersion(Base):
    """One version of the points configuration.

    Rows are never edited after insert except for ``is_active``, which is
    flipped across the whole table whenever a new version is written.
    """
    __tablename__ = "tax_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    data: Mapped[dict] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        Index("ix_tax_configs_active_version", "is_active", "version"),
    )

    def __repr__(self) -> str:
        return f"<TaxConfigVersion v{self.version} active={self.is_active}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
