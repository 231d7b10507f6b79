"""
taxgate.services.verification_service — Join Verification State Machine
=========================================================================

Every new member is restricted on join and must redeem a one-time token
within the verification window.

States
------
PENDING    session row with ``is_completed = false`` (created on join)
COMPLETED  ``is_completed = true``; reached by a valid response, by the
           timeout (member removed), or by a newer challenge for the same
           member and guild superseding this one

No transition ever leads back to PENDING.  Both exits go through one
conditional ``UPDATE … WHERE is_completed = false``; whoever changes the
row wins, so a replayed token or a late timeout is inert.

Each Discord side effect (restrict, post, restore, edit, kick, delete) is
a separate best-effort step: it is logged on failure and the remaining
steps still run.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from taxgate.constants import CURRENCY, as_utc, utcnow
from taxgate.database.engine import run_db
from taxgate.database.models import User, VerificationSession
from taxgate.engine.tokens import VerificationToken, decode_token, issue_token
from taxgate.services import ledger

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from taxgate.services.gateway import GroupGateway
    from taxgate.services.points_service import PointsService
    from taxgate.services.timeout_scheduler import TimeoutScheduler

logger = logging.getLogger(__name__)

VERIFICATION_TIMEOUT_SECONDS = 300
MAX_TRACKED_JOIN_MESSAGES = 1000


class RejectReason(StrEnum):
    MALFORMED = "malformed"
    NOT_FOR_YOU = "not_for_you"
    INVALID_OR_EXPIRED = "invalid_or_expired"
    FAILED = "failed"


REJECT_MESSAGES: dict[RejectReason, str] = {
    RejectReason.MALFORMED: "❌ Invalid verification link.",
    RejectReason.NOT_FOR_YOU: "❌ This verification link is not for you.",
    RejectReason.INVALID_OR_EXPIRED: (
        "❌ Invalid or expired verification link. Please rejoin the group."
    ),
    RejectReason.FAILED: "❌ Verification failed. Please try again.",
}


@dataclass(frozen=True, slots=True)
class ChallengeIssue:
    token: str
    prompt_message_id: int | None


@dataclass(frozen=True, slots=True)
class ChallengeOutcome:
    """Result of redeeming a token.  ``reason`` is set only when ``ok`` is False."""

    ok: bool
    welcome_bonus: int = 0
    group_id: int | None = None
    reason: RejectReason | None = None

    @property
    def message(self) -> str:
        if not self.ok:
            return REJECT_MESSAGES[self.reason or RejectReason.FAILED]
        return (
            "✅ Verification complete! You now have access to the group chat.\n\n"
            f"\U0001f4b0 Welcome bonus: +{self.welcome_bonus} {CURRENCY} points!"
        )


@dataclass(frozen=True, slots=True)
class _Completed:
    group_id: int
    message_id: int | None


class VerificationService:
    """Issues, validates and enforces join challenges.

    Parameters
    ----------
    engine : SQLAlchemy engine (sync; all DB work runs through ``run_db``)
    points_service : credits the welcome bonus on success
    gateway : the transport that restricts, restores and removes members
    scheduler : arms the per-member timeout
    timeout_seconds : verification window length
    """

    def __init__(
        self,
        engine: Engine,
        points_service: PointsService,
        gateway: GroupGateway,
        scheduler: TimeoutScheduler,
        timeout_seconds: int = VERIFICATION_TIMEOUT_SECONDS,
    ) -> None:
        self.engine = engine
        self.points_service = points_service
        self.gateway = gateway
        self.scheduler = scheduler
        self.timeout_seconds = timeout_seconds
        # (user_id, group_id) → platform join notice; lost on restart
        self.pending_join_messages: OrderedDict[tuple[int, int], int] = OrderedDict()

    # -------------------------------------------------------------------
    # Issue
    # -------------------------------------------------------------------
    async def issue_challenge(
        self,
        group_id: int,
        member_id: int,
        username: str | None,
        display_name: str,
        *,
        now: datetime | None = None,
    ) -> ChallengeIssue:
        """Restrict a new member, persist a PENDING session and arm its timeout."""
        now = as_utc(now) if now is not None else utcnow()

        try:
            await run_db(self._register_member, member_id, group_id, display_name, username)
        except Exception:
            logger.exception("Failed to store member %d for group %d", member_id, group_id)

        # Fail closed: restrict before the prompt is even shown
        try:
            await self.gateway.restrict_member(group_id, member_id)
        except Exception:
            logger.exception("Failed to restrict member %d in group %d", member_id, group_id)

        token = issue_token(member_id, group_id, now)

        # The row must exist before the member can see the token
        try:
            await run_db(self._create_session, token, now)
        except Exception:
            logger.exception(
                "Failed to persist verification session for member %d in group %d",
                member_id, group_id,
            )

        prompt_id: int | None = None
        try:
            prompt_id = await self.gateway.post_challenge(
                group_id, member_id, display_name, token.encoded,
            )
        except Exception:
            logger.exception("Failed to post challenge for member %d", member_id)

        if prompt_id is not None:
            try:
                await run_db(self._attach_prompt, token, prompt_id)
            except Exception:
                logger.exception("Failed to record prompt %d for member %d", prompt_id, member_id)

        self.scheduler.schedule(
            (member_id, group_id),
            self.timeout_seconds,
            lambda: self.handle_timeout(group_id, member_id),
        )
        logger.info(
            "\U0001f517 Verification required for %s (%d) in group %d",
            display_name, member_id, group_id,
        )
        return ChallengeIssue(token=token.encoded, prompt_message_id=prompt_id)

    def _register_member(
        self, member_id: int, group_id: int, display_name: str, username: str | None
    ) -> None:
        with Session(self.engine) as session:
            ledger.get_or_create_user(session, member_id, display_name, username)
            ledger.add_group_membership(session, member_id, group_id)
            session.commit()

    def _create_session(self, token: VerificationToken, now: datetime) -> None:
        with Session(self.engine) as session:
            superseded = session.execute(
                update(VerificationSession)
                .where(
                    VerificationSession.user_id == token.user_id,
                    VerificationSession.group_id == token.group_id,
                    VerificationSession.is_completed.is_(False),
                )
                .values(is_completed=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if superseded:
                logger.debug(
                    "Superseded %d pending session(s) for %d/%d",
                    superseded, token.user_id, token.group_id,
                )
            session.add(VerificationSession(
                user_id=token.user_id,
                group_id=token.group_id,
                verification_code=token.raw,
                is_completed=False,
                expires_at=now + timedelta(seconds=self.timeout_seconds),
            ))
            session.commit()

    def _attach_prompt(self, token: VerificationToken, message_id: int) -> None:
        with Session(self.engine) as session:
            session.execute(
                update(VerificationSession)
                .where(
                    VerificationSession.user_id == token.user_id,
                    VerificationSession.group_id == token.group_id,
                    VerificationSession.verification_code == token.raw,
                )
                .values(message_id=message_id)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    # -------------------------------------------------------------------
    # Validate
    # -------------------------------------------------------------------
    async def validate_challenge(
        self,
        responder_id: int,
        encoded_token: str,
        responder_name: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ChallengeOutcome:
        """Redeem *encoded_token* on behalf of *responder_id*."""
        now = as_utc(now) if now is not None else utcnow()

        token = decode_token(encoded_token)
        if token is None:
            return ChallengeOutcome(ok=False, reason=RejectReason.MALFORMED)
        if token.user_id != responder_id:
            logger.info(
                "Member %d presented a token issued to %d", responder_id, token.user_id,
            )
            return ChallengeOutcome(ok=False, reason=RejectReason.NOT_FOR_YOU)

        try:
            completed = await run_db(self._complete_session, token, now)
        except Exception:
            logger.exception("Error completing verification for member %d", responder_id)
            return ChallengeOutcome(ok=False, reason=RejectReason.FAILED)
        if completed is None:
            return ChallengeOutcome(ok=False, reason=RejectReason.INVALID_OR_EXPIRED)

        try:
            await self.gateway.restore_member(token.group_id, token.user_id)
        except Exception:
            logger.exception(
                "Failed to restore member %d in group %d", token.user_id, token.group_id,
            )

        bonus = await run_db(
            self.points_service.award_welcome_bonus, token.user_id, token.group_id,
        )

        if completed.message_id is not None:
            name = responder_name or str(responder_id)
            try:
                await self.gateway.edit_message(
                    token.group_id, completed.message_id, f"✅ {name} verified successfully!",
                )
            except Exception:
                logger.debug("Could not edit prompt %d", completed.message_id, exc_info=True)

        logger.info(
            "✅ User %d verified in group %d with %d welcome bonus",
            token.user_id, token.group_id, bonus,
        )
        return ChallengeOutcome(ok=True, welcome_bonus=bonus, group_id=token.group_id)

    def _complete_session(
        self, token: VerificationToken, now: datetime
    ) -> _Completed | None:
        """PENDING → COMPLETED for the exact token; mark the user verified."""
        with Session(self.engine) as session:
            row = session.scalar(
                select(VerificationSession).where(
                    VerificationSession.user_id == token.user_id,
                    VerificationSession.group_id == token.group_id,
                    VerificationSession.verification_code == token.raw,
                    VerificationSession.is_completed.is_(False),
                )
            )
            if row is None or as_utc(row.expires_at) < now:
                return None

            won = session.execute(
                update(VerificationSession)
                .where(
                    VerificationSession.id == row.id,
                    VerificationSession.is_completed.is_(False),
                )
                .values(is_completed=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not won:
                return None

            session.execute(
                update(User)
                .where(User.id == token.user_id)
                .values(is_verified=True, verification_date=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return _Completed(group_id=row.group_id, message_id=row.message_id)

    # -------------------------------------------------------------------
    # Timeout enforcement
    # -------------------------------------------------------------------
    async def handle_timeout(self, group_id: int, user_id: int) -> bool:
        """Remove the member if their session is still PENDING.

        Returns True if this call enforced the timeout, False if the
        session was already COMPLETED (or never existed).
        """
        try:
            message_ids = await run_db(self._expire_pending, user_id, group_id)
        except Exception:
            logger.exception("Error expiring session for member %d in group %d", user_id, group_id)
            return False
        if message_ids is None:
            return False

        try:
            await self.gateway.remove_member(group_id, user_id)
        except Exception:
            logger.exception("Failed to remove member %d from group %d", user_id, group_id)

        for message_id in message_ids:
            try:
                await self.gateway.delete_message(group_id, message_id)
            except Exception:
                logger.debug("Could not delete prompt %d", message_id, exc_info=True)

        self.pending_join_messages.pop((user_id, group_id), None)
        logger.info("⏰ User %d verification timed out in group %d", user_id, group_id)
        return True

    def _expire_pending(self, user_id: int, group_id: int) -> list[int] | None:
        """Mark every PENDING session for the pair COMPLETED.

        Returns the prompt message ids of the sessions this call closed, or
        None if nothing was PENDING.
        """
        with Session(self.engine) as session:
            rows = session.execute(
                select(VerificationSession.id, VerificationSession.message_id).where(
                    VerificationSession.user_id == user_id,
                    VerificationSession.group_id == group_id,
                    VerificationSession.is_completed.is_(False),
                )
            ).all()
            closed: list[int] = []
            won_any = False
            for session_id, message_id in rows:
                won = session.execute(
                    update(VerificationSession)
                    .where(
                        VerificationSession.id == session_id,
                        VerificationSession.is_completed.is_(False),
                    )
                    .values(is_completed=True)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if won:
                    won_any = True
                    if message_id is not None:
                        closed.append(message_id)
            session.commit()
        return closed if won_any else None

    async def recover_expired_sessions(self, *, now: datetime | None = None) -> int:
        """Enforce every PENDING session already past ``expires_at``.

        Covers timeouts whose in-process task was lost (restart, crash).
        """
        now = as_utc(now) if now is not None else utcnow()
        try:
            overdue = await run_db(self._overdue_pairs, now)
        except Exception:
            logger.exception("Error scanning for expired verification sessions")
            return 0

        enforced = 0
        for user_id, group_id in overdue:
            if self.scheduler.pending((user_id, group_id)):
                continue
            if await self.handle_timeout(group_id, user_id):
                enforced += 1
        if enforced:
            logger.info("Recovered %d expired verification session(s)", enforced)
        return enforced

    def _overdue_pairs(self, now: datetime) -> list[tuple[int, int]]:
        with Session(self.engine) as session:
            rows = session.execute(
                select(VerificationSession.user_id, VerificationSession.group_id)
                .where(
                    VerificationSession.is_completed.is_(False),
                    VerificationSession.expires_at < now,
                )
                .distinct()
            ).all()
        return [(r[0], r[1]) for r in rows]

    def purge_expired_sessions(self, *, now: datetime | None = None) -> int:
        """Delete COMPLETED sessions whose window has closed.

        PENDING rows are left for :meth:`recover_expired_sessions`.
        """
        now = as_utc(now) if now is not None else utcnow()
        try:
            with Session(self.engine) as session:
                purged = session.execute(
                    delete(VerificationSession)
                    .where(
                        VerificationSession.is_completed.is_(True),
                        VerificationSession.expires_at < now,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                session.commit()
        except Exception:
            logger.exception("Error purging expired verification sessions")
            return 0
        if purged:
            logger.info("Purged %d expired verification session(s)", purged)
        return purged

    # -------------------------------------------------------------------
    # Join notices
    # -------------------------------------------------------------------
    def track_join_message(self, user_id: int, group_id: int, message_id: int) -> None:
        """Remember the platform's join notice so it can be removed later."""
        key = (user_id, group_id)
        self.pending_join_messages[key] = message_id
        self.pending_join_messages.move_to_end(key)
        while len(self.pending_join_messages) > MAX_TRACKED_JOIN_MESSAGES:
            self.pending_join_messages.popitem(last=False)

    async def cleanup_join_message(self, user_id: int, group_id: int) -> bool:
        """Delete the tracked join notice once the member is verified.

        Called for every guild message, so it returns early without a DB
        hit unless a notice is tracked for the pair.
        """
        key = (user_id, group_id)
        message_id = self.pending_join_messages.get(key)
        if message_id is None:
            return False
        try:
            verified = await run_db(self._is_verified, user_id)
        except Exception:
            logger.exception("Error checking verification for member %d", user_id)
            return False
        if not verified:
            return False

        try:
            await self.gateway.delete_message(group_id, message_id)
        except Exception:
            logger.debug("Could not delete join notice %d", message_id, exc_info=True)
            return False
        self.pending_join_messages.pop(key, None)
        return True

    def _is_verified(self, user_id: int) -> bool:
        with Session(self.engine) as session:
            return bool(session.scalar(select(User.is_verified).where(User.id == user_id)))
