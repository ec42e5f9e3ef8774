"""
ascend.services.badge_service — Badge evaluation & awarding
============================================================

Runs after a grant commits.  Each active badge the member has not yet
earned is parsed, evaluated against ledger history and, if satisfied,
awarded with a conflict-ignoring insert.  A badge is reported as newly
earned only when *this* call inserted the row, so two evaluations
racing for the same member report it once between them.

One broken badge never blocks the others: its failure is logged as a
:class:`~ascend.errors.PartialEvaluationError` and the loop moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ascend.database.models import Badge, Member, MemberBadge, as_utc, utcnow
from ascend.engine.deadline import deadline_expired
from ascend.engine.requirements import is_satisfied, parse_requirement, requirement_progress
from ascend.errors import (
    BadgeNotFound,
    MemberNotFound,
    PartialEvaluationError,
    PersistenceError,
    UnknownRequirementError,
)
from ascend.services.ledger import LedgerStore

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.engine.deadline import Deadline

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LedgerBadgeContext:
    """:class:`~ascend.engine.requirements.BadgeContext` backed by the ledger."""

    ledger: LedgerStore
    member_id: int
    total_xp: int
    level: int
    earned_count: int
    now: datetime

    def count_events(self, event_type: str) -> int:
        return self.ledger.count_transactions(self.member_id, event_type=event_type)

    def has_activity_between(self, start: datetime, end: datetime) -> bool:
        return self.ledger.count_transactions(self.member_id, since=start, until=end) > 0

    def xp_since(self, since: datetime) -> int:
        return self.ledger.sum_transactions(self.member_id, since)


def check_achievements(
    engine: Engine,
    member: Member,
    *,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> list[Badge]:
    """Evaluate and award every unearned active badge for *member*.

    Returns the badges newly awarded by this call.

    Raises
    ------
    PersistenceError
        If the active badges or earned set cannot be loaded.
    MemberNotFound
        If the member no longer exists.
    """
    now = now or utcnow()
    newly_earned: list[Badge] = []

    with Session(engine, expire_on_commit=False) as session:
        ledger = LedgerStore(session)
        try:
            current = ledger.find_member(member.id)
            badges = ledger.active_badges(member.company_id)
            earned = ledger.earned_badge_ids(member.id)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Could not load badges for evaluation", {"member_id": member.id}
            ) from exc
        if current is None:
            raise MemberNotFound(member.id)

        ctx = LedgerBadgeContext(
            ledger=ledger,
            member_id=current.id,
            total_xp=current.total_xp,
            level=current.level,
            earned_count=len(earned),
            now=now,
        )

        for badge in badges:
            badge_id = badge.id
            if badge_id in earned:
                continue
            if deadline_expired(deadline):
                logger.warning(
                    "Badge check for member %s stopped at its deadline", member.id
                )
                break
            try:
                requirement = parse_requirement(badge.requirement)
                if not is_satisfied(requirement, ctx):
                    continue
                if ledger.award_badge(member.id, badge_id, now):
                    session.commit()
                    newly_earned.append(badge)
                    logger.info("Member %s earned badge %r", member.id, badge.name)
            except Exception as exc:
                session.rollback()
                err = PartialEvaluationError("Badge", badge_id, exc)
                logger.warning("%s", err, exc_info=exc)

        for badge in newly_earned:
            session.refresh(badge)

    return newly_earned


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------
def get_badge_progress(
    engine: Engine, member_id: int, badge_id: int, *, now: datetime | None = None
) -> int:
    """Progress toward a badge, 0–100.  Earned badges are always 100."""
    with Session(engine) as session:
        ledger = LedgerStore(session)
        member = ledger.find_member(member_id)
        if member is None:
            raise MemberNotFound(member_id)
        badge = session.get(Badge, badge_id)
        if badge is None or badge.company_id != member.company_id:
            raise BadgeNotFound(badge_id)

        earned = ledger.earned_badge_ids(member_id)
        if badge_id in earned:
            return 100

        try:
            requirement = parse_requirement(badge.requirement)
        except UnknownRequirementError:
            logger.warning("Badge %s has an unreadable requirement", badge_id)
            return 0

        ctx = LedgerBadgeContext(
            ledger=ledger,
            member_id=member.id,
            total_xp=member.total_xp,
            level=member.level,
            earned_count=len(earned),
            now=now or utcnow(),
        )
        return requirement_progress(requirement, ctx)


def get_member_badges(engine: Engine, member_id: int) -> list[dict]:
    """Earned badges for a profile view, newest first."""
    with Session(engine) as session:
        rows = session.execute(
            select(Badge, MemberBadge.earned_at)
            .join(MemberBadge, MemberBadge.badge_id == Badge.id)
            .where(MemberBadge.member_id == member_id)
            .order_by(MemberBadge.earned_at.desc(), Badge.id)
        ).all()
        return [
            {
                "id": badge.id,
                "name": badge.name,
                "description": badge.description,
                "image_url": badge.image_url,
                "rarity": badge.rarity,
                "earned_at": as_utc(earned_at).isoformat() if earned_at else None,
            }
            for badge, earned_at in rows
        ]
