"""
ascend.services.xp_service — XP Grant Engine
=============================================

The only writer of member XP totals.  A grant is one transaction:

    1. Validate the request (nothing written on failure).
    2. Read the member's level under a row lock — the pre-grant level.
    3. Atomically increment ``total_xp`` in SQL and read back the result.
    4. Re-derive level and in-level progress from the post-increment total.
    5. Persist the level fields and append the ledger transaction.
    6. Commit (unless the caller's deadline already passed).

After the commit, three best-effort side effects run, each isolated from
the others so none of them can undo the grant:

* badge evaluation (:func:`~ascend.services.badge_service.check_achievements`),
* leaderboard cache invalidation for the member's company (always attempted),
* level-up and badge notifications (skipped once the deadline has passed).

Callers always get a :class:`GrantResult`; domain and storage errors are
folded into ``success=False`` rather than raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ascend.config import AscendConfig
from ascend.constants import level_from_total_xp
from ascend.database.models import Badge, Member, XPTransaction, as_utc, utcnow
from ascend.engine.deadline import check_deadline, deadline_expired
from ascend.engine.requirements import start_of_day
from ascend.errors import (
    AscendError,
    InvalidAmount,
    MemberNotFound,
    PersistenceError,
    ValidationError,
)
from ascend.services.badge_service import check_achievements
from ascend.services.leaderboard_service import invalidate_company
from ascend.services.ledger import LedgerStore
from ascend.services.notifications import send_badge_notification, send_level_up_notification

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.engine.cache import ResultCache
    from ascend.engine.deadline import Deadline
    from ascend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 200


@dataclass(slots=True)
class GrantResult:
    """Outcome of one grant.

    ``member`` is a detached snapshot taken inside the grant transaction.
    ``badges_earned`` lists only badges this grant's evaluation inserted.
    """

    success: bool
    error: str | None = None
    error_kind: str | None = None
    leveled_up: bool = False
    old_level: int | None = None
    new_level: int | None = None
    member: Member | None = None
    transaction_id: int | None = None
    badges_earned: list[Badge] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_grant(amount: Any, reason: Any, event_type: Any, config: AscendConfig) -> None:
    """Raise a :class:`ValidationError` for a malformed grant request."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("XP amount must be an integer", {"amount": amount})
    if not config.min_xp_per_grant <= amount <= config.max_xp_per_grant:
        raise InvalidAmount(
            f"XP amount must be between {config.min_xp_per_grant} "
            f"and {config.max_xp_per_grant}",
            {"amount": amount},
        )
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Reason must be at most {MAX_REASON_LENGTH} characters")
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Event type is required")


# ---------------------------------------------------------------------------
# Grant
# ---------------------------------------------------------------------------
def grant_xp(
    engine: Engine,
    *,
    member_id: int,
    amount: int,
    reason: str,
    event_type: str,
    metadata: dict[str, Any] | None = None,
    cache: ResultCache,
    dispatcher: NotificationDispatcher,
    config: AscendConfig | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Grant *amount* XP to *member_id* and run the post-commit side effects."""
    config = config or AscendConfig.default()
    try:
        validate_grant(amount, reason, event_type, config)
    except ValidationError as exc:
        logger.info("Rejected grant to member %s: %s", member_id, exc)
        return GrantResult(success=False, error=str(exc), error_kind=type(exc).__name__)

    now = now or utcnow()
    session = Session(engine, expire_on_commit=False)
    try:
        ledger = LedgerStore(session)
        old_level = ledger.lock_member_level(member_id)
        if old_level is None:
            raise MemberNotFound(member_id)

        new_total = ledger.increment(member_id, amount)
        progress = level_from_total_xp(new_total)
        ledger.set_level(member_id, progress, activity_at=now)
        tx = ledger.append_transaction(
            member_id, amount, reason, str(event_type), metadata, created_at=now
        )
        member = ledger.find_member(member_id)

        check_deadline(deadline, "grant commit")
        session.commit()
    except AscendError as exc:
        session.rollback()
        logger.info("Grant to member %s not applied: %s", member_id, exc)
        return GrantResult(success=False, error=str(exc), error_kind=type(exc).__name__)
    except SQLAlchemyError as exc:
        session.rollback()
        err = PersistenceError("XP grant failed", {"member_id": member_id})
        err.__cause__ = exc
        logger.exception("%s (member %s)", err, member_id)
        return GrantResult(success=False, error=str(err), error_kind=type(err).__name__)
    finally:
        session.close()

    result = GrantResult(
        success=True,
        leveled_up=progress.level > old_level,
        old_level=old_level,
        new_level=progress.level,
        member=member,
        transaction_id=tx.id,
    )
    if result.leveled_up:
        logger.info("Member %s leveled up %d → %d", member_id, old_level, progress.level)

    _after_commit(engine, result, cache=cache, dispatcher=dispatcher, deadline=deadline, now=now)
    return result


def _after_commit(
    engine: Engine,
    result: GrantResult,
    *,
    cache: ResultCache,
    dispatcher: NotificationDispatcher,
    deadline: Deadline | None,
    now: datetime,
) -> None:
    member = result.member
    if member is None:
        return

    try:
        result.badges_earned = check_achievements(engine, member, now=now, deadline=deadline)
    except Exception:
        logger.exception("Badge check failed after grant to member %s", member.id)

    try:
        invalidate_company(cache, member.company_id)
    except Exception:
        logger.exception("Leaderboard invalidation failed for %s", member.company_id)

    if deadline_expired(deadline):
        logger.warning("Skipping notifications for member %s: deadline passed", member.id)
        return
    if result.leveled_up:
        send_level_up_notification(dispatcher, member, result.new_level)
    if result.badges_earned:
        send_badge_notification(dispatcher, member, result.badges_earned)


def bulk_grant_xp(
    engine: Engine, grants: Iterable[Mapping[str, Any]], **deps: Any
) -> list[GrantResult]:
    """Apply *grants* one after another; one result per request, in order.

    Each mapping holds ``member_id``, ``amount``, ``reason``, ``event_type``
    and optionally ``metadata``.  *deps* (cache, dispatcher, config, ...)
    are shared by every grant.
    """
    results = []
    for grant in grants:
        try:
            results.append(grant_xp(engine, **grant, **deps))
        except TypeError as exc:
            results.append(GrantResult(
                success=False, error=f"Malformed grant: {exc}", error_kind="ValidationError"
            ))
    return results


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------
def get_last_grant(engine: Engine, member_id: int, event_type: str) -> XPTransaction | None:
    with Session(engine) as session:
        return LedgerStore(session).last_transaction(member_id, event_type)


def count_grants_today(
    engine: Engine, member_id: int, event_type: str, *, now: datetime | None = None
) -> int:
    """Grants of *event_type* since UTC midnight."""
    today = start_of_day(as_utc(now or utcnow()))
    with Session(engine) as session:
        return LedgerStore(session).count_transactions(
            member_id, event_type=event_type, since=today, until=today + timedelta(days=1)
        )


def get_xp_history(
    engine: Engine, member_id: int, limit: int = 50, offset: int = 0
) -> dict[str, Any]:
    """Newest-first page of a member's ledger.

    Raises
    ------
    MemberNotFound
        If the member does not exist.
    """
    with Session(engine) as session:
        ledger = LedgerStore(session)
        if ledger.find_member(member_id) is None:
            raise MemberNotFound(member_id)
        rows = ledger.recent_transactions(member_id, limit=limit, offset=offset)
        return {
            "member_id": member_id,
            "total": ledger.count_transactions(member_id),
            "limit": limit,
            "offset": offset,
            "transactions": [
                {
                    "id": tx.id,
                    "amount": tx.amount,
                    "reason": tx.reason,
                    "event_type": tx.event_type,
                    "metadata": tx.metadata_,
                    "created_at": as_utc(tx.created_at).isoformat(),
                }
                for tx in rows
            ],
        }
