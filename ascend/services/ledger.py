"""
ascend.services.ledger — Member aggregate & XP ledger store
============================================================

Every read and write the grant engine, badge evaluator and rule matcher
need, expressed over one SQLAlchemy :class:`~sqlalchemy.orm.Session`.
The session is the unit of work: nothing here commits.

Two writes matter for correctness under concurrency:

* :meth:`LedgerStore.increment` is a single
  ``UPDATE members SET total_xp = total_xp + :delta RETURNING total_xp``.
  The stored total is never read, modified in Python and written back.
* :meth:`LedgerStore.award_badge` and :meth:`LedgerStore.upsert_member`
  are conflict-ignoring inserts, so two racing callers agree on one row.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ascend.constants import LevelProgress
from ascend.database.models import (
    Badge,
    Member,
    MemberBadge,
    XPRule,
    XPTransaction,
)
from ascend.errors import MemberNotFound

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class LedgerStore:
    """Ledger and member-aggregate access bound to one session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------
    def find_member(self, member_id: int) -> Member | None:
        return self.session.get(Member, member_id, populate_existing=True)

    def find_member_by_external(self, external_user_id: str, company_id: str) -> Member | None:
        return self.session.scalar(
            select(Member).where(
                Member.external_user_id == external_user_id,
                Member.company_id == company_id,
            )
        )

    def upsert_member(
        self,
        external_user_id: str,
        company_id: str,
        *,
        display_name: str | None = None,
        avatar_url: str | None = None,
        membership_id: str | None = None,
    ) -> Member:
        """Return the member for (*external_user_id*, *company_id*), creating it
        if needed.

        Display data is applied only when the row is created; an existing
        member is returned untouched.
        """
        existing = self.find_member_by_external(external_user_id, company_id)
        if existing is not None:
            return existing

        values = {
            "external_user_id": external_user_id,
            "company_id": company_id,
            "display_name": display_name or external_user_id,
            "avatar_url": avatar_url,
            "membership_id": membership_id,
        }
        if not self._insert_ignoring_conflict(
            Member, values, ["external_user_id", "company_id"]
        ):
            logger.debug("Member %s/%s created concurrently", company_id, external_user_id)

        member = self.find_member_by_external(external_user_id, company_id)
        if member is None:  # pragma: no cover - insert or conflict guarantees a row
            raise MemberNotFound(external_user_id)
        return member

    def lock_member_level(self, member_id: int) -> int | None:
        """Read the member's level under a row lock (``FOR UPDATE``).

        Pins the pre-grant level inside the current transaction.  SQLite
        ignores ``FOR UPDATE``; there totals stay exact but the pre-grant
        level is read before the write lock is taken.
        """
        return self.session.scalar(
            select(Member.level).where(Member.id == member_id).with_for_update()
        )

    def increment(self, member_id: int, delta: int) -> int:
        """Atomically add *delta* to the member's total; return the new total.

        Raises
        ------
        MemberNotFound
            If no row was updated.
        """
        new_total = self.session.execute(
            update(Member)
            .where(Member.id == member_id)
            .values(total_xp=Member.total_xp + delta)
            .returning(Member.total_xp)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        if new_total is None:
            raise MemberNotFound(member_id)
        return int(new_total)

    def set_level(
        self, member_id: int, progress: LevelProgress, *, activity_at: datetime
    ) -> None:
        self.session.execute(
            update(Member)
            .where(Member.id == member_id)
            .values(
                level=progress.level,
                current_level_xp=progress.current_level_xp,
                last_activity_at=activity_at,
            )
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------
    def append_transaction(
        self,
        member_id: int,
        amount: int,
        reason: str,
        event_type: str,
        metadata: dict[str, Any] | None = None,
        *,
        created_at: datetime | None = None,
    ) -> XPTransaction:
        tx = XPTransaction(
            member_id=member_id,
            amount=amount,
            reason=reason,
            event_type=event_type,
            metadata_=metadata,
        )
        if created_at is not None:
            tx.created_at = created_at
        self.session.add(tx)
        self.session.flush()
        return tx

    def count_transactions(
        self,
        member_id: int,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(XPTransaction).where(
            XPTransaction.member_id == member_id
        )
        if event_type is not None:
            stmt = stmt.where(XPTransaction.event_type == event_type)
        if since is not None:
            stmt = stmt.where(XPTransaction.created_at >= since)
        if until is not None:
            stmt = stmt.where(XPTransaction.created_at < until)
        return int(self.session.scalar(stmt) or 0)

    def sum_transactions(self, member_id: int, since: datetime) -> int:
        total = self.session.scalar(
            select(func.coalesce(func.sum(XPTransaction.amount), 0)).where(
                XPTransaction.member_id == member_id,
                XPTransaction.created_at >= since,
            )
        )
        return int(total or 0)

    def last_transaction(self, member_id: int, event_type: str) -> XPTransaction | None:
        return self.session.scalar(
            select(XPTransaction)
            .where(
                XPTransaction.member_id == member_id,
                XPTransaction.event_type == event_type,
            )
            .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
            .limit(1)
        )

    def recent_transactions(
        self, member_id: int, limit: int = 50, offset: int = 0
    ) -> list[XPTransaction]:
        return list(self.session.scalars(
            select(XPTransaction)
            .where(XPTransaction.member_id == member_id)
            .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        ))

    # ------------------------------------------------------------------
    # Badges & rules
    # ------------------------------------------------------------------
    def earned_badge_ids(self, member_id: int) -> set[int]:
        return set(self.session.scalars(
            select(MemberBadge.badge_id).where(MemberBadge.member_id == member_id)
        ))

    def award_badge(self, member_id: int, badge_id: int, earned_at: datetime) -> bool:
        """Record an earned badge; True only if this call inserted the row."""
        return self._insert_ignoring_conflict(
            MemberBadge,
            {"member_id": member_id, "badge_id": badge_id, "earned_at": earned_at},
            ["member_id", "badge_id"],
        )

    def active_badges(self, company_id: str) -> list[Badge]:
        return list(self.session.scalars(
            select(Badge)
            .where(Badge.company_id == company_id, Badge.is_active.is_(True))
            .order_by(Badge.id)
        ))

    def active_rules(self, company_id: str, event_type: str) -> list[XPRule]:
        return list(self.session.scalars(
            select(XPRule)
            .where(
                XPRule.company_id == company_id,
                XPRule.event_type == event_type,
                XPRule.is_active.is_(True),
            )
            .order_by(XPRule.id)
        ))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _insert_ignoring_conflict(
        self, model: type, values: dict[str, Any], conflict_cols: list[str]
    ) -> bool:
        """``INSERT ... ON CONFLICT DO NOTHING``; True when a row was written.

        Dialects without that clause fall back to a SAVEPOINT that swallows
        the unique-constraint violation.
        """
        dialect = self.session.get_bind().dialect.name
        make_insert = _UPSERT_DIALECTS.get(dialect)
        if make_insert is not None:
            self.session.flush()
            pk = model.__table__.primary_key.columns.values()[0]
            stmt = (
                make_insert(model.__table__)
                .values(**values)
                .on_conflict_do_nothing(index_elements=conflict_cols)
                .returning(pk)
            )
            return self.session.connection().execute(stmt).first() is not None

        try:
            with self.session.begin_nested():
                self.session.execute(insert(model.__table__).values(**values))
        except IntegrityError:
            return False
        return True
