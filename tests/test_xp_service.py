"""
tests/test_xp_service.py — XP grant engine
===========================================

Covers validation, atomic totals, level derivation, deadline handling and
the isolated post-commit side effects (badges, cache, notifications).
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from ascend.constants import level_from_total_xp
from ascend.database.models import Badge, Base, Company, Member, XPTransaction
from ascend.engine.cache import leaderboard_key
from ascend.engine.deadline import Deadline
from ascend.errors import MemberNotFound
from ascend.services.notifications import QueuedDispatcher
from ascend.services.xp_service import (
    bulk_grant_xp,
    count_grants_today,
    get_last_grant,
    get_xp_history,
    grant_xp,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _grant(engine, deps, member_id, amount, reason="Test grant", event_type="manual.grant", **kw):
    return grant_xp(
        engine, member_id=member_id, amount=amount, reason=reason,
        event_type=event_type, now=kw.pop("now", NOW), **deps, **kw,
    )


def _load(engine, member_id) -> Member:
    with Session(engine) as session:
        return session.get(Member, member_id)


def _tx_count(engine, member_id) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(XPTransaction).where(XPTransaction.member_id == member_id)
        )


# ---------------------------------------------------------------------------
# Validation — nothing written
# ---------------------------------------------------------------------------
class TestValidation:
    def test_bad_amounts_rejected(self, db_engine, make_member, deps):
        member_id = make_member(total_xp=10)
        for amount in (0, -5, 10_001, True, "10", 2.5):
            result = _grant(db_engine, deps, member_id, amount)
            assert result.success is False
            assert result.error_kind == "InvalidAmount"

        assert _load(db_engine, member_id).total_xp == 10
        assert _tx_count(db_engine, member_id) == 0

    def test_reason_required_and_bounded(self, db_engine, make_member, deps):
        member_id = make_member()
        assert _grant(db_engine, deps, member_id, 10, reason="   ").error_kind == "ValidationError"
        assert _grant(db_engine, deps, member_id, 10, reason="x" * 201).error_kind == "ValidationError"
        assert _grant(db_engine, deps, member_id, 10, reason="x" * 200).success is True

    def test_event_type_required(self, db_engine, make_member, deps):
        result = _grant(db_engine, deps, make_member(), 10, event_type="")
        assert result.success is False
        assert result.error_kind == "ValidationError"

    def test_unknown_member(self, db_engine, company, deps):
        result = _grant(db_engine, deps, 9999, 10)
        assert result.success is False
        assert result.error_kind == "MemberNotFound"
        deps["dispatcher"].notify.assert_not_called()


# ---------------------------------------------------------------------------
# Successful grants
# ---------------------------------------------------------------------------
class TestGrant:
    def test_increments_and_records_transaction(self, db_engine, make_member, deps):
        member_id = make_member(total_xp=100)
        result = _grant(db_engine, deps, member_id, 50, metadata={"channel_id": "general"})

        assert result.success is True
        assert result.member.total_xp == 150
        assert result.transaction_id is not None

        with Session(db_engine) as session:
            tx = session.get(XPTransaction, result.transaction_id)
            assert tx.amount == 50
            assert tx.reason == "Test grant"
            assert tx.event_type == "manual.grant"
            assert tx.metadata_ == {"channel_id": "general"}
            assert tx.created_at.replace(tzinfo=None) == NOW.replace(tzinfo=None)

    def test_total_taken_from_database_not_stale_copy(self, db_engine, make_member, deps):
        member_id = make_member(total_xp=0)
        stale = _load(db_engine, member_id)
        _grant(db_engine, deps, member_id, 40)
        _grant(db_engine, deps, member_id, 40)
        assert stale.total_xp == 0
        assert _load(db_engine, member_id).total_xp == 80

    def test_total_equals_ledger_sum(self, db_engine, make_member, deps):
        member_id = make_member()
        for amount in (5, 100, 250, 5):
            _grant(db_engine, deps, member_id, amount)
        with Session(db_engine) as session:
            ledger_sum = session.scalar(
                select(func.sum(XPTransaction.amount)).where(XPTransaction.member_id == member_id)
            )
        assert _load(db_engine, member_id).total_xp == ledger_sum == 360

    def test_level_up(self, db_engine, make_member, deps):
        member_id = make_member(total_xp=200, level=1)
        result = _grant(db_engine, deps, member_id, 100)

        assert result.leveled_up is True
        assert (result.old_level, result.new_level) == (1, 2)
        member = _load(db_engine, member_id)
        assert member.level == 2
        assert member.current_level_xp == 18   # 300 - 282
        assert member.last_activity_at is not None

        deps["dispatcher"].notify.assert_called_once()
        user_id, title, _message, link = deps["dispatcher"].notify.call_args.args
        assert user_id == member.external_user_id
        assert title == "🎉 Level Up! You're now Level 2!"
        assert link == f"/members/{member_id}"

    def test_multi_level_jump(self, db_engine, make_member, deps):
        member_id = make_member()
        result = _grant(db_engine, deps, member_id, 801)
        assert (result.old_level, result.new_level) == (1, 3)

    def test_no_level_up_no_notification(self, db_engine, make_member, deps):
        result = _grant(db_engine, deps, make_member(), 10)
        assert result.leveled_up is False
        deps["dispatcher"].notify.assert_not_called()


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------
class TestDeadline:
    def test_expired_before_commit_writes_nothing(self, db_engine, make_member, deps):
        member_id = make_member(total_xp=10)
        expired = Deadline(at=0.0, clock=lambda: 1.0)
        result = _grant(db_engine, deps, member_id, 500, deadline=expired)

        assert result.success is False
        assert result.error_kind == "DeadlineExceeded"
        assert _load(db_engine, member_id).total_xp == 10
        assert _tx_count(db_engine, member_id) == 0
        deps["dispatcher"].notify.assert_not_called()

    def test_expiry_after_commit_skips_notifications_only(self, db_engine, make_member, deps):
        member_id = make_member()
        ticks = iter([0.0])
        deadline = Deadline(at=10.0, clock=lambda: next(ticks, 99.0))
        result = _grant(db_engine, deps, member_id, 500, deadline=deadline)

        assert result.success is True
        assert result.leveled_up is True
        assert _load(db_engine, member_id).total_xp == 500
        deps["dispatcher"].notify.assert_not_called()


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------
class TestSideEffects:
    def test_invalidates_company_leaderboards(self, db_engine, company, make_member, deps):
        cache = deps["cache"]
        own = leaderboard_key(company, "total_xp", "all_time")
        other = leaderboard_key("globex", "total_xp", "all_time")
        cache.set(own, [{"member_id": 1}], 300)
        cache.set(other, [{"member_id": 2}], 300)

        _grant(db_engine, deps, make_member(), 10)

        assert cache.get(own) is None
        assert cache.get(other) == [{"member_id": 2}]

    def test_notification_failure_does_not_fail_grant(self, db_engine, make_member, deps):
        deps["dispatcher"].notify.side_effect = RuntimeError("push provider down")
        member_id = make_member(total_xp=280)
        result = _grant(db_engine, deps, member_id, 10)
        assert result.success is True
        assert result.leveled_up is True
        assert _load(db_engine, member_id).total_xp == 290

    def test_badges_awarded_after_grant(self, db_engine, company, make_member, deps):
        with Session(db_engine) as session:
            session.add(Badge(
                company_id=company, name="Century", description="Earn 100 XP",
                requirement={"type": "xp_total", "value": 100},
            ))
            session.commit()
        member_id = make_member()

        first = _grant(db_engine, deps, member_id, 150)
        assert [b.name for b in first.badges_earned] == ["Century"]
        _user, title, message, link = deps["dispatcher"].notify.call_args.args
        assert title == "🏆 Badge Earned: Century!"
        assert message == "Earn 100 XP"
        assert link == "/badges"

        second = _grant(db_engine, deps, member_id, 10)
        assert second.badges_earned == []

    def test_cache_failure_does_not_fail_grant(self, db_engine, make_member, deps):
        broken = MagicMock()
        broken.delete_prefix.side_effect = RuntimeError("cache gone")
        result = _grant(db_engine, {**deps, "cache": broken}, make_member(), 10)
        assert result.success is True

    def test_slow_push_provider_does_not_delay_grant(self, db_engine, make_member, deps):
        release = threading.Event()
        delivered = []

        class SlowDispatcher:
            def notify(self, user_id, title, message, link=None):
                release.wait(5)
                delivered.append(title)

        queued = QueuedDispatcher(SlowDispatcher())
        try:
            started = time.monotonic()
            result = _grant(db_engine, {**deps, "dispatcher": queued}, make_member(total_xp=280), 10)
            elapsed = time.monotonic() - started

            assert result.leveled_up is True
            assert delivered == []
            assert elapsed < 2.0

            release.set()
            queued.join()
            assert delivered == ["🎉 Level Up! You're now Level 2!"]
        finally:
            release.set()
            queued.close()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------
@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine; each pooled connection is a real connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ascend.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(Company(id="acme", name="Acme Community", settings={}))
        session.add(Member(company_id="acme", external_user_id="u1", display_name="u1", total_xp=0, level=1))
        session.commit()
    yield engine
    engine.dispose()


class TestConcurrentGrants:
    def test_parallel_grants_sum_exactly(self, file_engine, deps):
        with Session(file_engine) as session:
            member_id = session.scalar(select(Member.id))
        amounts = [5, 10, 25, 50, 100, 3, 7, 250, 40, 60] * 3

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda amount: _grant(file_engine, deps, member_id, amount), amounts
            ))

        assert all(r.success for r in results)
        with Session(file_engine) as session:
            member = session.get(Member, member_id)
            ledger_sum, ledger_rows = session.execute(
                select(func.sum(XPTransaction.amount), func.count(XPTransaction.id))
                .where(XPTransaction.member_id == member_id)
            ).one()
        assert member.total_xp == sum(amounts) == ledger_sum
        assert ledger_rows == len(amounts)
        assert member.level == level_from_total_xp(member.total_xp).level


# ---------------------------------------------------------------------------
# Bulk & reads
# ---------------------------------------------------------------------------
class TestBulkAndReads:
    def test_bulk_grant_keeps_order(self, db_engine, make_member, deps):
        a, b = make_member(), make_member()
        results = bulk_grant_xp(db_engine, [
            {"member_id": a, "amount": 10, "reason": "one", "event_type": "manual.grant"},
            {"member_id": 9999, "amount": 10, "reason": "two", "event_type": "manual.grant"},
            {"member_id": b, "amount": 0, "reason": "three", "event_type": "manual.grant"},
            {"member_id": b, "amount": 20, "reason": "four", "event_type": "manual.grant",
             "metadata": {"batch": 1}},
            {"member_id": b},
        ], now=NOW, **deps)

        assert [r.success for r in results] == [True, False, False, True, False]
        assert results[1].error_kind == "MemberNotFound"
        assert results[4].error_kind == "ValidationError"
        assert _load(db_engine, b).total_xp == 20

    def test_last_grant_and_daily_count(self, db_engine, make_member, add_tx):
        member_id = make_member()
        add_tx(member_id, 5, "message.created", NOW - timedelta(days=1))
        add_tx(member_id, 5, "message.created", NOW - timedelta(hours=2))
        add_tx(member_id, 5, "message.created", NOW - timedelta(hours=1))

        assert count_grants_today(db_engine, member_id, "message.created", now=NOW) == 2
        last = get_last_grant(db_engine, member_id, "message.created")
        assert last.created_at.replace(tzinfo=None) == (NOW - timedelta(hours=1)).replace(tzinfo=None)
        assert get_last_grant(db_engine, member_id, "purchase.completed") is None

    def test_history_is_paged_newest_first(self, db_engine, make_member, add_tx):
        member_id = make_member()
        for minutes, amount in ((30, 1), (20, 2), (10, 3)):
            add_tx(member_id, amount, "message.created", NOW - timedelta(minutes=minutes))

        page = get_xp_history(db_engine, member_id, limit=2, offset=0)
        assert page["total"] == 3
        assert [t["amount"] for t in page["transactions"]] == [3, 2]

        rest = get_xp_history(db_engine, member_id, limit=2, offset=2)
        assert [t["amount"] for t in rest["transactions"]] == [1]

    def test_history_unknown_member(self, db_engine, company):
        with pytest.raises(MemberNotFound):
            get_xp_history(db_engine, 9999)
