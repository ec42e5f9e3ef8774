"""
tests/test_badge_service.py — Badge evaluation against the ledger
==================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from ascend.database.models import Badge, Member, MemberBadge
from ascend.errors import BadgeNotFound, MemberNotFound
from ascend.services.badge_service import (
    check_achievements,
    get_badge_progress,
    get_member_badges,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_badge(db_engine, company):
    def _make(name: str, requirement, *, company_id: str = company, active: bool = True) -> int:
        with Session(db_engine) as session:
            badge = Badge(
                company_id=company_id, name=name, description=f"{name} badge",
                requirement=requirement, is_active=active,
            )
            session.add(badge)
            session.commit()
            return badge.id
    return _make


def _member(engine, member_id) -> Member:
    with Session(engine) as session:
        return session.get(Member, member_id)


class TestCheckAchievements:
    def test_awards_satisfied_badges_only(self, db_engine, make_member, make_badge):
        make_badge("Rich", {"type": "xp_total", "value": 1000})
        make_badge("Poor", {"type": "xp_total", "value": 1})
        member_id = make_member(total_xp=10)

        earned = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in earned] == ["Poor"]

    def test_message_count(self, db_engine, make_member, make_badge, add_tx):
        make_badge("Chatter", {"type": "message_count", "value": 3})
        member_id = make_member()
        for minutes in (1, 2):
            add_tx(member_id, 5, "message.created", NOW - timedelta(minutes=minutes))
        assert check_achievements(db_engine, _member(db_engine, member_id), now=NOW) == []

        add_tx(member_id, 5, "message.created", NOW - timedelta(minutes=3))
        earned = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in earned] == ["Chatter"]

    def test_seven_day_streak(self, db_engine, make_member, make_badge, add_tx):
        make_badge("Week Streak", {"type": "streak", "days": 7})
        member_id = make_member()
        for day in range(7):
            add_tx(member_id, 5, "message.created", NOW - timedelta(days=day))

        earned = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in earned] == ["Week Streak"]

    def test_streak_broken_by_missing_day(self, db_engine, make_member, make_badge, add_tx):
        make_badge("Week Streak", {"type": "streak", "days": 7})
        member_id = make_member()
        for day in (0, 1, 2, 4, 5, 6, 7):
            add_tx(member_id, 5, "message.created", NOW - timedelta(days=day))
        assert check_achievements(db_engine, _member(db_engine, member_id), now=NOW) == []

    def test_custom_xp_in_timeframe(self, db_engine, make_member, make_badge, add_tx):
        make_badge("Sprinter", {
            "type": "custom", "rules": [{"type": "xp_in_timeframe", "value": 500, "days": 7}],
        })
        member_id = make_member(total_xp=2000)
        add_tx(member_id, 1500, "manual.grant", NOW - timedelta(days=30))
        add_tx(member_id, 400, "manual.grant", NOW - timedelta(days=2))
        assert check_achievements(db_engine, _member(db_engine, member_id), now=NOW) == []

        add_tx(member_id, 100, "manual.grant", NOW - timedelta(hours=1))
        earned = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in earned] == ["Sprinter"]

    def test_badge_count_ignores_badges_from_same_run(self, db_engine, make_member, make_badge):
        make_badge("First", {"type": "xp_total", "value": 1})
        make_badge("Collector", {"type": "badge_count", "value": 1})
        member_id = make_member(total_xp=5)

        first = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in first] == ["First"]
        second = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in second] == ["Collector"]

    def test_bad_requirement_does_not_block_others(self, db_engine, make_member, make_badge):
        make_badge("Broken", {"type": "member_join"})
        make_badge("Malformed", {"type": "level", "value": "ten"})
        make_badge("Good", {"type": "level", "value": 1})
        member_id = make_member()

        earned = check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert [b.name for b in earned] == ["Good"]

    def test_earned_at_most_once(self, db_engine, make_member, make_badge):
        make_badge("Once", {"type": "xp_total", "value": 0})
        member = _member(db_engine, make_member())

        assert len(check_achievements(db_engine, member, now=NOW)) == 1
        assert check_achievements(db_engine, member, now=NOW) == []
        with Session(db_engine) as session:
            assert session.query(MemberBadge).filter_by(member_id=member.id).count() == 1

    def test_inactive_and_foreign_badges_ignored(self, db_engine, company, make_member, make_badge):
        from ascend.database.models import Company

        with Session(db_engine) as session:
            session.add(Company(id="globex", name="Globex"))
            session.commit()
        make_badge("Retired", {"type": "xp_total", "value": 0}, active=False)
        make_badge("Elsewhere", {"type": "xp_total", "value": 0}, company_id="globex")

        member_id = make_member()
        assert check_achievements(db_engine, _member(db_engine, member_id), now=NOW) == []

    def test_deleted_member(self, db_engine, make_member):
        member = _member(db_engine, make_member())
        with Session(db_engine) as session:
            session.delete(session.get(Member, member.id))
            session.commit()
        with pytest.raises(MemberNotFound):
            check_achievements(db_engine, member, now=NOW)


class TestBadgeProgress:
    def test_partial_progress(self, db_engine, make_member, make_badge):
        badge_id = make_badge("Rich", {"type": "xp_total", "value": 1000})
        member_id = make_member(total_xp=250)
        assert get_badge_progress(db_engine, member_id, badge_id, now=NOW) == 25

    def test_earned_is_100(self, db_engine, make_member, make_badge):
        badge_id = make_badge("Easy", {"type": "xp_total", "value": 1})
        member_id = make_member(total_xp=5)
        check_achievements(db_engine, _member(db_engine, member_id), now=NOW)
        assert get_badge_progress(db_engine, member_id, badge_id, now=NOW) == 100

    def test_unreadable_requirement_is_zero(self, db_engine, make_member, make_badge):
        badge_id = make_badge("Broken", {"type": "nope"})
        assert get_badge_progress(db_engine, make_member(), badge_id, now=NOW) == 0

    def test_unknown_ids(self, db_engine, make_member, make_badge):
        member_id = make_member()
        badge_id = make_badge("Any", {"type": "xp_total", "value": 1})
        with pytest.raises(MemberNotFound):
            get_badge_progress(db_engine, 9999, badge_id)
        with pytest.raises(BadgeNotFound):
            get_badge_progress(db_engine, member_id, 9999)


class TestMemberBadges:
    def test_lists_earned_badges(self, db_engine, make_member, make_badge):
        make_badge("Easy", {"type": "xp_total", "value": 1})
        make_badge("Hard", {"type": "xp_total", "value": 10_000})
        member_id = make_member(total_xp=5)
        check_achievements(db_engine, _member(db_engine, member_id), now=NOW)

        badges = get_member_badges(db_engine, member_id)
        assert [b["name"] for b in badges] == ["Easy"]
        assert badges[0]["earned_at"].startswith("2026-03-10T12:00:00")
