"""
tests/test_requirements.py — Badge requirement parsing & evaluation
====================================================================

Pure tests: requirements are evaluated against an in-memory context,
no database involved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

import pytest

from ascend.engine.requirements import (
    BadgeCount,
    Custom,
    LevelReached,
    MessageCount,
    PurchaseCount,
    Streak,
    XPInTimeframe,
    XPTotal,
    is_satisfied,
    parse_requirement,
    requirement_progress,
    start_of_day,
    streak_length,
)
from ascend.errors import UnknownRequirementError, ValidationError

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=UTC)


@dataclass
class FakeContext:
    total_xp: int = 0
    level: int = 1
    earned_count: int = 0
    now: datetime = NOW
    events: dict[str, int] = field(default_factory=dict)
    active_days: set[date] = field(default_factory=set)
    # (timestamp, amount) pairs
    ledger: list[tuple[datetime, int]] = field(default_factory=list)

    def count_events(self, event_type: str) -> int:
        return self.events.get(event_type, 0)

    def has_activity_between(self, start: datetime, end: datetime) -> bool:
        return start.date() in self.active_days

    def xp_since(self, since: datetime) -> int:
        return sum(amount for ts, amount in self.ledger if ts >= since)


def _days_back(*offsets: int) -> set[date]:
    return {(NOW - timedelta(days=o)).date() for o in offsets}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
class TestParseRequirement:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ({"type": "xp_total", "value": 1000}, XPTotal(1000)),
            ({"type": "level", "value": 10}, LevelReached(10)),
            ({"type": "streak", "days": 7}, Streak(7)),
            ({"type": "badge_count", "value": 3}, BadgeCount(3)),
            ({"type": "message_count", "value": 100}, MessageCount(100)),
            ({"type": "purchase_count", "value": 1}, PurchaseCount(1)),
        ],
    )
    def test_simple_variants(self, raw, expected):
        assert parse_requirement(raw) == expected

    def test_whole_float_accepted(self):
        assert parse_requirement({"type": "xp_total", "value": 50.0}) == XPTotal(50)

    def test_custom_with_rules(self):
        req = parse_requirement({
            "type": "custom",
            "rules": [{"type": "xp_in_timeframe", "value": 500, "days": 7}],
        })
        assert req == Custom(rules=(XPInTimeframe(value=500, days=7),))

    def test_custom_without_rules(self):
        assert parse_requirement({"type": "custom"}) == Custom(rules=())

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "level",
            {},
            {"type": "member_join"},
            {"type": "level"},
            {"type": "level", "value": "10"},
            {"type": "level", "value": True},
            {"type": "level", "value": 0},
            {"type": "xp_total", "value": -1},
            {"type": "xp_total", "value": 2.5},
            {"type": "streak", "value": 7},
            {"type": "custom", "rules": "nope"},
            {"type": "custom", "rules": [{"type": "referrals", "value": 3}]},
            {"type": "custom", "rules": [{"type": "xp_in_timeframe", "value": 10}]},
        ],
    )
    def test_rejects_unknown_or_malformed(self, raw):
        with pytest.raises(UnknownRequirementError):
            parse_requirement(raw)

    def test_unknown_requirement_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            parse_requirement({"type": "nope"})


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
class TestIsSatisfied:
    def test_xp_total(self):
        assert is_satisfied(XPTotal(100), FakeContext(total_xp=100))
        assert not is_satisfied(XPTotal(100), FakeContext(total_xp=99))

    def test_level(self):
        assert is_satisfied(LevelReached(5), FakeContext(level=6))
        assert not is_satisfied(LevelReached(5), FakeContext(level=4))

    def test_badge_count_uses_prior_earned(self):
        assert is_satisfied(BadgeCount(2), FakeContext(earned_count=2))
        assert not is_satisfied(BadgeCount(2), FakeContext(earned_count=1))

    def test_message_and_purchase_counts(self):
        ctx = FakeContext(events={"message.created": 100, "purchase.completed": 0})
        assert is_satisfied(MessageCount(100), ctx)
        assert not is_satisfied(PurchaseCount(1), ctx)

    def test_custom_rules_are_anded(self):
        ctx = FakeContext(ledger=[
            (NOW - timedelta(days=1), 300),
            (NOW - timedelta(days=3), 300),
            (NOW - timedelta(days=20), 1000),
        ])
        week = XPInTimeframe(value=600, days=7)
        month = XPInTimeframe(value=1600, days=30)
        assert is_satisfied(Custom(rules=(week,)), ctx)
        assert is_satisfied(Custom(rules=(week, month)), ctx)
        assert not is_satisfied(Custom(rules=(week, XPInTimeframe(1601, 30))), ctx)

    def test_empty_custom_is_satisfied(self):
        assert is_satisfied(Custom(rules=()), FakeContext())


class TestStreak:
    def test_start_of_day_keeps_timezone(self):
        assert start_of_day(NOW) == datetime(2026, 3, 10, tzinfo=UTC)

    def test_consecutive_days_including_today(self):
        ctx = FakeContext(active_days=_days_back(0, 1, 2, 3, 4, 5, 6))
        assert streak_length(ctx, 7) == 7
        assert is_satisfied(Streak(7), ctx)

    def test_gap_breaks_streak(self):
        # Active today and 2..7 days ago; yesterday missing
        ctx = FakeContext(active_days=_days_back(0, 2, 3, 4, 5, 6, 7))
        assert streak_length(ctx, 7) == 1
        assert not is_satisfied(Streak(7), ctx)

    def test_no_activity_today_means_zero(self):
        ctx = FakeContext(active_days=_days_back(1, 2, 3))
        assert streak_length(ctx, 7) == 0

    def test_walk_stops_at_max_days(self):
        ctx = FakeContext(active_days=_days_back(*range(30)))
        assert streak_length(ctx, 5) == 5


class TestProgress:
    def test_proportional(self):
        assert requirement_progress(XPTotal(200), FakeContext(total_xp=50)) == 25
        assert requirement_progress(LevelReached(10), FakeContext(level=5)) == 50

    def test_capped_at_100(self):
        assert requirement_progress(MessageCount(10), FakeContext(events={"message.created": 50})) == 100

    def test_streak_progress(self):
        ctx = FakeContext(active_days=_days_back(0, 1, 2))
        assert requirement_progress(Streak(6), ctx) == 50

    def test_custom_reports_zero(self):
        assert requirement_progress(Custom(rules=()), FakeContext()) == 0
