"""
ascend.engine.requirements — Badge requirement variants & evaluators
=====================================================================

Badge requirements are stored as loosely-typed JSON blobs.  They are
parsed once into a closed set of frozen dataclasses; anything that does
not parse is rejected with :class:`UnknownRequirementError` and never
silently matched.

Each variant maps to a handler ``(requirement, ctx) -> bool`` in
:data:`REQUIREMENT_HANDLERS`.  Handlers read member state and ledger
history through a :class:`BadgeContext`, so this module performs no
database I/O itself.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Protocol

from ascend.database.models import EventType
from ascend.errors import UnknownRequirementError


# ---------------------------------------------------------------------------
# Requirement variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class XPTotal:
    value: int


@dataclass(frozen=True, slots=True)
class LevelReached:
    value: int


@dataclass(frozen=True, slots=True)
class Streak:
    days: int


@dataclass(frozen=True, slots=True)
class BadgeCount:
    value: int


@dataclass(frozen=True, slots=True)
class MessageCount:
    value: int


@dataclass(frozen=True, slots=True)
class PurchaseCount:
    value: int


@dataclass(frozen=True, slots=True)
class XPInTimeframe:
    """Custom sub-rule: at least *value* XP earned in the trailing *days*."""

    value: int
    days: int


@dataclass(frozen=True, slots=True)
class Custom:
    rules: tuple[XPInTimeframe, ...] = ()


Requirement = (
    XPTotal | LevelReached | Streak | BadgeCount | MessageCount | PurchaseCount | Custom
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _int_field(raw: Mapping[str, Any], key: str, *, minimum: int = 0) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise UnknownRequirementError(
            f"Requirement field '{key}' must be a number", {"requirement": dict(raw)}
        )
    if value != int(value) or value < minimum:
        raise UnknownRequirementError(
            f"Requirement field '{key}' must be an integer >= {minimum}",
            {"requirement": dict(raw)},
        )
    return int(value)


def _parse_custom_rule(raw: Any) -> XPInTimeframe:
    if not isinstance(raw, Mapping):
        raise UnknownRequirementError("Custom sub-rule must be an object")
    if raw.get("type") != "xp_in_timeframe":
        raise UnknownRequirementError(
            f"Unknown custom sub-rule type: {raw.get('type')!r}", {"rule": dict(raw)}
        )
    return XPInTimeframe(value=_int_field(raw, "value"), days=_int_field(raw, "days", minimum=1))


_SIMPLE_VARIANTS: dict[str, tuple[type, str, int]] = {
    "xp_total": (XPTotal, "value", 0),
    "level": (LevelReached, "value", 1),
    "streak": (Streak, "days", 1),
    "badge_count": (BadgeCount, "value", 0),
    "message_count": (MessageCount, "value", 0),
    "purchase_count": (PurchaseCount, "value", 0),
}


def parse_requirement(raw: Any) -> Requirement:
    """Parse a stored requirement blob into its variant.

    Raises
    ------
    UnknownRequirementError
        For a non-object blob, an unknown ``type``, or bad field values.
    """
    if not isinstance(raw, Mapping):
        raise UnknownRequirementError("Badge requirement must be an object")

    kind = raw.get("type")
    if kind in _SIMPLE_VARIANTS:
        cls, key, minimum = _SIMPLE_VARIANTS[kind]
        return cls(_int_field(raw, key, minimum=minimum))

    if kind == "custom":
        rules = raw.get("rules") or []
        if not isinstance(rules, list):
            raise UnknownRequirementError("Custom requirement 'rules' must be a list")
        return Custom(rules=tuple(_parse_custom_rule(r) for r in rules))

    raise UnknownRequirementError(
        f"Unknown badge requirement type: {kind!r}", {"requirement": dict(raw)}
    )


# ---------------------------------------------------------------------------
# Evaluation context
# ---------------------------------------------------------------------------
class BadgeContext(Protocol):
    """What a requirement handler may ask about a member."""

    total_xp: int
    level: int
    earned_count: int
    now: datetime

    def count_events(self, event_type: str) -> int: ...

    def has_activity_between(self, start: datetime, end: datetime) -> bool: ...

    def xp_since(self, since: datetime) -> int: ...


def start_of_day(moment: datetime) -> datetime:
    """Midnight of *moment*'s calendar day, keeping its tzinfo."""
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


def streak_length(ctx: BadgeContext, max_days: int) -> int:
    """Count consecutive active days walking back from today, up to *max_days*.

    Stops at the first calendar day with no ledger activity.
    """
    today = start_of_day(ctx.now)
    streak = 0
    for offset in range(max_days):
        day_start = today - timedelta(days=offset)
        if not ctx.has_activity_between(day_start, day_start + timedelta(days=1)):
            break
        streak += 1
    return streak


# ---------------------------------------------------------------------------
# Handlers — (requirement, ctx) → bool
# ---------------------------------------------------------------------------
def _check_xp_total(req: XPTotal, ctx: BadgeContext) -> bool:
    return ctx.total_xp >= req.value


def _check_level(req: LevelReached, ctx: BadgeContext) -> bool:
    return ctx.level >= req.value


def _check_streak(req: Streak, ctx: BadgeContext) -> bool:
    return streak_length(ctx, req.days) >= req.days


def _check_badge_count(req: BadgeCount, ctx: BadgeContext) -> bool:
    # Badges earned before this evaluation run started.
    return ctx.earned_count >= req.value


def _check_message_count(req: MessageCount, ctx: BadgeContext) -> bool:
    return ctx.count_events(EventType.MESSAGE_CREATED.value) >= req.value


def _check_purchase_count(req: PurchaseCount, ctx: BadgeContext) -> bool:
    return ctx.count_events(EventType.PURCHASE_COMPLETED.value) >= req.value


def _check_custom(req: Custom, ctx: BadgeContext) -> bool:
    for rule in req.rules:
        since = ctx.now - timedelta(days=rule.days)
        if ctx.xp_since(since) < rule.value:
            return False
    return True


REQUIREMENT_HANDLERS: dict[type, Callable[[Any, BadgeContext], bool]] = {
    XPTotal: _check_xp_total,
    LevelReached: _check_level,
    Streak: _check_streak,
    BadgeCount: _check_badge_count,
    MessageCount: _check_message_count,
    PurchaseCount: _check_purchase_count,
    Custom: _check_custom,
}


def is_satisfied(requirement: Requirement, ctx: BadgeContext) -> bool:
    handler = REQUIREMENT_HANDLERS.get(type(requirement))
    if handler is None:
        raise UnknownRequirementError(f"No handler for {type(requirement).__name__}")
    return handler(requirement, ctx)


# ---------------------------------------------------------------------------
# Progress (0–100) for display
# ---------------------------------------------------------------------------
def _ratio(current: int, target: int) -> int:
    if target <= 0:
        return 100
    return min(100, round(current / target * 100))


def requirement_progress(requirement: Requirement, ctx: BadgeContext) -> int:
    """Best-effort progress toward *requirement*; 0 for custom rules."""
    match requirement:
        case XPTotal(value=value):
            return _ratio(ctx.total_xp, value)
        case LevelReached(value=value):
            return _ratio(ctx.level, value)
        case Streak(days=days):
            return _ratio(streak_length(ctx, days), days)
        case BadgeCount(value=value):
            return _ratio(ctx.earned_count, value)
        case MessageCount(value=value):
            return _ratio(ctx.count_events(EventType.MESSAGE_CREATED.value), value)
        case PurchaseCount(value=value):
            return _ratio(ctx.count_events(EventType.PURCHASE_COMPLETED.value), value)
        case _:
            return 0
