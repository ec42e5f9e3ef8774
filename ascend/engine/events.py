"""
ascend.engine.events — ActivityEvent envelope and condition matching
=====================================================================

Every inbound activity notification is normalized into an
:class:`ActivityEvent` before the rule matcher sees it.  Condition
matching against the event payload is pure and lives here too.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ascend.database.models import EventType
from ascend.errors import ValidationError

__all__ = [
    "DEFAULT_EVENT_MAP",
    "ActivityEvent",
    "lookup_path",
    "matches_conditions",
    "resolve_event_type",
]

# ---------------------------------------------------------------------------
# External action → internal event type
# ---------------------------------------------------------------------------
DEFAULT_EVENT_MAP: dict[str, str] = {
    "message.created": EventType.MESSAGE_CREATED.value,
    "payment.succeeded": EventType.PURCHASE_COMPLETED.value,
    "course.section_completed": EventType.COURSE_COMPLETED.value,
    "membership.created": EventType.MEMBER_JOINED.value,
    "membership.deleted": EventType.MEMBER_LEFT.value,
}

_MISSING = object()


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """Inbound activity notification: ``{"action": ..., "data": {...}}``."""

    action: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> ActivityEvent:
        if not isinstance(payload, Mapping):
            raise ValidationError("Event payload must be an object")
        action = payload.get("action")
        if not isinstance(action, str) or not action:
            raise ValidationError("Event payload is missing 'action'")
        data = payload.get("data") or {}
        if not isinstance(data, Mapping):
            raise ValidationError("Event 'data' must be an object")
        return cls(action=action, data=dict(data))

    @property
    def company_id(self) -> str | None:
        return self.data.get("company_id") or self.data.get("companyId")

    @property
    def user_id(self) -> str | None:
        return self.data.get("user_id") or self.data.get("userId")

    @property
    def membership_id(self) -> str | None:
        return self.data.get("membership_id") or self.data.get("membershipId")


def resolve_event_type(
    action: str, overrides: Mapping[str, str] | None = None
) -> str | None:
    """Map an external action to an internal event type, or None if unmapped."""
    if overrides and action in overrides:
        return overrides[action]
    mapped = DEFAULT_EVENT_MAP.get(action)
    return str(mapped) if mapped is not None else None


# ---------------------------------------------------------------------------
# Condition matching
# ---------------------------------------------------------------------------
def lookup_path(data: Any, path: str) -> Any:
    """Follow a dot-separated *path* (``"channel.id"``) into nested mappings.

    Returns a private sentinel when any segment is missing so a missing key
    never equals a configured ``None``.
    """
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches_conditions(data: Mapping[str, Any], conditions: Mapping[str, Any] | None) -> bool:
    """True when every configured key matches the event payload.

    A list value means "payload value must be one of these"; any other
    value must be equal.  No conditions always match.
    """
    if not conditions:
        return True
    for key, expected in conditions.items():
        actual = lookup_path(data, key)
        if actual is _MISSING:
            return False
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True
