"""
ascend.services.event_service — Activity event → XP rule matcher
=================================================================

Turns an inbound :class:`~ascend.engine.events.ActivityEvent` into zero or
more XP grants.  For each active rule matching the event type, in order:

    conditions  →  cooldown  →  daily cap  →  grant

Rules are independent: every rule's gates are evaluated against the
ledger as it stood before the event, so one rule's grant never counts
against another rule's cooldown or daily cap.  Each surviving rule
produces one independent :func:`~ascend.services.xp_service.grant_xp`
call, so a grant failure for one rule never affects another.

Daily caps count from UTC midnight.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ascend.database.models import EventType, Member, XPRule, XPTransaction, as_utc, utcnow
from ascend.engine.events import ActivityEvent, matches_conditions, resolve_event_type
from ascend.engine.requirements import start_of_day
from ascend.services.ledger import LedgerStore
from ascend.services.xp_service import GrantResult, grant_xp

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.config import AscendConfig
    from ascend.engine.cache import ResultCache
    from ascend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def _display_name(data: dict[str, Any]) -> str | None:
    return data.get("user_name") or data.get("username")


def rule_allows(
    ledger: LedgerStore, rule: XPRule, member_id: int, event_type: str,
    data: dict[str, Any], now: datetime,
) -> bool:
    """Run the condition, cooldown and daily-cap gates for one rule."""
    if not matches_conditions(data, rule.conditions):
        logger.debug("Event does not match conditions of rule %r", rule.name)
        return False

    if rule.cooldown_seconds > 0:
        last = ledger.last_transaction(member_id, event_type)
        if last is not None:
            elapsed = now - as_utc(last.created_at)
            if elapsed < timedelta(seconds=rule.cooldown_seconds):
                logger.debug("Cooldown active for rule %r (member %s)", rule.name, member_id)
                return False

    if rule.max_per_day > 0:
        today = start_of_day(now)
        granted = ledger.count_transactions(
            member_id, event_type=event_type, since=today, until=today + timedelta(days=1)
        )
        if granted >= rule.max_per_day:
            logger.debug("Daily cap reached for rule %r (member %s)", rule.name, member_id)
            return False

    return True


def handle_event(
    engine: Engine,
    event: ActivityEvent,
    *,
    cache: ResultCache,
    dispatcher: NotificationDispatcher,
    config: AscendConfig,
    now: datetime | None = None,
) -> list[GrantResult]:
    """Match *event* against its company's XP rules and grant XP.

    Returns one :class:`GrantResult` per rule that passed its gates.
    """
    event_type = resolve_event_type(event.action, config.event_map)
    if event_type is None:
        logger.info("Ignoring unmapped event: %s", event.action)
        return []

    if event_type == EventType.MEMBER_LEFT:
        # Member rows are kept for history.
        logger.info(
            "Member %s left company %s", event.user_id or "?", event.company_id or "?"
        )
        return []

    company_id = event.company_id
    if not company_id:
        logger.warning("Dropping %s event without a company id", event.action)
        return []
    user_id = event.user_id
    if not user_id:
        logger.warning("Dropping %s event without a user id", event.action)
        return []

    now = as_utc(now) if now is not None else utcnow()

    with Session(engine, expire_on_commit=False) as session:
        ledger = LedgerStore(session)
        rules = ledger.active_rules(company_id, event_type)
        if not rules:
            logger.debug("No active rules for %s in %s", event_type, company_id)
            return []

        member = ledger.upsert_member(
            str(user_id),
            company_id,
            display_name=_display_name(event.data),
            avatar_url=event.data.get("avatar_url"),
            membership_id=event.membership_id,
        )
        session.commit()
        member_id = member.id

        # Every rule sees the ledger as it stood before this event.
        passed = [
            rule for rule in rules
            if rule_allows(ledger, rule, member_id, event_type, event.data, now)
        ]

    results = []
    for rule in passed:
        logger.info("Granting %d XP to member %s for %r", rule.xp_amount, member_id, rule.name)
        results.append(grant_xp(
            engine,
            member_id=member_id,
            amount=rule.xp_amount,
            reason=rule.name,
            event_type=event_type,
            metadata=event.data,
            cache=cache,
            dispatcher=dispatcher,
            config=config,
            now=now,
        ))
    return results


def handle_event_batch(
    engine: Engine, events: Iterable[ActivityEvent], **deps: Any
) -> list[list[GrantResult]]:
    """Handle each event independently; a failing event yields ``[]``."""
    outcomes = []
    for event in events:
        try:
            outcomes.append(handle_event(engine, event, **deps))
        except Exception:
            logger.exception("Failed to handle %s event", event.action)
            outcomes.append([])
    return outcomes


def get_event_stats(
    engine: Engine, company_id: str, days: int = 7, *, now: datetime | None = None
) -> dict[str, dict[str, int]]:
    """Per event type ``{"count", "total_xp"}`` over the trailing *days*."""
    since = (now or utcnow()) - timedelta(days=days)
    with Session(engine) as session:
        rows = session.execute(
            select(
                XPTransaction.event_type,
                func.count(XPTransaction.id),
                func.coalesce(func.sum(XPTransaction.amount), 0),
            )
            .join(Member, Member.id == XPTransaction.member_id)
            .where(Member.company_id == company_id, XPTransaction.created_at >= since)
            .group_by(XPTransaction.event_type)
        ).all()
    return {
        event_type: {"count": int(count), "total_xp": int(total)}
        for event_type, count, total in rows
    }
