"""
ascend.database.seed — Demo Community Seeder
=============================================

A demo company with starter XP rules and badges, seeded on first startup
so the API is usable against an empty database.

Idempotent — rules and badges are matched by name within the company and
only inserted when missing.  Admin edits are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from ascend.database.models import Badge, BadgeRarity, Company, EventType, XPRule

logger = logging.getLogger(__name__)

DEMO_COMPANY_ID = "demo-company"


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
DEMO_RULES: list[dict] = [
    {
        "name": "Send Message",
        "event_type": EventType.MESSAGE_CREATED.value,
        "xp_amount": 5,
        "cooldown_seconds": 60,
        "max_per_day": 100,
    },
    {
        "name": "Make Purchase",
        "event_type": EventType.PURCHASE_COMPLETED.value,
        "xp_amount": 100,
        "cooldown_seconds": 0,
        "max_per_day": 0,
    },
    {
        "name": "Join Community",
        "event_type": EventType.MEMBER_JOINED.value,
        "xp_amount": 50,
        "cooldown_seconds": 0,
        "max_per_day": 1,
    },
]

DEMO_BADGES: list[dict] = [
    {
        "name": "Chatter",
        "description": "Send 100 messages",
        "image_url": "💬",
        "rarity": BadgeRarity.COMMON.value,
        "requirement": {"type": "message_count", "value": 100},
    },
    {
        "name": "Level 10",
        "description": "Reach level 10",
        "image_url": "🔟",
        "rarity": BadgeRarity.RARE.value,
        "requirement": {"type": "level", "value": 10},
    },
    {
        "name": "Supporter",
        "description": "Make any purchase",
        "image_url": "💎",
        "rarity": BadgeRarity.RARE.value,
        "requirement": {"type": "purchase_count", "value": 1},
    },
    {
        "name": "Week Streak",
        "description": "Be active 7 days in a row",
        "image_url": "🔥",
        "rarity": BadgeRarity.EPIC.value,
        "requirement": {"type": "streak", "days": 7},
    },
]


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_demo_company(engine: Engine, company_id: str = DEMO_COMPANY_ID) -> int:
    """Insert the demo company, rules and badges that don't yet exist.

    Returns the number of rows inserted.
    """
    session = Session(engine)
    inserted = 0
    try:
        if session.get(Company, company_id) is None:
            session.add(Company(id=company_id, name="Demo Community", settings={}))
            session.flush()
            inserted += 1

        rule_names = set(session.scalars(
            select(XPRule.name).where(XPRule.company_id == company_id)
        ))
        for spec in DEMO_RULES:
            if spec["name"] not in rule_names:
                session.add(XPRule(company_id=company_id, is_active=True, **spec))
                inserted += 1

        badge_names = set(session.scalars(
            select(Badge.name).where(Badge.company_id == company_id)
        ))
        for spec in DEMO_BADGES:
            if spec["name"] not in badge_names:
                session.add(Badge(company_id=company_id, is_active=True, **spec))
                inserted += 1

        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d demo rows for company %s.", inserted, company_id)
    return inserted
