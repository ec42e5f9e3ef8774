"""
ascend.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- companies       — Communities that own members, rules, badges and rewards
- members         — Per-company member aggregate (total XP, derived level)
- xp_transactions — Append-only XP ledger; source of truth for aggregates
- xp_rules        — Activity event → XP grant mappings with gating
- badges          — Achievement definitions with a typed requirement blob
- member_badges   — Earned badges, at most one row per (member, badge)
- rewards         — Claimable rewards with level/XP/badge requirements
- reward_claims   — Reward claim attempts and their fulfilment status
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(moment: datetime | None) -> datetime | None:
    """Normalize a stored timestamp to aware UTC (SQLite hands back naive)."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Ascend ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class EventType(enum.StrEnum):
    """Internal event types recorded on the ledger."""
    MESSAGE_CREATED = "message.created"
    PURCHASE_COMPLETED = "purchase.completed"
    COURSE_COMPLETED = "course.completed"
    MEMBER_JOINED = "member.joined"
    MEMBER_LEFT = "member.left"
    MANUAL_GRANT = "manual.grant"


class BadgeRarity(enum.StrEnum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class RewardType(enum.StrEnum):
    ROLE = "role"
    FREE_DAYS = "free_days"
    DISCOUNT_CODE = "discount_code"
    CUSTOM = "custom"


class ClaimStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Companies — one row per community
# ---------------------------------------------------------------------------
class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), default=None)
    settings: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    members: Mapped[list[Member]] = relationship(
        back_populates="company", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Company id={self.id!r} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Members — per-company XP aggregate, mutated only by the grant engine
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    external_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    membership_id: Mapped[str | None] = mapped_column(String(64), default=None)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_level_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    company: Mapped[Company] = relationship(back_populates="members")
    transactions: Mapped[list[XPTransaction]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )
    badges: Mapped[list[MemberBadge]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("external_user_id", "company_id", name="uq_members_external_company"),
        Index("ix_members_company_xp", "company_id", "total_xp"),
        Index("ix_members_company_level", "company_id", "level", "total_xp"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.display_name!r} lvl={self.level}>"


# ---------------------------------------------------------------------------
# XPTransaction — append-only ledger
# ---------------------------------------------------------------------------
class XPTransaction(Base):
    __tablename__ = "xp_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="transactions")

    __table_args__ = (
        Index("ix_xp_transactions_member_time", "member_id", "created_at"),
        Index("ix_xp_transactions_member_event_time", "member_id", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<XPTransaction id={self.id} member={self.member_id} "
            f"amount={self.amount} type={self.event_type}>"
        )


# ---------------------------------------------------------------------------
# XPRule — activity event → XP grant with cooldown / daily cap / conditions
# ---------------------------------------------------------------------------
class XPRule(Base):
    __tablename__ = "xp_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    conditions: Mapped[dict | None] = mapped_column(JSONB, nullable=True, default=None)

    __table_args__ = (
        Index("ix_xp_rules_company_event", "company_id", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<XPRule id={self.id} name={self.name!r} event={self.event_type!r}>"


# ---------------------------------------------------------------------------
# Badge — achievement definition; requirement is a tagged JSON variant
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str | None] = mapped_column(String(500), default=None)
    rarity: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BadgeRarity.COMMON.value
    )
    requirement: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_secret: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    earned_by: Mapped[list[MemberBadge]] = relationship(
        back_populates="badge", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_badges_company_active", "company_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# MemberBadge — earned badges (never revoked)
# ---------------------------------------------------------------------------
class MemberBadge(Base):
    __tablename__ = "member_badges"

    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True
    )
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    member: Mapped[Member] = relationship(back_populates="badges")
    badge: Mapped[Badge] = relationship(back_populates="earned_by")

    def __repr__(self) -> str:
        return f"<MemberBadge member={self.member_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Reward / RewardClaim — claimable perks dispatched to named handlers
# ---------------------------------------------------------------------------
class Reward(Base):
    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    config: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    required_level: Mapped[int | None] = mapped_column(Integer, default=None)
    required_xp: Mapped[int | None] = mapped_column(Integer, default=None)
    required_badges: Mapped[list | None] = mapped_column(JSONB, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cooldown_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Reward id={self.id} name={self.name!r} type={self.type!r}>"


class RewardClaim(Base):
    __tablename__ = "reward_claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    reward_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.PENDING.value
    )
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    reward: Mapped[Reward] = relationship()

    __table_args__ = (
        Index("ix_reward_claims_member_reward", "member_id", "reward_id", "claimed_at"),
    )

    def __repr__(self) -> str:
        return f"<RewardClaim id={self.id} reward={self.reward_id} status={self.status}>"
