"""
ascend.services.leaderboard_service — Ranked member views with caching
=======================================================================

Ranking dimensions:

* ``total_xp``      — total XP desc
* ``level``         — level desc, then total XP desc
* ``weekly_xp``     — XP earned in the trailing 7 days desc
* ``badges_earned`` — earned badge count desc, then total XP desc

Every ordering ends with member id ascending, so ties are broken the same
way on every call and :func:`get_member_rank` can count "members strictly
ahead" under the exact ordering :func:`generate_leaderboard` uses.

Results are read through the injected cache under
``leaderboard:{company}:{type}:{timeframe}``.  The cache holds the final
ranked list; a committed grant drops the whole company prefix via
:func:`invalidate_company`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import ColumnElement, Select, and_, func, or_, select
from sqlalchemy.orm import Session

from ascend.constants import LEADERBOARD_CACHE_TTL, LEADERBOARD_MAX_LIMIT, WEEKLY_WINDOW_DAYS
from ascend.database.models import Member, MemberBadge, XPTransaction, utcnow
from ascend.engine.cache import leaderboard_key, leaderboard_prefix
from ascend.engine.deadline import check_deadline
from ascend.errors import MemberNotFound
from ascend.services.log_buffer import timed

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.engine.cache import ResultCache
    from ascend.engine.deadline import Deadline

logger = logging.getLogger(__name__)


class LeaderboardType(enum.StrEnum):
    TOTAL_XP = "total_xp"
    LEVEL = "level"
    WEEKLY_XP = "weekly_xp"
    BADGES_EARNED = "badges_earned"


class Timeframe(enum.StrEnum):
    ALL_TIME = "all_time"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ---------------------------------------------------------------------------
# Ranking query
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class _Ranking:
    """A company-scoped select plus its ordering keys ``(expr, descending)``."""

    stmt: Select
    keys: tuple[tuple[ColumnElement, bool], ...]
    metric: str | None


def _ranking(company_id: str, board_type: LeaderboardType, now: datetime) -> _Ranking:
    columns: list[Any] = [
        Member.id,
        Member.display_name,
        Member.avatar_url,
        Member.total_xp,
        Member.level,
    ]

    if board_type is LeaderboardType.WEEKLY_XP:
        since = now - timedelta(days=WEEKLY_WINDOW_DAYS)
        weekly = (
            select(
                XPTransaction.member_id,
                func.sum(XPTransaction.amount).label("weekly_xp"),
            )
            .where(XPTransaction.created_at >= since)
            .group_by(XPTransaction.member_id)
            .subquery()
        )
        metric = func.coalesce(weekly.c.weekly_xp, 0)
        stmt = select(*columns, metric.label("weekly_xp")).outerjoin(
            weekly, weekly.c.member_id == Member.id
        )
        keys = ((metric, True),)
        name = "weekly_xp"
    elif board_type is LeaderboardType.BADGES_EARNED:
        earned = (
            select(MemberBadge.member_id, func.count().label("badge_count"))
            .group_by(MemberBadge.member_id)
            .subquery()
        )
        metric = func.coalesce(earned.c.badge_count, 0)
        stmt = select(*columns, metric.label("badge_count")).outerjoin(
            earned, earned.c.member_id == Member.id
        )
        keys = ((metric, True), (Member.total_xp, True))
        name = "badge_count"
    elif board_type is LeaderboardType.LEVEL:
        stmt = select(*columns)
        keys = ((Member.level, True), (Member.total_xp, True))
        name = None
    else:
        stmt = select(*columns)
        keys = ((Member.total_xp, True),)
        name = None

    keys = (*keys, (Member.id, False))
    stmt = stmt.where(Member.company_id == company_id)
    return _Ranking(stmt=stmt, keys=keys, metric=name)


def _order_by(ranking: _Ranking) -> list[ColumnElement]:
    return [expr.desc() if descending else expr.asc() for expr, descending in ranking.keys]


def _strictly_ahead(ranking: _Ranking, values: list[Any]) -> ColumnElement[bool]:
    """Rows that sort before a row with ordering key *values*."""
    clauses = []
    for i, (expr, descending) in enumerate(ranking.keys):
        ties = [k == v for (k, _), v in zip(ranking.keys[:i], values[:i], strict=True)]
        better = expr > values[i] if descending else expr < values[i]
        clauses.append(and_(*ties, better))
    return or_(*clauses)


def _entry(row: Any, metric: str | None, rank: int) -> dict[str, Any]:
    entry = {
        "member_id": row.id,
        "display_name": row.display_name,
        "avatar_url": row.avatar_url,
        "total_xp": row.total_xp,
        "level": row.level,
    }
    if metric is not None:
        entry[metric] = int(getattr(row, metric))
    entry["rank"] = rank
    return entry


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def generate_leaderboard(
    engine: Engine,
    cache: ResultCache,
    company_id: str,
    board_type: LeaderboardType | str = LeaderboardType.TOTAL_XP,
    timeframe: Timeframe | str = Timeframe.ALL_TIME,
    limit: int = 50,
    *,
    ttl: int = LEADERBOARD_CACHE_TTL,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> list[dict[str, Any]]:
    """Return up to *limit* ranked entries for *company_id*.

    *limit* is clamped to ``1..LEADERBOARD_MAX_LIMIT``.  The cached list
    always holds the top ``LEADERBOARD_MAX_LIMIT`` rows and is sliced per
    call, so requests with different limits share one cache entry.
    """
    board_type = LeaderboardType(board_type)
    timeframe = Timeframe(timeframe)
    limit = min(max(1, limit), LEADERBOARD_MAX_LIMIT)
    key = leaderboard_key(company_id, board_type.value, timeframe.value)

    cached = cache.get(key)
    if cached is not None:
        return cached[:limit]

    check_deadline(deadline, "leaderboard compute")
    ranking = _ranking(company_id, board_type, now or utcnow())
    with timed(f"leaderboard.{board_type.value}"), Session(engine) as session:
        stmt = ranking.stmt.order_by(*_order_by(ranking)).limit(LEADERBOARD_MAX_LIMIT)
        rows = session.execute(stmt).all()

    entries = [_entry(row, ranking.metric, rank) for rank, row in enumerate(rows, start=1)]
    cache.set(key, entries, ttl)
    return entries[:limit]


def invalidate_company(cache: ResultCache, company_id: str) -> int:
    """Drop every cached leaderboard for *company_id*."""
    removed = cache.delete_prefix(leaderboard_prefix(company_id))
    logger.debug("Invalidated %d leaderboard entries for %s", removed, company_id)
    return removed


def get_member_rank(
    engine: Engine,
    member_id: int,
    board_type: LeaderboardType | str = LeaderboardType.TOTAL_XP,
    *,
    company_id: str | None = None,
    now: datetime | None = None,
) -> int:
    """1-based rank of *member_id*, equal to its position in the ordering
    :func:`generate_leaderboard` uses.

    With *company_id*, the member must belong to that company's board.

    Raises
    ------
    MemberNotFound
        If the member does not exist, or belongs to another company.
    """
    board_type = LeaderboardType(board_type)
    with Session(engine) as session:
        member_company = session.scalar(select(Member.company_id).where(Member.id == member_id))
        if member_company is None or company_id not in (None, member_company):
            raise MemberNotFound(member_id)
        company_id = member_company

        ranking = _ranking(company_id, board_type, now or utcnow())
        key_exprs = [expr for expr, _ in ranking.keys]
        own = session.execute(
            ranking.stmt.with_only_columns(*key_exprs).where(Member.id == member_id)
        ).one()

        ahead = session.scalar(
            select(func.count()).select_from(
                ranking.stmt.where(_strictly_ahead(ranking, list(own))).subquery()
            )
        )
    return int(ahead or 0) + 1


def get_leaderboard_stats(engine: Engine, company_id: str) -> dict[str, Any]:
    with Session(engine) as session:
        total, avg_level = session.execute(
            select(func.count(Member.id), func.avg(Member.level)).where(
                Member.company_id == company_id
            )
        ).one()
        top = session.scalar(
            select(Member)
            .where(Member.company_id == company_id)
            .order_by(Member.total_xp.desc(), Member.id.asc())
            .limit(1)
        )
        return {
            "total_members": int(total or 0),
            "avg_level": round(float(avg_level), 2) if avg_level is not None else 1.0,
            "top_member": (
                {
                    "member_id": top.id,
                    "display_name": top.display_name,
                    "total_xp": top.total_xp,
                    "level": top.level,
                }
                if top is not None
                else None
            ),
        }
