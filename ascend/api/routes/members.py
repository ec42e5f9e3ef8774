"""
ascend.api.routes.members — Profiles, leaderboards & badge progress
====================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from ascend.api.deps import get_cache, get_config, get_engine, http_error
from ascend.config import AscendConfig
from ascend.constants import LEADERBOARD_MAX_LIMIT, level_from_total_xp
from ascend.database.models import Member, as_utc
from ascend.engine.cache import ResultCache
from ascend.errors import AscendError, MemberNotFound
from ascend.services.badge_service import get_badge_progress, get_member_badges
from ascend.services.leaderboard_service import (
    LeaderboardType,
    Timeframe,
    generate_leaderboard,
    get_leaderboard_stats,
    get_member_rank,
)

router = APIRouter(prefix="/members", tags=["members"])


# Declared before /{member_id} so "leaderboard" is not parsed as an id.
@router.get("/leaderboard")
def get_leaderboard(
    company_id: str = Query(..., min_length=1),
    type: LeaderboardType = Query(LeaderboardType.TOTAL_XP),
    timeframe: Timeframe = Query(Timeframe.ALL_TIME),
    limit: int = Query(50, ge=1, le=LEADERBOARD_MAX_LIMIT),
    member_id: int | None = Query(None),
    engine: Engine = Depends(get_engine),
    cache: ResultCache = Depends(get_cache),
    config: AscendConfig = Depends(get_config),
):
    """Ranked members, plus the requesting member's own rank if given."""
    entries = generate_leaderboard(
        engine, cache, company_id, type, timeframe,
        min(limit, config.leaderboard_max_limit),
        ttl=config.leaderboard_cache_ttl,
    )
    body = {
        "company_id": company_id,
        "type": type.value,
        "timeframe": timeframe.value,
        "entries": entries,
        "stats": get_leaderboard_stats(engine, company_id),
    }
    if member_id is not None:
        try:
            body["member_rank"] = get_member_rank(
                engine, member_id, type, company_id=company_id
            )
        except AscendError as exc:
            raise http_error(exc) from exc
    return body


@router.get("/{member_id}")
def get_member(member_id: int, engine: Engine = Depends(get_engine)):
    """Profile with level progress and earned badges."""
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise http_error(MemberNotFound(member_id))
        progress = level_from_total_xp(member.total_xp)
        profile = {
            "id": member.id,
            "company_id": member.company_id,
            "external_user_id": member.external_user_id,
            "display_name": member.display_name,
            "avatar_url": member.avatar_url,
            "total_xp": member.total_xp,
            "level": member.level,
            "current_level_xp": progress.current_level_xp,
            "xp_for_next_level": progress.xp_for_next_level,
            "progress_percent": progress.progress_percent,
            "last_activity_at": (
                as_utc(member.last_activity_at).isoformat() if member.last_activity_at else None
            ),
        }

    profile["badges"] = get_member_badges(engine, member_id)
    profile["rank"] = get_member_rank(engine, member_id, LeaderboardType.TOTAL_XP)
    return profile


@router.get("/{member_id}/badges/{badge_id}/progress")
def get_progress(member_id: int, badge_id: int, engine: Engine = Depends(get_engine)):
    try:
        progress = get_badge_progress(engine, member_id, badge_id)
    except AscendError as exc:
        raise http_error(exc) from exc
    return {"member_id": member_id, "badge_id": badge_id, "progress": progress}
