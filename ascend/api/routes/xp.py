"""
ascend.api.routes.xp — Manual grants & ledger history
======================================================
"""

from __future__ import annotations

from functools import partial
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from ascend.api.deps import (
    REQUEST_DEADLINE_SECONDS,
    get_cache,
    get_config,
    get_dispatcher,
    get_engine,
    grant_error_status,
    http_error,
)
from ascend.config import AscendConfig
from ascend.constants import MAX_XP_PER_GRANT, MIN_XP_PER_GRANT
from ascend.database.engine import run_db
from ascend.database.models import EventType
from ascend.engine.cache import ResultCache
from ascend.engine.deadline import Deadline
from ascend.errors import AscendError
from ascend.services.notifications import NotificationDispatcher
from ascend.services.xp_service import get_xp_history, grant_xp

router = APIRouter(prefix="/xp", tags=["xp"])


class GrantRequest(BaseModel):
    member_id: int
    amount: int = Field(ge=MIN_XP_PER_GRANT, le=MAX_XP_PER_GRANT)
    reason: str = Field(min_length=1, max_length=200)
    metadata: dict[str, Any] | None = None


@router.post("/grant")
async def post_grant(
    body: GrantRequest,
    engine: Engine = Depends(get_engine),
    cache: ResultCache = Depends(get_cache),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config: AscendConfig = Depends(get_config),
):
    """Grant XP by hand (``event_type = manual.grant``)."""
    deadline = Deadline.after(REQUEST_DEADLINE_SECONDS)
    try:
        result = await run_db(
            partial(
                grant_xp,
                engine,
                member_id=body.member_id,
                amount=body.amount,
                reason=body.reason,
                event_type=EventType.MANUAL_GRANT.value,
                metadata=body.metadata,
                cache=cache,
                dispatcher=dispatcher,
                config=config,
                deadline=deadline,
            ),
            deadline=deadline,
        )
    except AscendError as exc:
        raise http_error(exc) from exc

    if not result.success:
        raise HTTPException(grant_error_status(result.error_kind), detail=result.error)

    member = result.member
    return {
        "success": True,
        "member_id": member.id,
        "total_xp": member.total_xp,
        "level": member.level,
        "current_level_xp": member.current_level_xp,
        "leveled_up": result.leveled_up,
        "new_level": result.new_level,
        "badges_earned": [{"id": b.id, "name": b.name} for b in result.badges_earned],
    }


@router.get("/history")
def get_history(
    member_id: int = Query(...),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    engine: Engine = Depends(get_engine),
):
    """Newest-first ledger page for one member."""
    try:
        return get_xp_history(engine, member_id, limit=limit, offset=offset)
    except AscendError as exc:
        raise http_error(exc) from exc
