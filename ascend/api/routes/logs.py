"""
ascend.api.routes.logs — Recent log records from the ring buffer
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from ascend.services.log_buffer import get_buffer

router = APIRouter(tags=["logs"])


@router.get("/logs")
def get_recent_logs(
    tail: int = Query(200, ge=1, le=1000),
    level: str | None = Query(None),
):
    buffer = get_buffer()
    try:
        entries = buffer.tail(tail, level)
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc)) from exc
    return {"entries": entries, "total": len(entries), "counts": buffer.counts()}
