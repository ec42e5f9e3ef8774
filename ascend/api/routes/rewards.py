"""
ascend.api.routes.rewards — Reward claims
==========================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from ascend.api.deps import get_dispatcher, get_engine, http_error
from ascend.errors import AscendError
from ascend.services.notifications import NotificationDispatcher
from ascend.services.reward_service import claim_reward

router = APIRouter(prefix="/rewards", tags=["rewards"])


class ClaimRequest(BaseModel):
    member_id: int
    reward_id: int


@router.post("/claim")
def post_claim(
    body: ClaimRequest,
    engine: Engine = Depends(get_engine),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    try:
        claim = claim_reward(engine, body.member_id, body.reward_id, dispatcher=dispatcher)
    except AscendError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "claim_id": claim.id,
        "reward_id": claim.reward_id,
        "status": claim.status,
    }
