"""
ascend.services.reward_service — Reward claiming & handler dispatch
====================================================================

A claim runs in three steps:

    1. Eligibility — level, XP, required badges, one-time rewards already
       completed, and the per-reward cooldown window.
    2. A ``pending`` :class:`~ascend.database.models.RewardClaim` is
       committed so the attempt is on record before anything external runs.
    3. The handler registered for the reward's ``type`` fulfils it; the
       claim is marked ``completed`` or ``failed``.

Fulfilment itself lives outside this package.  Integrations register a
handler per reward type with :func:`register_reward_handler`; the defaults
only log.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from ascend.database.models import (
    ClaimStatus,
    Member,
    MemberBadge,
    Reward,
    RewardClaim,
    RewardType,
    utcnow,
)
from ascend.errors import (
    MemberNotFound,
    RewardFulfilmentError,
    RewardIneligible,
    RewardNotFound,
)
from ascend.services.notifications import send_reward_notification

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

RewardHandler = Callable[[Member, Reward], None]

REWARD_HANDLERS: dict[str, RewardHandler] = {}


def register_reward_handler(reward_type: str) -> Callable[[RewardHandler], RewardHandler]:
    """Decorator: register *func* as the fulfilment handler for *reward_type*.

    A later registration for the same type replaces the earlier one.
    """
    def decorator(func: RewardHandler) -> RewardHandler:
        REWARD_HANDLERS[str(reward_type)] = func
        return func
    return decorator


# ---------------------------------------------------------------------------
# Default handlers — log only
# ---------------------------------------------------------------------------
@register_reward_handler(RewardType.ROLE)
def _log_role(member: Member, reward: Reward) -> None:
    logger.info("Assign role %s to member %s", (reward.config or {}).get("role_id"), member.id)


@register_reward_handler(RewardType.FREE_DAYS)
def _log_free_days(member: Member, reward: Reward) -> None:
    logger.info("Extend membership of %s by %s days", member.id, (reward.config or {}).get("days"))


@register_reward_handler(RewardType.DISCOUNT_CODE)
def _log_discount(member: Member, reward: Reward) -> None:
    logger.info("Issue discount code %s to member %s", (reward.config or {}).get("code"), member.id)


@register_reward_handler(RewardType.CUSTOM)
def _log_custom(member: Member, reward: Reward) -> None:
    logger.info("Custom reward %r claimed by member %s", reward.name, member.id)


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------
def check_eligibility(session: Session, member: Member, reward: Reward, now: datetime) -> None:
    """Raise :class:`RewardIneligible` naming the first unmet requirement."""
    details = {"member_id": member.id, "reward_id": reward.id}

    if reward.required_level and member.level < reward.required_level:
        raise RewardIneligible("Level requirement not met", details)
    if reward.required_xp and member.total_xp < reward.required_xp:
        raise RewardIneligible("XP requirement not met", details)

    required = {int(b) for b in reward.required_badges or []}
    if required:
        held = set(session.scalars(
            select(MemberBadge.badge_id).where(
                MemberBadge.member_id == member.id,
                MemberBadge.badge_id.in_(required),
            )
        ))
        if held != required:
            raise RewardIneligible("Badge requirements not met", details)

    claims = select(RewardClaim.id).where(
        RewardClaim.member_id == member.id, RewardClaim.reward_id == reward.id
    )
    if not reward.is_repeatable:
        done = session.scalar(claims.where(RewardClaim.status == ClaimStatus.COMPLETED.value))
        if done is not None:
            raise RewardIneligible("Reward already claimed", details)

    if reward.cooldown_days > 0:
        recent = session.scalar(
            claims.where(
                RewardClaim.status != ClaimStatus.FAILED.value,
                RewardClaim.claimed_at >= now - timedelta(days=reward.cooldown_days),
            )
        )
        if recent is not None:
            raise RewardIneligible("Reward is on cooldown", details)


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------
def claim_reward(
    engine: Engine,
    member_id: int,
    reward_id: int,
    *,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> RewardClaim:
    """Claim *reward_id* for *member_id* and dispatch its handler.

    Raises
    ------
    MemberNotFound, RewardNotFound
        Unknown ids, or a reward that is inactive or belongs to another
        company.
    RewardIneligible
        A requirement is not met; no claim is recorded.
    RewardFulfilmentError
        The handler failed or none is registered; the claim is ``failed``.
    """
    now = now or utcnow()
    with Session(engine, expire_on_commit=False) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise MemberNotFound(member_id)
        reward = session.get(Reward, reward_id)
        if reward is None or not reward.is_active or reward.company_id != member.company_id:
            raise RewardNotFound(reward_id)

        check_eligibility(session, member, reward, now)

        claim = RewardClaim(
            member_id=member.id,
            reward_id=reward.id,
            status=ClaimStatus.PENDING.value,
            claimed_at=now,
        )
        session.add(claim)
        session.commit()

        handler = REWARD_HANDLERS.get(reward.type)
        try:
            if handler is None:
                raise RewardFulfilmentError(
                    f"No handler registered for reward type {reward.type!r}",
                    {"reward_id": reward.id},
                )
            handler(member, reward)
        except Exception as exc:
            claim.status = ClaimStatus.FAILED.value
            session.commit()
            logger.exception("Reward %s fulfilment failed for member %s", reward.id, member.id)
            if isinstance(exc, RewardFulfilmentError):
                raise
            raise RewardFulfilmentError(
                f"Reward {reward.name!r} could not be fulfilled", {"claim_id": claim.id}
            ) from exc

        claim.status = ClaimStatus.COMPLETED.value
        session.commit()

    logger.info("Member %s claimed reward %r", member.id, reward.name)
    send_reward_notification(dispatcher, member, reward.name)
    return claim
