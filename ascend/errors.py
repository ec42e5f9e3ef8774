"""
ascend.errors — Domain Exception Taxonomy
==========================================

Services raise these; API routes translate them into HTTP status codes.
The grant engine never lets them escape — it folds them into a
:class:`~ascend.services.xp_service.GrantResult` instead, so callers can
tell "nothing happened" apart from "partially happened".
"""

from __future__ import annotations

from typing import Any


class AscendError(Exception):
    """Base class for every domain error.

    ``details`` carries structured context for logging.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Rejected before any write
# ---------------------------------------------------------------------------
class ValidationError(AscendError):
    """Bad input; nothing was written."""


class InvalidAmount(ValidationError):
    pass


class UnknownRequirementError(ValidationError):
    """A badge requirement blob does not parse into a known variant."""


class RewardIneligible(ValidationError):
    """The member does not satisfy a reward's claim requirements."""


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
class NotFoundError(AscendError):
    pass


class MemberNotFound(NotFoundError):
    def __init__(self, member_id: Any) -> None:
        super().__init__(f"Member not found: {member_id}", {"member_id": member_id})
        self.member_id = member_id


class BadgeNotFound(NotFoundError):
    def __init__(self, badge_id: Any) -> None:
        super().__init__(f"Badge not found: {badge_id}", {"badge_id": badge_id})


class RewardNotFound(NotFoundError):
    def __init__(self, reward_id: Any) -> None:
        super().__init__(f"Reward not found: {reward_id}", {"reward_id": reward_id})


# ---------------------------------------------------------------------------
# Storage / execution
# ---------------------------------------------------------------------------
class PersistenceError(AscendError):
    """The storage transaction failed; the write did not apply."""


class DeadlineExceeded(AscendError):
    """An operation ran past its caller-supplied deadline."""


class RewardFulfilmentError(AscendError):
    """The named reward handler failed; the claim was marked failed."""


class PartialEvaluationError(AscendError):
    """One badge or rule failed while the rest were evaluated.

    Only ever logged — never raised across a service boundary.
    """

    def __init__(self, subject: str, subject_id: Any, cause: BaseException) -> None:
        super().__init__(
            f"{subject} {subject_id} failed to evaluate: {cause}",
            {"subject": subject, "subject_id": subject_id},
        )
        self.__cause__ = cause
