"""
ascend.engine.deadline — Caller-supplied operation deadlines
=============================================================

A :class:`Deadline` is an absolute instant on the monotonic clock.  Long
operations check it at safe points (before a commit, between badges)
so an expired call is abandoned without leaving partial ledger state.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ascend.errors import DeadlineExceeded


@dataclass(frozen=True, slots=True)
class Deadline:
    at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False)

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> Deadline:
        return cls(at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        return max(self.at - self.clock(), 0.0)

    def expired(self) -> bool:
        return self.clock() >= self.at

    def check(self, what: str) -> None:
        """Raise :class:`DeadlineExceeded` if the deadline has passed."""
        if self.expired():
            raise DeadlineExceeded(f"Deadline exceeded before {what}", {"stage": what})


def check_deadline(deadline: Deadline | None, what: str) -> None:
    if deadline is not None:
        deadline.check(what)


def deadline_expired(deadline: Deadline | None) -> bool:
    return deadline is not None and deadline.expired()
