"""
ascend.constants — Shared Constants & the Level Curve
=======================================================

Single source of truth for the leveling formula and grant/leaderboard
limits.  Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Level curve parameters
# ---------------------------------------------------------------------------
XP_BASE = 100
XP_EXPONENT = 1.5
MAX_LEVEL = 100

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------
MIN_XP_PER_GRANT = 1
MAX_XP_PER_GRANT = 10_000

LEADERBOARD_CACHE_TTL = 5 * 60  # seconds
LEADERBOARD_DEFAULT_LIMIT = 50
LEADERBOARD_MAX_LIMIT = 100
WEEKLY_WINDOW_DAYS = 7

CACHE_PREFIX_LEADERBOARD = "leaderboard"


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a cumulative XP total sits on the curve."""

    level: int
    current_level_xp: int
    xp_for_next_level: int
    progress_percent: int


@dataclass(frozen=True, slots=True)
class LevelInfo:
    level: int
    xp_for_this_level: int
    xp_for_next_level: int
    total_xp_to_reach_level: int


# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
def xp_for_level(level: int) -> int:
    """XP required to advance *into* *level* from the level below it.

    Uses the power curve::

        required = floor(XP_BASE * level ** XP_EXPONENT)

    Level 1 is free, so anything ``<= 1`` costs 0.
    """
    if level <= 1:
        return 0
    return math.floor(XP_BASE * level ** XP_EXPONENT)


def level_from_total_xp(total_xp: int) -> LevelProgress:
    """Derive level and in-level progress from a cumulative XP total.

    Walks up from level 1, spending ``xp_for_level(level + 1)`` from the
    remainder until it runs short or :data:`MAX_LEVEL` is reached.
    """
    level = 1
    remaining = max(int(total_xp), 0)

    while level < MAX_LEVEL:
        needed = xp_for_level(level + 1)
        if remaining < needed:
            break
        remaining -= needed
        level += 1

    xp_for_next = xp_for_level(level + 1) if level < MAX_LEVEL else 0
    if xp_for_next > 0:
        progress = min(100, round(remaining / xp_for_next * 100))
    else:
        progress = 100

    return LevelProgress(
        level=level,
        current_level_xp=remaining,
        xp_for_next_level=xp_for_next,
        progress_percent=progress,
    )


def total_xp_for_level(level: int) -> int:
    """Cumulative XP needed to reach *level* starting from level 1."""
    return sum(xp_for_level(n) for n in range(2, min(level, MAX_LEVEL) + 1))


def level_info(level: int) -> LevelInfo:
    return LevelInfo(
        level=level,
        xp_for_this_level=xp_for_level(level),
        xp_for_next_level=xp_for_level(level + 1) if level < MAX_LEVEL else 0,
        total_xp_to_reach_level=total_xp_for_level(level),
    )


def xp_between_levels(start_level: int, end_level: int) -> int:
    return total_xp_for_level(end_level) - total_xp_for_level(start_level)
