"""
tests/test_levels.py — Level curve
===================================
"""

from __future__ import annotations

import pytest

from ascend.constants import (
    MAX_LEVEL,
    level_from_total_xp,
    level_info,
    total_xp_for_level,
    xp_between_levels,
    xp_for_level,
)


class TestXpForLevel:
    def test_level_one_and_below_are_free(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(0) == 0
        assert xp_for_level(-5) == 0

    def test_power_curve_is_floored(self):
        assert xp_for_level(2) == 282   # 100 * 2**1.5 = 282.84
        assert xp_for_level(3) == 519   # 519.61
        assert xp_for_level(4) == 800

    def test_strictly_increasing(self):
        costs = [xp_for_level(n) for n in range(2, 50)]
        assert costs == sorted(costs)
        assert len(set(costs)) == len(costs)


class TestLevelFromTotalXp:
    def test_zero_xp_is_level_one(self):
        p = level_from_total_xp(0)
        assert p.level == 1
        assert p.current_level_xp == 0
        assert p.xp_for_next_level == 282
        assert p.progress_percent == 0

    def test_negative_total_treated_as_zero(self):
        assert level_from_total_xp(-100).level == 1

    @pytest.mark.parametrize(
        "total, level, remainder",
        [(281, 1, 281), (282, 2, 0), (283, 2, 1), (800, 2, 518), (801, 3, 0)],
    )
    def test_boundaries(self, total, level, remainder):
        p = level_from_total_xp(total)
        assert p.level == level
        assert p.current_level_xp == remainder

    def test_progress_percent(self):
        # Half of the 282 needed for level 2
        assert level_from_total_xp(141).progress_percent == 50

    def test_capped_at_max_level(self):
        p = level_from_total_xp(10**12)
        assert p.level == MAX_LEVEL
        assert p.xp_for_next_level == 0
        assert p.progress_percent == 100

    def test_round_trip_with_cumulative_threshold(self):
        for level in (2, 5, 17, 42):
            assert level_from_total_xp(total_xp_for_level(level)).level == level
            assert level_from_total_xp(total_xp_for_level(level) - 1).level == level - 1


class TestCumulativeHelpers:
    def test_total_xp_for_level(self):
        assert total_xp_for_level(1) == 0
        assert total_xp_for_level(2) == 282
        assert total_xp_for_level(3) == 801

    def test_xp_between_levels(self):
        assert xp_between_levels(2, 3) == 519
        assert xp_between_levels(1, 3) == 801

    def test_level_info(self):
        info = level_info(2)
        assert info.xp_for_this_level == 282
        assert info.xp_for_next_level == 519
        assert info.total_xp_to_reach_level == 282
