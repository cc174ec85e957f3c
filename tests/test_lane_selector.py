"""
Tests for lane/trajectory selection with hysteresis.
"""

import itertools

import numpy as np
import pytest

from data.formats.data_format import CandidateTrajectory
from trajectory.lane_selector import select_trajectory


def _candidate(lane_id: int, cost: float, length: int = 5) -> CandidateTrajectory:
    s = np.arange(length, dtype=float)
    zeros = np.zeros(length)
    return CandidateTrajectory(
        t=s * 0.2, x=s, y=zeros, yaw=zeros, v=np.full(length, 5.0), a=zeros, curvature=zeros,
        s=s, s_d=np.full(length, 5.0), s_dd=zeros, d=zeros, d_d=zeros, d_dd=zeros,
        lane_id=lane_id, cost=cost,
    )


class TestHysteresis:
    def test_change_when_clearly_better(self):
        result = select_trajectory([_candidate(0, 10.0), _candidate(1, 8.5)], 0, 1.0)
        assert result.lane_change
        assert result.trajectory.lane_id == 1
        assert result.keep_cost == 10.0
        assert result.change_cost == 8.5

    def test_keep_when_advantage_equals_margin(self):
        result = select_trajectory([_candidate(0, 10.0), _candidate(1, 9.0)], 0, 1.0)
        assert not result.lane_change
        assert result.trajectory.lane_id == 0

    def test_keep_when_change_is_worse(self):
        result = select_trajectory([_candidate(0, 10.0), _candidate(1, 12.0)], 0, 0.0)
        assert not result.lane_change

    def test_rule_over_cost_grid(self):
        costs = [0.0, 1.0, 2.5, 4.0, 7.0]
        margins = [0.0, 0.5, 1.5, 3.0]
        for keep_cost, change_cost, margin in itertools.product(costs, costs, margins):
            result = select_trajectory([_candidate(0, keep_cost), _candidate(-1, change_cost)], 0, margin)
            assert result.lane_change == (change_cost < keep_cost - margin)

    def test_best_of_each_lane_is_compared(self):
        candidates = [_candidate(0, 12.0), _candidate(0, 10.0), _candidate(1, 9.5), _candidate(-1, 8.0)]
        result = select_trajectory(candidates, 0, 1.0)
        assert result.lane_change
        assert result.trajectory.cost == 8.0


class TestDegenerateInputs:
    def test_only_keep_option(self):
        result = select_trajectory([_candidate(0, 3.0)], 0, 1.0)
        assert result.trajectory is not None
        assert not result.lane_change
        assert result.change_cost is None

    def test_only_change_option(self):
        result = select_trajectory([_candidate(1, 30.0)], 0, 1.0)
        assert result.trajectory.lane_id == 1
        assert result.lane_change

    def test_no_candidates_fails(self):
        result = select_trajectory([], 0, 1.0)
        assert result.failed
        assert result.trajectory is None

    def test_empty_candidates_are_ignored(self):
        result = select_trajectory([_candidate(0, 1.0, length=0), _candidate(0, 5.0)], 0, 1.0)
        assert result.trajectory.cost == 5.0

        result = select_trajectory([_candidate(0, 1.0, length=0)], 0, 1.0)
        assert result.failed

    def test_negative_margin_treated_as_zero(self):
        result = select_trajectory([_candidate(0, 10.0), _candidate(1, 10.5)], 0, -2.0)
        assert not result.lane_change
        result = select_trajectory([_candidate(0, 10.0), _candidate(1, 9.9)], 0, -2.0)
        assert result.lane_change


@pytest.mark.parametrize("current_lane", [-1, 0, 3])
def test_current_lane_defines_keep_option(current_lane):
    candidates = [_candidate(current_lane, 5.0), _candidate(current_lane + 1, 4.5)]
    result = select_trajectory(candidates, current_lane, 1.0)
    assert result.trajectory.lane_id == current_lane
