"""
Tests for the lateral sampling-width policy.
"""

import pytest

from data.formats.data_format import LaneWaypoint
from trajectory.sampling_width import SamplingBounds, adjacent_lane_widths, get_sampling_width

W = 3.5
VW = 1.9


class TestGetSamplingWidth:
    def test_same_lane_is_symmetric(self):
        bounds = get_sampling_width(0, 0, VW, W)
        assert bounds.left == pytest.approx((W - VW) / 2)
        assert bounds.right == pytest.approx(-(W - VW) / 2)
        assert bounds.target == 0.0

    def test_no_target_keeps_lane(self):
        assert get_sampling_width(2, None, VW, W, W, W) == get_sampling_width(2, 2, VW, W)

    def test_left_lane_change(self):
        bounds = get_sampling_width(0, 1, VW, W, left_lane_width=3.0)
        assert bounds.left == pytest.approx(W / 2 + 1.5)
        assert bounds.right == pytest.approx(-(W - VW) / 2)
        assert bounds.target == pytest.approx(bounds.left)

    def test_right_lane_change(self):
        bounds = get_sampling_width(0, -1, VW, W, right_lane_width=W)
        assert bounds.right == pytest.approx(-W)
        assert bounds.left == pytest.approx((W - VW) / 2)
        assert bounds.target == pytest.approx(-W)

    def test_missing_target_lane_stays_in_lane(self):
        bounds = get_sampling_width(0, 1, VW, W, left_lane_width=0.0, right_lane_width=W)
        assert bounds == get_sampling_width(0, 0, VW, W)

    def test_non_adjacent_target_stays_in_lane(self):
        bounds = get_sampling_width(0, 2, VW, W, left_lane_width=W)
        assert bounds == get_sampling_width(0, 0, VW, W)

    def test_lane_narrower_than_vehicle_collapses(self):
        bounds = get_sampling_width(0, 0, 2.5, 2.0)
        assert bounds.left == 0.0
        assert bounds.right == 0.0
        assert bounds.width == 0.0

    @pytest.mark.parametrize("width", [2.0, 3.0, 3.5, 4.2])
    def test_left_never_below_right(self, width):
        for target in (-1, 0, 1):
            bounds = get_sampling_width(0, target, VW, width, width, width)
            assert bounds.left >= bounds.right


def test_shifted_moves_all_offsets():
    bounds = SamplingBounds(left=0.8, right=-0.8, target=0.0).shifted(3.5)
    assert bounds.left == pytest.approx(4.3)
    assert bounds.right == pytest.approx(2.7)
    assert bounds.target == pytest.approx(3.5)


class TestAdjacentLaneWidths:
    def test_single_lane_road(self):
        waypoint = LaneWaypoint(x=0.0, y=0.0, lane_width=W, left_boundary=W / 2, right_boundary=W / 2)
        assert adjacent_lane_widths(waypoint) == (0.0, 0.0)

    def test_lane_to_the_left(self):
        waypoint = LaneWaypoint(x=0.0, y=0.0, lane_width=W, left_boundary=1.5 * W, right_boundary=W / 2)
        assert adjacent_lane_widths(waypoint) == (W, 0.0)

    def test_vehicle_already_in_left_lane(self):
        waypoint = LaneWaypoint(x=0.0, y=0.0, lane_width=W, left_boundary=1.5 * W, right_boundary=W / 2)
        assert adjacent_lane_widths(waypoint, lane_offset=1) == (0.0, W)
