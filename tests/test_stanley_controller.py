"""
Tests for the Stanley lateral controller.
"""

import math

import numpy as np
import pytest

from control.stanley_controller import StanleyController, build_stanley_controller
from data.formats.data_format import OutputTrajectory, VehicleState, Waypoint


def _straight_path(length: float = 30.0, spacing: float = 1.0) -> OutputTrajectory:
    return OutputTrajectory([
        Waypoint(x=x, y=0.0, yaw=0.0, v=5.0, s=x) for x in np.arange(0.0, length, spacing)
    ])


def _front_axle(x: float, y: float, yaw: float = 0.0, speed: float = 4.0) -> VehicleState:
    return VehicleState(x=x, y=y, yaw=yaw, speed=speed)


def test_on_path_gives_zero_steering():
    result = StanleyController().compute_steering(_straight_path(), _front_axle(5.0, 0.0))
    assert result.steering_angle == pytest.approx(0.0, abs=1e-9)
    assert result.cross_track_error == pytest.approx(0.0, abs=1e-9)
    assert result.heading_error == pytest.approx(0.0, abs=1e-9)


def test_path_to_the_left_steers_left():
    controller = StanleyController(gain=1.0, softening=1.0)
    result = controller.compute_steering(_straight_path(), _front_axle(5.0, -1.0, speed=4.0))
    assert result.cross_track_error == pytest.approx(1.0)
    assert result.steering_angle == pytest.approx(math.atan2(1.0, 5.0))
    assert result.steering_angle > 0.0


def test_path_to_the_right_steers_right():
    result = StanleyController().compute_steering(_straight_path(), _front_axle(5.0, 0.5))
    assert result.cross_track_error == pytest.approx(-0.5)
    assert result.steering_angle < 0.0


def test_heading_error_is_path_minus_vehicle():
    result = StanleyController().compute_steering(_straight_path(), _front_axle(5.0, 0.0, yaw=0.2))
    assert result.heading_error == pytest.approx(-0.2)
    assert result.steering_angle == pytest.approx(-0.2)


def test_heading_error_wraps():
    path = OutputTrajectory([
        Waypoint(x=-x, y=0.0, yaw=math.pi, v=5.0) for x in np.arange(0.0, 20.0, 1.0)
    ])
    result = StanleyController().compute_steering(path, _front_axle(-5.0, 0.0, yaw=-math.pi + 0.1))
    assert result.heading_error == pytest.approx(-0.1, abs=1e-9)


def test_steering_saturates():
    controller = StanleyController(gain=5.0, max_steering_angle=0.5, max_tracking_distance=10.0)
    result = controller.compute_steering(_straight_path(), _front_axle(5.0, -4.0, speed=0.0))
    assert result.steering_angle == pytest.approx(0.5)


def test_too_far_from_path_is_a_fault():
    controller = StanleyController(max_tracking_distance=2.0)
    assert controller.compute_steering(_straight_path(), _front_axle(5.0, 3.0)) is None


def test_short_trajectory_is_a_fault():
    controller = StanleyController()
    single = OutputTrajectory([Waypoint(x=0.0, y=0.0, yaw=0.0, v=1.0)])
    assert controller.compute_steering(single, _front_axle(0.0, 0.0)) is None
    assert controller.compute_steering(OutputTrajectory(), _front_axle(0.0, 0.0)) is None


def test_search_starts_before_next_waypoint_index():
    controller = StanleyController(max_tracking_distance=5.0)
    path = _straight_path(30.0)
    result = controller.compute_steering(path, _front_axle(10.2, 0.0), next_waypoint_index=10)
    assert result.nearest_index == 10
    assert controller.compute_steering(path, _front_axle(2.0, 0.0), next_waypoint_index=15) is None


def test_build_from_config():
    controller = build_stanley_controller(
        {"stanley_gain": 2.5, "softening": 0.5, "max_tracking_distance": 3.0},
        {"max_steering_angle": 0.4},
    )
    assert controller.gain == 2.5
    assert controller.softening == 0.5
    assert controller.max_steering_angle == 0.4
    assert controller.max_tracking_distance == 3.0
