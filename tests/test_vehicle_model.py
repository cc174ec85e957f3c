"""
Tests for the kinematic bicycle model.
"""

import math

import pytest

from control.vehicle_model import BicycleModel
from data.formats.data_format import VehicleState


def test_straight_motion():
    model = BicycleModel(wheelbase=2.8)
    state = model.step(VehicleState(x=0.0, y=0.0, yaw=0.0, speed=10.0), 0.0, 0.0, 0.1)
    assert state.x == pytest.approx(1.0)
    assert state.y == pytest.approx(0.0)
    assert state.yaw == pytest.approx(0.0)
    assert state.timestamp == pytest.approx(0.1)


def test_left_steering_turns_left():
    model = BicycleModel(wheelbase=2.8)
    state = VehicleState(x=0.0, y=0.0, yaw=0.0, speed=5.0)
    for _ in range(10):
        state = model.step(state, 0.0, 0.2, 0.1)
    assert state.yaw > 0.0
    assert state.y > 0.0
    assert state.curvature == pytest.approx(math.tan(0.2) / 2.8)


def test_steering_is_clamped():
    model = BicycleModel(wheelbase=2.5, max_steering_angle=0.3)
    state = model.step(VehicleState(x=0.0, y=0.0, yaw=0.0, speed=5.0), 0.0, 1.0, 0.1)
    assert state.curvature == pytest.approx(model.compute_curvature(0.3))


def test_speed_never_negative():
    model = BicycleModel()
    state = VehicleState(x=0.0, y=0.0, yaw=0.0, speed=0.5)
    for _ in range(20):
        state = model.step(state, -4.0, 0.0, 0.1)
    assert state.speed == 0.0


def test_compute_curvature_zero_for_straight():
    assert BicycleModel().compute_curvature(0.0) == 0.0
