"""
Tests for the REGENERATE/CONTINUE start-state selector.
"""

import pytest

from data.formats.data_format import Lane, OutputTrajectory, VehicleState, Waypoint
from tools.closed_loop_sim import straight_lane
from trajectory.reference_spline import ReferenceSpline
from trajectory.start_state import PlanningMode, StartStateSelector


@pytest.fixture
def reference():
    return ReferenceSpline(Lane(tuple(straight_lane(100.0))))


def _output(count: int, start_s: float = 10.0, spacing: float = 1.0, speed: float = 6.0) -> OutputTrajectory:
    return OutputTrajectory([
        Waypoint(x=start_s + i * spacing, y=0.2, yaw=0.0, v=speed, s=start_s + i * spacing,
                 s_d=speed, s_dd=0.3, d=0.2, d_d=0.01, d_dd=0.001)
        for i in range(count)
    ])


VEHICLE = VehicleState(x=10.0, y=0.0, yaw=0.0, speed=5.0)


def test_initial_mode_regenerates_from_vehicle_pose(reference):
    selector = StartStateSelector()
    assert selector.mode == PlanningMode.REGENERATE
    start, mode = selector.select(VEHICLE, reference, _output(30), vehicle_index=0)
    assert mode == PlanningMode.REGENERATE
    assert start.s == pytest.approx(10.0, abs=1e-6)
    assert start.d == pytest.approx(0.0, abs=1e-6)
    assert start.s_d == pytest.approx(5.0)
    assert start.s_dd == 0.0


def test_continue_reads_output_ahead_of_vehicle(reference):
    selector = StartStateSelector(continue_lookahead_index=5)
    selector.on_success()
    output = _output(30)
    start, mode = selector.select(VEHICLE, reference, output, vehicle_index=2)
    assert mode == PlanningMode.CONTINUE
    assert start == output[7].frenet_state()
    assert start.s_dd == pytest.approx(0.3)
    assert start.d_dd == pytest.approx(0.001)


def test_continue_index_is_capped_at_last_waypoint(reference):
    selector = StartStateSelector(continue_lookahead_index=50, min_remaining_waypoints=5)
    selector.on_success()
    output = _output(12)
    start, mode = selector.select(VEHICLE, reference, output, vehicle_index=0)
    assert mode == PlanningMode.CONTINUE
    assert start.s == pytest.approx(output[11].s)


def test_empty_output_forces_regenerate(reference):
    selector = StartStateSelector()
    selector.on_success()
    _, mode = selector.select(VEHICLE, reference, OutputTrajectory(), vehicle_index=0)
    assert mode == PlanningMode.REGENERATE


def test_consumed_output_forces_regenerate(reference):
    selector = StartStateSelector(min_remaining_waypoints=10)
    selector.on_success()
    _, mode = selector.select(VEHICLE, reference, _output(30), vehicle_index=25)
    assert mode == PlanningMode.REGENERATE


def test_failure_returns_to_regenerate(reference):
    selector = StartStateSelector()
    selector.on_success()
    selector.on_failure()
    _, mode = selector.select(VEHICLE, reference, _output(30), vehicle_index=0)
    assert mode == PlanningMode.REGENERATE


def test_external_request_forces_one_regenerate(reference):
    selector = StartStateSelector()
    selector.on_success()
    selector.request_regenerate()
    _, mode = selector.select(VEHICLE, reference, _output(30), vehicle_index=0)
    assert mode == PlanningMode.REGENERATE

    selector.on_success()
    _, mode = selector.select(VEHICLE, reference, _output(30), vehicle_index=0)
    assert mode == PlanningMode.CONTINUE


def test_min_planning_speed_applies_in_both_modes(reference):
    selector = StartStateSelector(min_planning_speed=2.0)
    stopped = VehicleState(x=10.0, y=0.0, yaw=0.0, speed=0.0)
    start, _ = selector.select(stopped, reference, OutputTrajectory(), vehicle_index=0)
    assert start.s_d == pytest.approx(2.0)

    selector.on_success()
    start, mode = selector.select(stopped, reference, _output(30, speed=0.5), vehicle_index=0)
    assert mode == PlanningMode.CONTINUE
    assert start.s_d == pytest.approx(2.0)
