"""
Closed-loop simulation of the planner stack.

Drives a kinematic bicycle model with the commands the stack produces,
feeding odometry back every step (odometry is the cycle trigger).

Usage:
    python planner_stack.py --scenario lane_change --max_frames 300
"""

import logging
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from control.vehicle_model import BicycleModel
from data.formats.data_format import CycleStatus, LaneWaypoint, Obstacle, VehicleState
from data.recorder import CycleRecorder
from planner_stack import PlannerStack, deep_merge

logger = logging.getLogger(__name__)


def straight_lane(length: float = 200.0, spacing: float = 1.0, lane_id: int = 0,
                  lane_width: float = 3.5, lanes_left: int = 0, lanes_right: int = 0,
                  heading: float = 0.0) -> List[LaneWaypoint]:
    """Straight reference lane starting at the origin."""
    count = int(length / spacing) + 1
    cos_h, sin_h = math.cos(heading), math.sin(heading)
    return [
        LaneWaypoint(
            x=i * spacing * cos_h,
            y=i * spacing * sin_h,
            yaw=heading,
            curvature=0.0,
            lane_id=lane_id,
            lane_width=lane_width,
            left_boundary=lane_width / 2.0 + lanes_left * lane_width,
            right_boundary=lane_width / 2.0 + lanes_right * lane_width,
        )
        for i in range(count)
    ]


def curved_lane(lead_in: float = 30.0, radius: float = 60.0, angle: float = math.pi / 2,
                lead_out: float = 60.0, spacing: float = 1.0, lane_id: int = 0,
                lane_width: float = 3.5) -> List[LaneWaypoint]:
    """Straight lead-in, left arc of `radius` through `angle`, straight lead-out."""
    points: List[Tuple[float, float, float, float]] = []
    for s in np.arange(0.0, lead_in, spacing):
        points.append((s, 0.0, 0.0, 0.0))

    arc_steps = max(int(radius * angle / spacing), 1)
    for i in range(arc_steps):
        theta = angle * i / arc_steps
        points.append((lead_in + radius * math.sin(theta), radius * (1.0 - math.cos(theta)), theta, 1.0 / radius))

    end_x = lead_in + radius * math.sin(angle)
    end_y = radius * (1.0 - math.cos(angle))
    for s in np.arange(0.0, lead_out + 1e-6, spacing):
        points.append((end_x + s * math.cos(angle), end_y + s * math.sin(angle), angle, 0.0))

    return [
        LaneWaypoint(x=x, y=y, yaw=yaw, curvature=kappa, lane_id=lane_id, lane_width=lane_width,
                     left_boundary=lane_width / 2.0, right_boundary=lane_width / 2.0)
        for x, y, yaw, kappa in points
    ]


@dataclass
class Scenario:
    lane: List[LaneWaypoint]
    initial_state: VehicleState
    obstacles: List[Obstacle] = field(default_factory=list)
    config_updates: Dict = field(default_factory=dict)


def _straight_scenario() -> Scenario:
    return Scenario(lane=straight_lane(300.0), initial_state=VehicleState(x=5.0, y=0.0, yaw=0.0, speed=3.0))


def _curve_scenario() -> Scenario:
    return Scenario(lane=curved_lane(), initial_state=VehicleState(x=5.0, y=0.0, yaw=0.0, speed=3.0))


def _lane_change_scenario() -> Scenario:
    return Scenario(
        lane=straight_lane(300.0, lanes_left=1),
        initial_state=VehicleState(x=5.0, y=0.0, yaw=0.0, speed=5.0),
        config_updates={"planning": {"target_lane_id": 1}},
    )


def _blocked_scenario() -> Scenario:
    return Scenario(
        lane=straight_lane(300.0),
        initial_state=VehicleState(x=5.0, y=0.0, yaw=0.0, speed=5.0),
        obstacles=[Obstacle(x=60.0, y=0.0, length=4.0, width=6.0)],
    )


SCENARIOS = {
    "straight": _straight_scenario,
    "curve": _curve_scenario,
    "lane_change": _lane_change_scenario,
    "blocked": _blocked_scenario,
}


@dataclass
class SimulationSummary:
    cycles: int = 0
    fail_safe_cycles: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    max_abs_cross_track_error: float = 0.0
    distance_travelled: float = 0.0
    final_state: Optional[VehicleState] = None
    lateral_offsets: List[float] = field(default_factory=list)  # vehicle y per cycle


def run_closed_loop(stack: PlannerStack, lane: List[LaneWaypoint], initial_state: VehicleState,
                    max_frames: int = 300, dt: float = 0.1,
                    obstacles: Optional[List[Obstacle]] = None) -> SimulationSummary:
    """
    Run the stack against a bicycle model.

    Args:
        stack: Planner stack (listeners already attached)
        lane: Reference lane waypoints
        initial_state: Vehicle state at t=0 (rear axle)
        max_frames: Number of cycles
        dt: Simulation step (seconds)
        obstacles: Static obstacles in the planning frame

    Returns:
        SimulationSummary
    """
    model = BicycleModel(
        wheelbase=stack.planning.front_axle_offset,
        max_steering_angle=stack.stanley.max_steering_angle,
    )
    summary = SimulationSummary()
    state = initial_state
    t = initial_state.timestamp

    stack.update_lane(lane, timestamp=t)
    stack.update_obstacles(obstacles or [], frame_id=stack.planning.planning_frame, timestamp=t)

    for _ in range(max_frames):
        stack.update_odometry(state.x, state.y, state.yaw, state.speed, 0.0, state.yaw_rate, timestamp=t)
        # Static obstacles are re-published every cycle so they never go stale
        stack.update_obstacles(obstacles or [], frame_id=stack.planning.planning_frame, timestamp=t)
        cycle = stack.tick(timestamp=t)
        if cycle is None:
            continue

        summary.cycles += 1
        summary.status_counts[cycle.status.value] = summary.status_counts.get(cycle.status.value, 0) + 1
        command = cycle.command
        if command.is_fail_safe:
            summary.fail_safe_cycles += 1
        if cycle.status == CycleStatus.OK and command.cross_track_error is not None:
            summary.max_abs_cross_track_error = max(summary.max_abs_cross_track_error,
                                                    abs(command.cross_track_error))

        next_state = model.step(state, command.acceleration, command.steering_angle, dt)
        summary.distance_travelled += math.hypot(next_state.x - state.x, next_state.y - state.y)
        summary.lateral_offsets.append(state.y)
        state = next_state
        t += dt

    summary.final_state = state
    return summary


def run_scenario(name: str, config: Optional[Dict] = None, max_frames: int = 300, dt: float = 0.1,
                 recording_dir: Optional[str] = None) -> SimulationSummary:
    """Build a stack for a named scenario and run it."""
    if name not in SCENARIOS:
        raise ValueError(f"Unknown scenario '{name}'; choose from {sorted(SCENARIOS)}")
    scenario = SCENARIOS[name]()
    stack = PlannerStack(config=deep_merge(config or {}, scenario.config_updates))

    recorder = None
    if recording_dir is not None:
        recorder = CycleRecorder(recording_dir, recording_name=f"{name}_{int(dt * 1000)}ms",
                                 metadata={"scenario": name, "dt": dt})
        stack.add_listener(recorder.record_cycle)
    try:
        return run_closed_loop(stack, scenario.lane, scenario.initial_state, max_frames, dt, scenario.obstacles)
    finally:
        if recorder is not None:
            recorder.close()
