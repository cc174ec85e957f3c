"""
Lattice candidate planner in the Frenet frame.

Any object with a `plan(start_state, reference, bounds, obstacles)` method
returning cost-sorted CandidateTrajectory objects can replace
LatticeCandidatePlanner in the planner stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from data.formats.data_format import CandidateTrajectory, FrenetState, ObstacleSet
from trajectory.reference_spline import ReferenceSpline
from trajectory.sampling_width import SamplingBounds
from trajectory.utils import polyline_curvature

logger = logging.getLogger(__name__)


class QuinticPolynomial:
    """Quintic q(t) matching position, velocity and acceleration at both ends."""

    def __init__(self, q0: float, q0_d: float, q0_dd: float,
                 q1: float, q1_d: float, q1_dd: float, duration: float):
        self.c0 = q0
        self.c1 = q0_d
        self.c2 = q0_dd * 0.5
        T = duration
        m1 = np.array([
            [1.0, T, T ** 2],
            [0.0, 1.0, 2.0 * T],
            [0.0, 0.0, 2.0],
        ])
        m2 = np.array([
            [T ** 3, T ** 4, T ** 5],
            [3.0 * T ** 2, 4.0 * T ** 3, 5.0 * T ** 4],
            [6.0 * T, 12.0 * T ** 2, 20.0 * T ** 3],
        ])
        target = np.array([q1, q1_d, q1_dd])
        self.c3, self.c4, self.c5 = np.linalg.solve(m2, target - m1 @ np.array([self.c0, self.c1, self.c2]))

    def position(self, t):
        return self.c0 + self.c1 * t + self.c2 * t ** 2 + self.c3 * t ** 3 + self.c4 * t ** 4 + self.c5 * t ** 5

    def velocity(self, t):
        return self.c1 + 2 * self.c2 * t + 3 * self.c3 * t ** 2 + 4 * self.c4 * t ** 3 + 5 * self.c5 * t ** 4

    def acceleration(self, t):
        return 2 * self.c2 + 6 * self.c3 * t + 12 * self.c4 * t ** 2 + 20 * self.c5 * t ** 3

    def jerk(self, t):
        return 6 * self.c3 + 24 * self.c4 * t + 60 * self.c5 * t ** 2


class QuarticPolynomial:
    """Quartic q(t) matching start state and end velocity/acceleration."""

    def __init__(self, q0: float, q0_d: float, q0_dd: float,
                 q1_d: float, q1_dd: float, duration: float):
        self.c0 = q0
        self.c1 = q0_d
        self.c2 = q0_dd * 0.5
        T = duration
        m1 = np.array([
            [1.0, 2.0 * T],
            [0.0, 2.0],
        ])
        m2 = np.array([
            [3.0 * T ** 2, 4.0 * T ** 3],
            [6.0 * T, 12.0 * T ** 2],
        ])
        target = np.array([q1_d, q1_dd])
        self.c3, self.c4 = np.linalg.solve(m2, target - m1 @ np.array([self.c1, self.c2]))

    def position(self, t):
        return self.c0 + self.c1 * t + self.c2 * t ** 2 + self.c3 * t ** 3 + self.c4 * t ** 4

    def velocity(self, t):
        return self.c1 + 2 * self.c2 * t + 3 * self.c3 * t ** 2 + 4 * self.c4 * t ** 3

    def acceleration(self, t):
        return 2 * self.c2 + 6 * self.c3 * t + 12 * self.c4 * t ** 2

    def jerk(self, t):
        return 6 * self.c3 + 24 * self.c4 * t


@dataclass
class LatticePlannerConfig:
    """Configuration for the lattice candidate planner."""
    dt: float = 0.2  # sample period (s)
    min_horizon: float = 4.0  # s
    max_horizon: float = 5.0  # s
    horizon_step: float = 1.0  # s
    num_lateral_samples: int = 5
    target_speed: float = 8.0  # m/s
    speed_sample_step: float = 1.0  # m/s
    num_speed_samples: int = 1  # per side of target_speed
    max_speed: float = 20.0  # m/s
    max_accel: float = 4.0  # m/s^2
    max_curvature: float = 0.3  # 1/m
    vehicle_width: float = 1.9  # m
    wheelbase: float = 2.8  # m
    collision_margin: float = 0.3  # m
    min_obstacle_radius: float = 0.4  # m
    k_jerk: float = 0.1
    k_time: float = 0.1
    k_lateral: float = 10.0
    k_speed: float = 1.0
    k_lat: float = 1.0
    k_lon: float = 1.0


def build_lattice_planner(planner_cfg: Optional[Dict] = None,
                          vehicle_cfg: Optional[Dict] = None) -> "LatticeCandidatePlanner":
    """Build the lattice planner from the `candidate_planner` and `vehicle` config sections."""
    planner_cfg = planner_cfg or {}
    vehicle_cfg = vehicle_cfg or {}
    defaults = LatticePlannerConfig()
    config = LatticePlannerConfig(
        dt=float(planner_cfg.get("dt", defaults.dt)),
        min_horizon=float(planner_cfg.get("min_horizon", defaults.min_horizon)),
        max_horizon=float(planner_cfg.get("max_horizon", defaults.max_horizon)),
        horizon_step=float(planner_cfg.get("horizon_step", defaults.horizon_step)),
        num_lateral_samples=int(planner_cfg.get("num_lateral_samples", defaults.num_lateral_samples)),
        target_speed=float(planner_cfg.get("target_speed", defaults.target_speed)),
        speed_sample_step=float(planner_cfg.get("speed_sample_step", defaults.speed_sample_step)),
        num_speed_samples=int(planner_cfg.get("num_speed_samples", defaults.num_speed_samples)),
        max_speed=float(planner_cfg.get("max_speed", defaults.max_speed)),
        max_accel=float(planner_cfg.get("max_accel", defaults.max_accel)),
        max_curvature=float(planner_cfg.get("max_curvature", defaults.max_curvature)),
        vehicle_width=float(vehicle_cfg.get("width", defaults.vehicle_width)),
        wheelbase=float(vehicle_cfg.get("wheelbase", defaults.wheelbase)),
        collision_margin=float(planner_cfg.get("collision_margin", defaults.collision_margin)),
        min_obstacle_radius=float(planner_cfg.get("min_obstacle_radius", defaults.min_obstacle_radius)),
        k_jerk=float(planner_cfg.get("k_jerk", defaults.k_jerk)),
        k_time=float(planner_cfg.get("k_time", defaults.k_time)),
        k_lateral=float(planner_cfg.get("k_lateral", defaults.k_lateral)),
        k_speed=float(planner_cfg.get("k_speed", defaults.k_speed)),
        k_lat=float(planner_cfg.get("k_lat", defaults.k_lat)),
        k_lon=float(planner_cfg.get("k_lon", defaults.k_lon)),
    )
    if config.dt <= 0.0 or config.min_horizon <= 0.0 or config.max_horizon < config.min_horizon:
        logger.warning(f"Invalid candidate planner timing (dt={config.dt}, horizon="
                       f"[{config.min_horizon}, {config.max_horizon}]); using defaults")
        config.dt = defaults.dt
        config.min_horizon = defaults.min_horizon
        config.max_horizon = defaults.max_horizon
    return LatticeCandidatePlanner(config)


class LatticeCandidatePlanner:
    """
    Samples quintic lateral x quartic longitudinal motions.

    For each horizon, each terminal offset in [bounds.right, bounds.left] and
    each terminal speed around target_speed, one candidate is generated,
    mapped onto the reference spline and checked for feasibility and
    collisions.
    """

    def __init__(self, config: Optional[LatticePlannerConfig] = None):
        self.config = config or LatticePlannerConfig()

    def _horizons(self) -> np.ndarray:
        cfg = self.config
        if cfg.horizon_step <= 0.0 or cfg.max_horizon <= cfg.min_horizon:
            return np.array([cfg.min_horizon])
        return np.arange(cfg.min_horizon, cfg.max_horizon + 1e-6, cfg.horizon_step)

    def _lateral_targets(self, bounds: SamplingBounds) -> np.ndarray:
        count = max(self.config.num_lateral_samples, 1)
        if count == 1 or bounds.left - bounds.right < 1e-6:
            return np.array([bounds.target])
        return np.linspace(bounds.right, bounds.left, count)

    def _speed_targets(self) -> np.ndarray:
        cfg = self.config
        offsets = np.arange(-cfg.num_speed_samples, cfg.num_speed_samples + 1) * cfg.speed_sample_step
        speeds = cfg.target_speed + offsets
        return speeds[speeds >= 0.0]

    def plan(self, start_state: FrenetState, reference: ReferenceSpline,
             bounds: SamplingBounds, obstacles: ObstacleSet) -> List[CandidateTrajectory]:
        """
        Generate feasible candidates sorted best-to-worst.

        Args:
            start_state: Frenet start state
            reference: Reference spline for Frenet -> world conversion
            bounds: Lateral sampling bounds in reference coordinates
            obstacles: Obstacles in the planning frame

        Returns:
            Candidate trajectories (possibly empty)
        """
        cfg = self.config
        candidates = []
        rejected = 0
        for horizon in self._horizons():
            t = np.arange(0.0, horizon + 1e-6, cfg.dt)
            for d_end in self._lateral_targets(bounds):
                lateral = QuinticPolynomial(
                    start_state.d, start_state.d_d, start_state.d_dd, d_end, 0.0, 0.0, horizon
                )
                for v_end in self._speed_targets():
                    longitudinal = QuarticPolynomial(
                        start_state.s, start_state.s_d, start_state.s_dd, v_end, 0.0, horizon
                    )
                    candidate = self._build_candidate(
                        t, lateral, longitudinal, reference, horizon, d_end, v_end, bounds
                    )
                    if candidate is None or not self._is_feasible(candidate) or \
                            self._collides(candidate, obstacles):
                        rejected += 1
                        continue
                    candidates.append(candidate)

        candidates.sort(key=lambda c: c.cost)
        logger.debug(f"Lattice planner: {len(candidates)} feasible, {rejected} rejected")
        return candidates

    def _build_candidate(self, t, lateral, longitudinal, reference: ReferenceSpline,
                         horizon: float, d_end: float, v_end: float,
                         bounds: SamplingBounds) -> Optional[CandidateTrajectory]:
        cfg = self.config
        s = longitudinal.position(t)
        # Samples past the end of the reference cannot be mapped to the world
        keep = s <= reference.length + 1e-6
        if np.count_nonzero(keep) < 2:
            return None
        t = t[keep]
        s = s[keep]
        s_d = longitudinal.velocity(t)
        s_dd = longitudinal.acceleration(t)
        s_ddd = longitudinal.jerk(t)
        d = lateral.position(t)
        d_d = lateral.velocity(t)
        d_dd = lateral.acceleration(t)
        d_ddd = lateral.jerk(t)

        x, y, centre_yaw = reference.to_world(s, d)
        steps = np.hypot(np.diff(x), np.diff(y))
        yaw = np.empty(len(x))
        yaw[:-1] = np.where(steps > 1e-4, np.arctan2(np.diff(y), np.diff(x)), centre_yaw[:-1])
        yaw[-1] = yaw[-2]

        lat_cost = (
            cfg.k_jerk * float(np.sum(d_ddd ** 2)) * cfg.dt
            + cfg.k_time * horizon
            + cfg.k_lateral * (d_end - bounds.target) ** 2
        )
        lon_cost = (
            cfg.k_jerk * float(np.sum(s_ddd ** 2)) * cfg.dt
            + cfg.k_time * horizon
            + cfg.k_speed * (v_end - cfg.target_speed) ** 2
        )

        end_width = reference.lane_width_at(float(s[-1]))
        lane_offset = int(round(d_end / end_width)) if end_width > 0.0 else 0
        return CandidateTrajectory(
            t=t,
            x=np.asarray(x, dtype=float),
            y=np.asarray(y, dtype=float),
            yaw=yaw,
            v=np.hypot(s_d, d_d),
            a=s_dd,
            curvature=polyline_curvature(x, y),
            s=s,
            s_d=s_d,
            s_dd=s_dd,
            d=d,
            d_d=d_d,
            d_dd=d_dd,
            lane_id=reference.lane_id + lane_offset,
            cost=cfg.k_lat * lat_cost + cfg.k_lon * lon_cost,
        )

    def _is_feasible(self, candidate: CandidateTrajectory) -> bool:
        cfg = self.config
        if np.any(candidate.v > cfg.max_speed):
            return False
        if np.any(np.abs(candidate.a) > cfg.max_accel):
            return False
        if np.any(np.abs(candidate.curvature) > cfg.max_curvature):
            return False
        # Backward motion along the reference
        if np.any(candidate.s_d < -1e-3) or np.any(np.diff(candidate.s) < -1e-4):
            return False
        return True

    def _collides(self, candidate: CandidateTrajectory, obstacles: ObstacleSet) -> bool:
        """Two-circle vehicle footprint against one circle per obstacle."""
        if not len(obstacles):
            return False
        cfg = self.config
        half_base = cfg.wheelbase * 0.5
        vehicle_radius = cfg.vehicle_width * 0.5 + cfg.collision_margin
        cos_yaw = np.cos(candidate.yaw)
        sin_yaw = np.sin(candidate.yaw)
        front_x = candidate.x + half_base * cos_yaw
        front_y = candidate.y + half_base * sin_yaw
        rear_x = candidate.x - half_base * cos_yaw
        rear_y = candidate.y - half_base * sin_yaw

        for obstacle in obstacles.obstacles:
            safety = vehicle_radius + max(obstacle.radius, cfg.min_obstacle_radius)
            if np.any(np.hypot(front_x - obstacle.x, front_y - obstacle.y) < safety):
                return True
            if np.any(np.hypot(rear_x - obstacle.x, rear_y - obstacle.y) < safety):
                return True
        return False
