"""
PID controller for longitudinal (throttle/brake) control.
The controller holds only gains; its memory is an explicit PIDState passed in and returned.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from data.formats.data_format import OutputTrajectory, VehicleState


@dataclass(frozen=True)
class PIDState:
    """PID memory carried between cycles."""
    integral: float = 0.0
    prev_error: float = 0.0
    initialized: bool = False


class PIDController:
    """
    PID controller with integral windup protection.
    """

    def __init__(self, kp: float, ki: float, kd: float,
                 integral_limit: Optional[float] = None, output_limit: Optional[Tuple[float, float]] = None):
        """
        Initialize PID controller.

        Args:
            kp: Proportional gain
            ki: Integral gain
            kd: Derivative gain
            integral_limit: Limit for integral term (anti-windup)
            output_limit: (min, max) output limits
        """
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self.integral_limit = integral_limit
        self.output_limit = output_limit

    def step(self, state: PIDState, error: float, dt: float) -> Tuple[float, PIDState]:
        """
        Advance the controller by one step.

        Args:
            state: Previous PID state
            error: Current error
            dt: Time step

        Returns:
            (control output, new state)
        """
        dt = max(dt, 0.0)

        # Proportional term
        p_term = self.kp * error

        # Integral term
        integral = state.integral + error * dt
        if self.integral_limit is not None:
            integral = float(np.clip(integral, -self.integral_limit, self.integral_limit))
        i_term = self.ki * integral

        # Derivative term
        if state.initialized and dt > 0:
            d_term = self.kd * (error - state.prev_error) / dt
        else:
            d_term = 0.0

        output = p_term + i_term + d_term
        if self.output_limit is not None:
            output = float(np.clip(output, self.output_limit[0], self.output_limit[1]))

        return float(output), PIDState(integral=integral, prev_error=error, initialized=True)

    @staticmethod
    def reset() -> PIDState:
        """Fresh controller state."""
        return PIDState()


@dataclass
class LongitudinalOutput:
    """Acceleration command and its diagnostics."""
    acceleration: float  # m/s^2
    target_speed: float  # m/s
    speed_error: float  # m/s


@dataclass
class LongitudinalConfig:
    kp: float = 0.8
    ki: float = 0.1
    kd: float = 0.05
    integral_limit: float = 5.0
    max_accel: float = 2.0  # m/s^2
    max_decel: float = 4.0  # m/s^2 (positive)
    speed_lookahead_points: int = 3


class LongitudinalController:
    """
    Longitudinal control (throttle/brake) tracking the planned speed profile.
    """

    def __init__(self, config: Optional[LongitudinalConfig] = None):
        self.config = config or LongitudinalConfig()
        self.pid = PIDController(
            kp=self.config.kp,
            ki=self.config.ki,
            kd=self.config.kd,
            integral_limit=self.config.integral_limit,
            output_limit=(-abs(self.config.max_decel), abs(self.config.max_accel)),
        )

    def target_speed(self, trajectory: OutputTrajectory, nearest_index: int) -> float:
        if trajectory.is_empty():
            return 0.0
        index = min(max(nearest_index, 0) + max(self.config.speed_lookahead_points, 0), len(trajectory) - 1)
        return max(float(trajectory[index].v), 0.0)

    def compute_acceleration(self, trajectory: OutputTrajectory, vehicle_state: VehicleState,
                             nearest_index: int, state: PIDState,
                             dt: float) -> Tuple[LongitudinalOutput, PIDState]:
        """
        Compute acceleration command.

        Args:
            trajectory: Committed output trajectory
            vehicle_state: Current vehicle state
            nearest_index: Output waypoint nearest the vehicle
            state: PID state from the previous cycle
            dt: Time since the previous cycle (s)

        Returns:
            (LongitudinalOutput, new PID state)
        """
        target = self.target_speed(trajectory, nearest_index)
        error = target - vehicle_state.speed
        acceleration, new_state = self.pid.step(state, error, dt)
        return LongitudinalOutput(acceleration=acceleration, target_speed=target, speed_error=error), new_state


def build_longitudinal_controller(longitudinal_cfg: Optional[Dict] = None) -> LongitudinalController:
    """Build longitudinal controller from the `control.longitudinal` config section."""
    longitudinal_cfg = longitudinal_cfg or {}
    defaults = LongitudinalConfig()
    return LongitudinalController(LongitudinalConfig(
        kp=float(longitudinal_cfg.get("kp", defaults.kp)),
        ki=float(longitudinal_cfg.get("ki", defaults.ki)),
        kd=float(longitudinal_cfg.get("kd", defaults.kd)),
        integral_limit=float(longitudinal_cfg.get("integral_limit", defaults.integral_limit)),
        max_accel=float(longitudinal_cfg.get("max_accel", defaults.max_accel)),
        max_decel=float(longitudinal_cfg.get("max_decel", defaults.max_decel)),
        speed_lookahead_points=int(longitudinal_cfg.get("speed_lookahead_points", defaults.speed_lookahead_points)),
    ))
