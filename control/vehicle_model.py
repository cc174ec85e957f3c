"""
Vehicle dynamics model (bicycle model).
Used for closed-loop simulation.
"""

import dataclasses

import numpy as np

from data.formats.data_format import VehicleState


class BicycleModel:
    """
    Kinematic bicycle model about the rear axle.
    Simplified 2D model assuming no roll or pitch.
    """

    def __init__(self, wheelbase: float = 2.8, max_steering_angle: float = 0.6,
                 max_speed: float = 30.0):
        """
        Initialize bicycle model.

        Args:
            wheelbase: Distance between front and rear axles (meters)
            max_steering_angle: Maximum steering angle (radians)
            max_speed: Speed ceiling (m/s)
        """
        self.wheelbase = wheelbase
        self.max_steering_angle = max_steering_angle
        self.max_speed = max_speed

    def compute_curvature(self, steering_angle: float) -> float:
        """
        Compute curvature from steering angle.

        Args:
            steering_angle: Steering angle (radians)

        Returns:
            Curvature (1/m)
        """
        if abs(steering_angle) < 1e-6:
            return 0.0
        return float(np.tan(steering_angle) / self.wheelbase)

    def step(self, state: VehicleState, acceleration: float, steering_angle: float,
             dt: float) -> VehicleState:
        """
        Integrate one time step.

        Args:
            state: Current state (rear axle)
            acceleration: Longitudinal acceleration (m/s^2)
            steering_angle: Steering angle (radians, clamped)
            dt: Time step (seconds)

        Returns:
            New VehicleState; speed never goes negative
        """
        steering_angle = float(np.clip(steering_angle, -self.max_steering_angle, self.max_steering_angle))
        curvature = self.compute_curvature(steering_angle)

        speed = state.speed
        x = state.x + speed * np.cos(state.yaw) * dt
        y = state.y + speed * np.sin(state.yaw) * dt
        heading = state.yaw + speed * curvature * dt
        heading = float(np.arctan2(np.sin(heading), np.cos(heading)))
        new_speed = float(np.clip(speed + acceleration * dt, 0.0, self.max_speed))

        return dataclasses.replace(
            state,
            x=float(x),
            y=float(y),
            yaw=heading,
            speed=new_speed,
            yaw_rate=speed * curvature,
            curvature=curvature,
            timestamp=state.timestamp + dt,
        )
