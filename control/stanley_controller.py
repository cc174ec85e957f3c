"""
Stanley lateral controller.
Steers the front axle onto the output trajectory.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from data.formats.data_format import OutputTrajectory, VehicleState
from trajectory.utils import nearest_segment, normalize_angle

logger = logging.getLogger(__name__)


@dataclass
class SteeringResult:
    steering_angle: float  # radians, saturated
    cross_track_error: float  # meters, positive when the path is to the left
    heading_error: float  # radians, path yaw minus vehicle yaw
    nearest_index: int  # segment start index on the trajectory


class StanleyController:
    """
    delta = heading_error + atan2(gain * cte, speed + softening)
    """

    def __init__(self, gain: float = 1.0, softening: float = 1.0,
                 max_steering_angle: float = 0.6, max_tracking_distance: float = 5.0):
        """
        Args:
            gain: Cross-track gain
            softening: Speed softening constant (m/s), keeps the law finite at standstill
            max_steering_angle: Steering saturation (radians)
            max_tracking_distance: Largest admissible distance to the path (meters)
        """
        self.gain = gain
        self.softening = max(softening, 1e-3)
        self.max_steering_angle = abs(max_steering_angle)
        self.max_tracking_distance = max_tracking_distance

    def compute_steering(self, trajectory: OutputTrajectory, front_axle: VehicleState,
                         next_waypoint_index: int = 0) -> Optional[SteeringResult]:
        """
        Compute steering for the front-axle state.

        Args:
            trajectory: Output trajectory to track
            front_axle: Front-axle state
            next_waypoint_index: Search starts one segment before this index

        Returns:
            SteeringResult, or None if the trajectory cannot be tracked
        """
        if len(trajectory) < 2:
            logger.warning(f"Cannot track trajectory with {len(trajectory)} waypoint(s)")
            return None

        xy = trajectory.as_array()
        found = nearest_segment(xy[:, 0], xy[:, 1], front_axle.x, front_axle.y,
                                start_index=next_waypoint_index - 1)
        if found is None:
            return None
        index, _, dist, vehicle_offset = found
        # Vehicle to the right of the path means the path is to its left
        cross_track_error = -vehicle_offset
        if dist > self.max_tracking_distance:
            logger.warning(
                f"Front axle {dist:.2f}m from trajectory exceeds {self.max_tracking_distance:.2f}m"
            )
            return None

        start = trajectory[index]
        end = trajectory[index + 1]
        path_yaw = math.atan2(end.y - start.y, end.x - start.x)
        heading_error = normalize_angle(path_yaw - front_axle.yaw)

        steering = heading_error + math.atan2(self.gain * cross_track_error,
                                              max(front_axle.speed, 0.0) + self.softening)
        steering = float(np.clip(steering, -self.max_steering_angle, self.max_steering_angle))
        return SteeringResult(
            steering_angle=steering,
            cross_track_error=cross_track_error,
            heading_error=heading_error,
            nearest_index=index,
        )


def build_stanley_controller(lateral_cfg: Optional[Dict] = None,
                             vehicle_cfg: Optional[Dict] = None) -> StanleyController:
    """Build Stanley controller from the `control.lateral` and `vehicle` config sections."""
    lateral_cfg = lateral_cfg or {}
    vehicle_cfg = vehicle_cfg or {}
    return StanleyController(
        gain=float(lateral_cfg.get("stanley_gain", 1.0)),
        softening=float(lateral_cfg.get("softening", 1.0)),
        max_steering_angle=float(vehicle_cfg.get("max_steering_angle", 0.6)),
        max_tracking_distance=float(lateral_cfg.get("max_tracking_distance", 5.0)),
    )
