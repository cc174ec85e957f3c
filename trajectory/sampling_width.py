"""
Lateral sampling-width policy.
Maps (current lane, target lane) to the Frenet offsets the candidate planner samples between.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from data.formats.data_format import LaneWaypoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplingBounds:
    """Lateral sampling bounds (meters, left positive)."""
    left: float
    right: float
    target: float  # preferred terminal offset

    @property
    def width(self) -> float:
        return self.left - self.right

    def shifted(self, offset: float) -> "SamplingBounds":
        """Move bounds by `offset` (e.g. into reference-centreline coordinates)."""
        return SamplingBounds(
            left=self.left + offset,
            right=self.right + offset,
            target=self.target + offset,
        )


def _stay_in_lane(current_lane_width: float, vehicle_width: float) -> SamplingBounds:
    half_free = (current_lane_width - vehicle_width) / 2.0
    if half_free < 0.0:
        logger.warning(
            f"Lane width {current_lane_width:.2f}m narrower than vehicle {vehicle_width:.2f}m; "
            "collapsing sampling corridor"
        )
        half_free = 0.0
    return SamplingBounds(left=half_free, right=-half_free, target=0.0)


def get_sampling_width(
    current_lane_id: int,
    target_lane_id: Optional[int],
    vehicle_width: float,
    current_lane_width: float,
    left_lane_width: float = 0.0,
    right_lane_width: float = 0.0,
) -> SamplingBounds:
    """
    Compute lateral sampling bounds relative to the current lane centre.

    Args:
        current_lane_id: Id of the lane the vehicle is in
        target_lane_id: Desired lane id (None = current lane)
        vehicle_width: Vehicle width (meters)
        current_lane_width: Width of the current lane (meters)
        left_lane_width: Width of the lane to the left (0 if none)
        right_lane_width: Width of the lane to the right (0 if none)

    Returns:
        SamplingBounds with left >= right
    """
    stay = _stay_in_lane(current_lane_width, vehicle_width)
    if target_lane_id is None or target_lane_id == current_lane_id:
        return stay

    if target_lane_id == current_lane_id + 1:
        if left_lane_width <= 0.0:
            logger.warning(f"Target lane {target_lane_id} (left) does not exist; staying in lane")
            return stay
        centre = current_lane_width / 2.0 + left_lane_width / 2.0
        return SamplingBounds(left=centre, right=stay.right, target=centre)

    if target_lane_id == current_lane_id - 1:
        if right_lane_width <= 0.0:
            logger.warning(f"Target lane {target_lane_id} (right) does not exist; staying in lane")
            return stay
        centre = -(current_lane_width / 2.0 + right_lane_width / 2.0)
        return SamplingBounds(left=stay.left, right=centre, target=centre)

    logger.warning(
        f"Target lane {target_lane_id} is not adjacent to current lane {current_lane_id}; staying in lane"
    )
    return stay


def adjacent_lane_widths(waypoint: LaneWaypoint, lane_offset: int = 0) -> Tuple[float, float]:
    """
    Widths of the lanes left and right of the vehicle's lane.

    The road edges are measured from the reference waypoint; a lane exists on
    a side if a full lane width fits between the vehicle's lane and that edge.

    Args:
        waypoint: Reference lane waypoint nearest the vehicle
        lane_offset: Vehicle lane id minus reference lane id

    Returns:
        (left_lane_width, right_lane_width), 0.0 where no lane exists
    """
    width = waypoint.lane_width
    if width <= 0.0:
        return 0.0, 0.0
    centre = lane_offset * width
    left_room = waypoint.left_boundary - (centre + width / 2.0)
    right_room = waypoint.right_boundary - (-centre + width / 2.0)
    tolerance = 1e-6
    left = width if left_room >= width - tolerance else 0.0
    right = width if right_room >= width - tolerance else 0.0
    return left, right
