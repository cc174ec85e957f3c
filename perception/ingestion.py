"""
Perception ingestion.
Absorbs the lane, odometry and obstacle streams into immutable snapshots.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from data.formats.data_format import Lane, LaneWaypoint, Obstacle, ObstacleSet, VehicleState
from trajectory.utils import normalize_angle

logger = logging.getLogger(__name__)


class TransformError(Exception):
    """Raised when no transform is known between two frames."""


@dataclass(frozen=True)
class FrameTransform:
    """2D rigid transform taking points from a source frame into a target frame."""
    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0

    def apply(self, x: float, y: float, yaw: float = 0.0) -> Tuple[float, float, float]:
        cos_h = math.cos(self.yaw)
        sin_h = math.sin(self.yaw)
        return (
            self.x + x * cos_h - y * sin_h,
            self.y + x * sin_h + y * cos_h,
            normalize_angle(yaw + self.yaw),
        )


class TransformBuffer:
    """Known transforms between frames, keyed by (target, source)."""

    def __init__(self):
        self._transforms: Dict[Tuple[str, str], FrameTransform] = {}
        self._lock = threading.Lock()

    def set_transform(self, target_frame: str, source_frame: str, transform: FrameTransform) -> None:
        with self._lock:
            self._transforms[(target_frame, source_frame)] = transform

    def lookup(self, target_frame: str, source_frame: str) -> FrameTransform:
        if target_frame == source_frame:
            return FrameTransform()
        with self._lock:
            transform = self._transforms.get((target_frame, source_frame))
        if transform is None:
            raise TransformError(f"No transform from '{source_frame}' to '{target_frame}'")
        return transform


@dataclass(frozen=True)
class PerceptionSnapshot:
    """Latest known value of every input stream."""
    lane: Optional[Lane] = None
    lane_version: int = 0
    obstacles: ObstacleSet = dataclasses.field(default_factory=ObstacleSet)
    vehicle_state: Optional[VehicleState] = None
    front_axle_state: Optional[VehicleState] = None
    lane_stamp: Optional[float] = None
    odom_stamp: Optional[float] = None
    obstacles_stamp: Optional[float] = None

    def stale_inputs(self, now: float, timeout: float) -> List[str]:
        """Names of streams whose last update is older than timeout."""
        if timeout <= 0.0:
            return []
        stale = []
        for name, stamp in (("odometry", self.odom_stamp), ("obstacles", self.obstacles_stamp)):
            if stamp is not None and now - stamp > timeout:
                stale.append(name)
        return stale


def compute_front_axle_state(state: VehicleState, offset: float) -> VehicleState:
    """Move the baselink state `offset` meters forward along its heading."""
    return dataclasses.replace(
        state,
        x=state.x + offset * math.cos(state.yaw),
        y=state.y + offset * math.sin(state.yaw),
    )


class PerceptionIngestion:
    """
    Stores the latest lane, odometry and obstacles.

    Every update builds a new PerceptionSnapshot and swaps it in under a
    lock, so a reader holding a snapshot never sees a partial update.
    """

    def __init__(self, planning_frame: str = "map", front_axle_offset: float = 2.8,
                 transforms: Optional[TransformBuffer] = None):
        self.planning_frame = planning_frame
        self.front_axle_offset = front_axle_offset
        self.transforms = transforms if transforms is not None else TransformBuffer()
        self._snapshot = PerceptionSnapshot(obstacles=ObstacleSet(frame_id=planning_frame))
        self._lock = threading.Lock()

    def snapshot(self) -> PerceptionSnapshot:
        with self._lock:
            return self._snapshot

    def _swap(self, **changes) -> None:
        with self._lock:
            self._snapshot = dataclasses.replace(self._snapshot, **changes)

    def update_lane(self, waypoints: Sequence[LaneWaypoint], timestamp: float) -> bool:
        """Replace the reference lane. Returns False if the lane was rejected."""
        lane = Lane(tuple(waypoints))
        distinct = {(round(wp.x, 6), round(wp.y, 6)) for wp in lane.waypoints}
        if len(distinct) < 2:
            logger.warning(f"Rejected lane update with {len(distinct)} distinct waypoint(s); keeping previous lane")
            return False
        with self._lock:
            self._snapshot = dataclasses.replace(
                self._snapshot,
                lane=lane,
                lane_version=self._snapshot.lane_version + 1,
                lane_stamp=float(timestamp),
            )
        logger.debug(f"Lane updated: {len(lane)} waypoints")
        return True

    def update_odometry(self, x: float, y: float, yaw: float, vx: float, vy: float = 0.0,
                        yaw_rate: float = 0.0, timestamp: float = 0.0) -> VehicleState:
        """Replace the vehicle state from pose and body velocity."""
        speed = math.hypot(vx, vy)
        curvature = yaw_rate / speed if speed > 1e-3 else 0.0
        state = VehicleState(
            x=float(x),
            y=float(y),
            yaw=normalize_angle(float(yaw)),
            speed=float(speed),
            yaw_rate=float(yaw_rate),
            curvature=float(curvature),
            timestamp=float(timestamp),
        )
        self._swap(
            vehicle_state=state,
            front_axle_state=compute_front_axle_state(state, self.front_axle_offset),
            odom_stamp=float(timestamp),
        )
        return state

    def update_obstacles(self, obstacles: Iterable[Obstacle], frame_id: str, timestamp: float) -> bool:
        """
        Replace the obstacle set, transforming into the planning frame.

        Returns:
            False if the transform lookup failed and the update was dropped
        """
        try:
            transform = self.transforms.lookup(self.planning_frame, frame_id)
        except TransformError as e:
            logger.warning(f"Dropping obstacle update: {e}")
            return False

        transformed = []
        for obstacle in obstacles:
            x, y, yaw = transform.apply(obstacle.x, obstacle.y, obstacle.yaw)
            transformed.append(dataclasses.replace(obstacle, x=x, y=y, yaw=yaw))

        obstacle_set = ObstacleSet(
            obstacles=tuple(transformed),
            frame_id=self.planning_frame,
            timestamp=float(timestamp),
        )
        self._swap(obstacles=obstacle_set, obstacles_stamp=float(timestamp))
        return True
