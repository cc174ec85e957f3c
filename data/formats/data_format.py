"""
Data format definitions for the local planner.
Vehicle/Frenet states, lane geometry, trajectories, obstacles and cycle outputs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import numpy as np


class CycleStatus(Enum):
    """Outcome of one planning cycle."""
    OK = "ok"
    INPUT_MISSING = "input_missing"
    SELECTION_FAILED = "selection_failed"
    CONTROL_FAULT = "control_fault"


@dataclass(frozen=True)
class VehicleState:
    """Vehicle state captured for one cycle."""
    x: float
    y: float
    yaw: float  # radians
    speed: float  # m/s
    yaw_rate: float = 0.0  # rad/s
    curvature: float = 0.0  # 1/m
    timestamp: float = 0.0


@dataclass(frozen=True)
class FrenetState:
    """Frenet state; derivatives are with respect to time."""
    s: float
    s_d: float
    s_dd: float
    d: float
    d_d: float
    d_dd: float


@dataclass(frozen=True)
class LaneWaypoint:
    """Single waypoint of the reference lane."""
    x: float
    y: float
    yaw: float = 0.0  # radians
    curvature: float = 0.0  # 1/m
    lane_id: int = 0
    lane_width: float = 3.5  # meters
    left_boundary: float = 1.75  # distance to left road edge (meters)
    right_boundary: float = 1.75  # distance to right road edge (meters)


@dataclass(frozen=True)
class Lane:
    """Reference lane. Replaced wholesale, never mutated."""
    waypoints: Tuple[LaneWaypoint, ...] = ()

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def xs(self) -> np.ndarray:
        return np.array([wp.x for wp in self.waypoints], dtype=float)

    @property
    def ys(self) -> np.ndarray:
        return np.array([wp.y for wp in self.waypoints], dtype=float)

    def nearest_index(self, x: float, y: float) -> int:
        if not self.waypoints:
            return 0
        return int(np.argmin(np.hypot(self.xs - x, self.ys - y)))

    def local_window(self, index: int, behind: int, ahead: int) -> "Lane":
        """Return the waypoints from `behind` before to `ahead` after index."""
        start = max(index - behind, 0)
        end = min(index + ahead + 1, len(self.waypoints))
        return Lane(self.waypoints[start:end])


@dataclass(frozen=True)
class Obstacle:
    """Detected obstacle (pose + bounding box)."""
    x: float
    y: float
    yaw: float = 0.0
    length: float = 4.0  # meters
    width: float = 2.0  # meters

    @property
    def radius(self) -> float:
        return 0.5 * float(np.hypot(self.length, self.width))


@dataclass(frozen=True)
class ObstacleSet:
    """Obstacle list in a single reference frame."""
    obstacles: Tuple[Obstacle, ...] = ()
    frame_id: str = "map"
    timestamp: float = 0.0

    def __len__(self) -> int:
        return len(self.obstacles)


@dataclass
class CandidateTrajectory:
    """One sampled trajectory proposed by the candidate planner."""
    t: np.ndarray
    x: np.ndarray
    y: np.ndarray
    yaw: np.ndarray
    v: np.ndarray
    a: np.ndarray
    curvature: np.ndarray
    s: np.ndarray
    s_d: np.ndarray
    s_dd: np.ndarray
    d: np.ndarray
    d_d: np.ndarray
    d_dd: np.ndarray
    lane_id: int = 0
    cost: float = 0.0

    def __len__(self) -> int:
        return len(self.x)

    def is_empty(self) -> bool:
        return len(self.x) == 0

    def frenet_state(self, index: int) -> FrenetState:
        return FrenetState(
            s=float(self.s[index]),
            s_d=float(self.s_d[index]),
            s_dd=float(self.s_dd[index]),
            d=float(self.d[index]),
            d_d=float(self.d_d[index]),
            d_dd=float(self.d_dd[index]),
        )

    def waypoint(self, index: int) -> "Waypoint":
        return Waypoint(
            x=float(self.x[index]),
            y=float(self.y[index]),
            yaw=float(self.yaw[index]),
            v=float(self.v[index]),
            a=float(self.a[index]),
            curvature=float(self.curvature[index]),
            s=float(self.s[index]),
            s_d=float(self.s_d[index]),
            s_dd=float(self.s_dd[index]),
            d=float(self.d[index]),
            d_d=float(self.d_d[index]),
            d_dd=float(self.d_dd[index]),
        )


@dataclass(frozen=True)
class Waypoint:
    """Waypoint of the committed output trajectory."""
    x: float
    y: float
    yaw: float
    v: float  # planned velocity (m/s)
    a: float = 0.0  # planned acceleration (m/s^2)
    curvature: float = 0.0
    s: float = 0.0
    s_d: float = 0.0
    s_dd: float = 0.0
    d: float = 0.0
    d_d: float = 0.0
    d_dd: float = 0.0

    def frenet_state(self) -> FrenetState:
        return FrenetState(s=self.s, s_d=self.s_d, s_dd=self.s_dd, d=self.d, d_d=self.d_d, d_dd=self.d_dd)


class OutputTrajectory:
    """Rolling output trajectory: appended at the back, trimmed at the front."""

    def __init__(self, points: Optional[Sequence[Waypoint]] = None):
        self.points: List[Waypoint] = list(points) if points else []

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, index):
        return self.points[index]

    def __iter__(self):
        return iter(self.points)

    def is_empty(self) -> bool:
        return not self.points

    def append(self, point: Waypoint) -> None:
        self.points.append(point)

    def trim_front(self, count: int) -> int:
        count = max(0, min(count, len(self.points)))
        if count:
            del self.points[:count]
        return count

    def clear(self) -> None:
        self.points.clear()

    def as_array(self) -> np.ndarray:
        """Return [N, 2] array of (x, y)."""
        if not self.points:
            return np.zeros((0, 2), dtype=float)
        return np.array([[p.x, p.y] for p in self.points], dtype=float)

    def separations(self) -> np.ndarray:
        xy = self.as_array()
        if len(xy) < 2:
            return np.zeros(0, dtype=float)
        return np.hypot(np.diff(xy[:, 0]), np.diff(xy[:, 1]))

    def nearest_index(self, x: float, y: float) -> int:
        xy = self.as_array()
        if len(xy) == 0:
            return 0
        return int(np.argmin(np.hypot(xy[:, 0] - x, xy[:, 1] - y)))

    def snapshot(self) -> Tuple[Waypoint, ...]:
        return tuple(self.points)


@dataclass
class ControlCommand:
    """Control command data."""
    timestamp: float
    acceleration: float  # m/s^2
    steering_angle: float  # radians
    # Diagnostics
    cross_track_error: Optional[float] = None
    heading_error: Optional[float] = None
    target_speed: Optional[float] = None
    speed_error: Optional[float] = None
    pid_integral: Optional[float] = None
    is_fail_safe: bool = False


@dataclass(frozen=True)
class SamplingCorridor:
    """Sampling bounds and their world-frame boundary polylines."""
    left: float
    right: float
    target: float
    left_line: np.ndarray  # [N, 2]
    right_line: np.ndarray  # [N, 2]


@dataclass
class CycleOutput:
    """Everything emitted by one planning cycle."""
    timestamp: float
    cycle_id: int
    status: CycleStatus
    mode: str
    command: ControlCommand
    reference_path: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    local_lane: Lane = field(default_factory=Lane)
    output_trajectory: Tuple[Waypoint, ...] = ()
    next_trajectory: Optional[CandidateTrajectory] = None
    sampling_corridor: Optional[SamplingCorridor] = None
    candidates: Tuple[CandidateTrajectory, ...] = ()
    obstacles: ObstacleSet = field(default_factory=ObstacleSet)
    planning_time: float = 0.0
    lane_change: bool = False
