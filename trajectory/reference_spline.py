"""
Reference spline over the lane centreline.
Provides Frenet <-> world conversions for the planner and controllers.
"""

from __future__ import annotations

import logging
from typing import Tuple, Union

import numpy as np
from scipy.interpolate import CubicSpline
from scipy.spatial import cKDTree

from data.formats.data_format import FrenetState, Lane, VehicleState
from trajectory.utils import normalize_angle

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]


class ReferenceSpline:
    """
    Cubic spline x(s), y(s) fitted over lane waypoints.

    The spline is resampled at a uniform arclength resolution; the resampled
    points back a KD-tree used for nearest-point projection.
    """

    def __init__(self, lane: Lane, resolution: float = 0.5):
        """
        Build reference spline.

        Args:
            lane: Lane whose waypoints define the centreline
            resolution: Resampling spacing along the spline (meters)

        Raises:
            ValueError: If the lane has fewer than two distinct waypoints
        """
        xs = lane.xs
        ys = lane.ys
        widths = np.array([wp.lane_width for wp in lane.waypoints], dtype=float)
        if len(xs) > 1:
            keep = np.concatenate(([True], np.hypot(np.diff(xs), np.diff(ys)) > 1e-6))
            xs = xs[keep]
            ys = ys[keep]
            widths = widths[keep]
        if len(xs) < 2:
            raise ValueError("Reference lane needs at least two distinct waypoints")

        waypoint_s = np.concatenate(([0.0], np.cumsum(np.hypot(np.diff(xs), np.diff(ys)))))
        self.length = float(waypoint_s[-1])
        self.resolution = max(float(resolution), 0.05)

        bc_type = "natural" if len(xs) > 2 else "not-a-knot"
        self._spline_x = CubicSpline(waypoint_s, xs, bc_type=bc_type)
        self._spline_y = CubicSpline(waypoint_s, ys, bc_type=bc_type)

        sample_count = int(np.ceil(self.length / self.resolution)) + 1
        self.s = np.linspace(0.0, self.length, max(sample_count, 2))
        self.x = self._spline_x(self.s)
        self.y = self._spline_y(self.s)
        self.yaw = self.heading(self.s)
        self.kappa = self.curvature(self.s)
        self._kd_tree = cKDTree(np.column_stack((self.x, self.y)))

        self._waypoint_s = waypoint_s
        self._waypoint_widths = widths

        first = lane.waypoints[0]
        self.lane_id = int(first.lane_id)
        self.lane_width = float(first.lane_width)  # at s = 0; use lane_width_at() elsewhere

    def lane_width_at(self, s: float) -> float:
        """Lane width of the last waypoint at or before arclength s."""
        index = int(np.searchsorted(self._waypoint_s, float(self._clip_s(s)), side="right")) - 1
        return float(self._waypoint_widths[min(max(index, 0), len(self._waypoint_widths) - 1)])

    def _clip_s(self, s: ArrayLike) -> ArrayLike:
        return np.clip(s, 0.0, self.length)

    def heading(self, s: ArrayLike) -> ArrayLike:
        s = self._clip_s(s)
        return np.arctan2(self._spline_y(s, 1), self._spline_x(s, 1))

    def curvature(self, s: ArrayLike) -> ArrayLike:
        s = self._clip_s(s)
        dx = self._spline_x(s, 1)
        dy = self._spline_y(s, 1)
        ddx = self._spline_x(s, 2)
        ddy = self._spline_y(s, 2)
        denom = np.power(dx * dx + dy * dy, 1.5)
        return np.divide(
            dx * ddy - dy * ddx,
            denom,
            out=np.zeros_like(np.asarray(denom, dtype=float)),
            where=np.asarray(denom) > 1e-9,
        )

    def to_world(self, s: ArrayLike, d: ArrayLike) -> Tuple[ArrayLike, ArrayLike, ArrayLike]:
        """Convert Frenet (s, d) to world (x, y, centreline heading)."""
        s_clipped = self._clip_s(s)
        heading = self.heading(s_clipped)
        x = self._spline_x(s_clipped) - np.asarray(d) * np.sin(heading)
        y = self._spline_y(s_clipped) + np.asarray(d) * np.cos(heading)
        return x, y, heading

    def project(self, x: float, y: float) -> Tuple[float, float]:
        """Project a world point onto the spline, returning (s, d)."""
        _, idx = self._kd_tree.query([x, y])
        idx = int(idx)
        if idx == len(self.s) - 1:
            idx -= 1
        elif idx > 0:
            # Pick the neighbouring segment the point actually projects onto
            prev_dx = self.x[idx] - self.x[idx - 1]
            prev_dy = self.y[idx] - self.y[idx - 1]
            if (x - self.x[idx]) * prev_dx + (y - self.y[idx]) * prev_dy < 0.0:
                idx -= 1

        x0, y0 = self.x[idx], self.y[idx]
        seg_dx = self.x[idx + 1] - x0
        seg_dy = self.y[idx + 1] - y0
        seg_len = float(np.hypot(seg_dx, seg_dy))
        if seg_len < 1e-9:
            return float(self.s[idx]), float(np.hypot(x - x0, y - y0))

        along = ((x - x0) * seg_dx + (y - y0) * seg_dy) / seg_len
        cross = (seg_dx * (y - y0) - seg_dy * (x - x0)) / seg_len
        # Extrapolate linearly past either end of the spline
        if idx > 0:
            along = max(along, 0.0)
        if idx < len(self.s) - 2:
            along = min(along, seg_len)
        s = float(self.s[idx] + along)
        return s, float(cross)

    def frenet_state(self, state: VehicleState) -> FrenetState:
        """Frenet state of the vehicle pose with measured velocities."""
        s, d = self.project(state.x, state.y)
        delta_theta = normalize_angle(state.yaw - float(self.heading(s)))
        return FrenetState(
            s=s,
            s_d=state.speed * float(np.cos(delta_theta)),
            s_dd=0.0,
            d=d,
            d_d=state.speed * float(np.sin(delta_theta)),
            d_dd=0.0,
        )

    def sample_path(self) -> np.ndarray:
        """Resampled centreline as [N, 2]."""
        return np.column_stack((self.x, self.y))
