from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from data.formats.data_format import Waypoint


def normalize_angle(angle: float) -> float:
    """Wrap angle to [-pi, pi)."""
    return (angle + math.pi) % (2.0 * math.pi) - math.pi


def distance(x0: float, y0: float, x1: float, y1: float) -> float:
    return math.hypot(x1 - x0, y1 - y0)


def interpolate_waypoint(start: Waypoint, end: Waypoint, ratio: float) -> Waypoint:
    """Linearly interpolate between two waypoints (yaw along the short arc)."""
    ratio = min(max(ratio, 0.0), 1.0)

    def lerp(a: float, b: float) -> float:
        return a + (b - a) * ratio

    yaw = normalize_angle(start.yaw + normalize_angle(end.yaw - start.yaw) * ratio)
    return Waypoint(
        x=lerp(start.x, end.x),
        y=lerp(start.y, end.y),
        yaw=yaw,
        v=lerp(start.v, end.v),
        a=lerp(start.a, end.a),
        curvature=lerp(start.curvature, end.curvature),
        s=lerp(start.s, end.s),
        s_d=lerp(start.s_d, end.s_d),
        s_dd=lerp(start.s_dd, end.s_dd),
        d=lerp(start.d, end.d),
        d_d=lerp(start.d_d, end.d_d),
        d_dd=lerp(start.d_dd, end.d_dd),
    )


def nearest_segment(
    xs: np.ndarray,
    ys: np.ndarray,
    x: float,
    y: float,
    start_index: int = 0,
) -> Optional[Tuple[int, float, float, float]]:
    """
    Find the polyline segment closest to (x, y), searching from start_index.

    Returns:
        (segment_index, ratio, distance, signed_offset) or None if fewer than
        two points are available. signed_offset is positive when the point lies
        to the left of the segment direction.
    """
    n = len(xs)
    if n < 2:
        return None
    start_index = int(min(max(start_index, 0), n - 2))

    x0 = xs[start_index:-1]
    y0 = ys[start_index:-1]
    dx = xs[start_index + 1:] - x0
    dy = ys[start_index + 1:] - y0
    seg_len_sq = dx * dx + dy * dy
    safe_len_sq = np.where(seg_len_sq > 1e-12, seg_len_sq, 1.0)
    ratio = ((x - x0) * dx + (y - y0) * dy) / safe_len_sq
    ratio = np.where(seg_len_sq > 1e-12, np.clip(ratio, 0.0, 1.0), 0.0)
    px = x0 + ratio * dx
    py = y0 + ratio * dy
    dist = np.hypot(x - px, y - py)

    best = int(np.argmin(dist))
    cross = dx[best] * (y - y0[best]) - dy[best] * (x - x0[best])
    seg_len = math.sqrt(seg_len_sq[best]) if seg_len_sq[best] > 1e-12 else 1.0
    signed_offset = float(cross / seg_len)
    return start_index + best, float(ratio[best]), float(dist[best]), signed_offset


def polyline_yaw(xs: Sequence[float], ys: Sequence[float]) -> np.ndarray:
    """Heading of each point from forward differences (last point repeats)."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if len(xs) < 2:
        return np.zeros(len(xs), dtype=float)
    yaw = np.arctan2(np.diff(ys), np.diff(xs))
    return np.append(yaw, yaw[-1])


def polyline_curvature(xs: Sequence[float], ys: Sequence[float]) -> np.ndarray:
    """Signed curvature of a polyline using arclength gradients."""
    x_array = np.asarray(xs, dtype=float)
    y_array = np.asarray(ys, dtype=float)
    if len(x_array) < 3:
        return np.zeros(len(x_array), dtype=float)

    steps = np.maximum(np.hypot(np.diff(x_array), np.diff(y_array)), 1e-4)
    s_axis = np.concatenate(([0.0], np.cumsum(steps)))

    dx_ds = np.gradient(x_array, s_axis, edge_order=2)
    dy_ds = np.gradient(y_array, s_axis, edge_order=2)
    d2x_ds2 = np.gradient(dx_ds, s_axis, edge_order=2)
    d2y_ds2 = np.gradient(dy_ds, s_axis, edge_order=2)

    denom = (dx_ds ** 2 + dy_ds ** 2) ** 1.5
    return np.divide(
        dx_ds * d2y_ds2 - dy_ds * d2x_ds2,
        denom,
        out=np.zeros_like(dx_ds),
        where=denom > 1e-6,
    )
