"""
Trajectory concatenation.
Stitches the selected candidate onto the rolling output trajectory while
keeping waypoint spacing within [min_separation, max_separation] and the
buffer size at most max_size.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from data.formats.data_format import CandidateTrajectory, OutputTrajectory, Waypoint
from trajectory.utils import distance, interpolate_waypoint

logger = logging.getLogger(__name__)


@dataclass
class ConcatenatorConfig:
    """Output trajectory spacing and size limits."""
    max_size: int = 60  # waypoints
    min_size: int = 10  # waypoints
    max_separation: float = 2.0  # meters
    min_separation: float = 0.5  # meters
    max_junction_gap: float = 3.0  # meters; larger gaps are discontinuities

    def is_valid(self) -> bool:
        return (
            0.0 < self.min_separation <= self.max_separation / 2.0
            and 0 < self.min_size <= self.max_size
            and self.max_junction_gap > 0.0
        )


def build_concatenator_config(trajectory_cfg: Optional[Dict] = None) -> ConcatenatorConfig:
    """Build concatenator config from the `trajectory` config section."""
    trajectory_cfg = trajectory_cfg or {}
    config = ConcatenatorConfig(
        max_size=int(trajectory_cfg.get("max_size", 60)),
        min_size=int(trajectory_cfg.get("min_size", 10)),
        max_separation=float(trajectory_cfg.get("max_separation", 2.0)),
        min_separation=float(trajectory_cfg.get("min_separation", 0.5)),
        max_junction_gap=float(trajectory_cfg.get("max_junction_gap", 3.0)),
    )
    if not config.is_valid():
        logger.warning(
            f"Invalid trajectory spacing config {config}; "
            "need 0 < min_separation <= max_separation/2 and 0 < min_size <= max_size. Using defaults"
        )
        config = ConcatenatorConfig()
    return config


@dataclass
class ConcatenationResult:
    """Summary of one concatenation."""
    appended: int = 0
    trimmed: int = 0
    interpolated: int = 0
    discontinuity: bool = False
    committed_index: int = 0  # last candidate sample covered by the output
    sufficient: bool = False


def concatenate(
    output: OutputTrajectory,
    candidate: CandidateTrajectory,
    config: ConcatenatorConfig,
    vehicle_index: int = 0,
) -> ConcatenationResult:
    """
    Append `candidate` to `output` in place.

    Args:
        output: Rolling output trajectory (mutated)
        candidate: Selected candidate trajectory
        config: Spacing and size limits
        vehicle_index: Index of the output waypoint nearest the vehicle

    Returns:
        ConcatenationResult
    """
    result = ConcatenationResult()
    vehicle_index = int(min(max(vehicle_index, 0), len(output)))

    if candidate.is_empty():
        result.sufficient = len(output) >= config.min_size
        return result

    had_points = not output.is_empty()
    if had_points:
        start = int(np.searchsorted(candidate.s, output[-1].s + config.min_separation, side="left"))
    else:
        start = 0

    at_junction = had_points
    for i in range(start, len(candidate)):
        if len(output) - vehicle_index >= config.max_size:
            break

        waypoint = candidate.waypoint(i)
        if output.is_empty():
            output.append(waypoint)
            result.appended += 1
            at_junction = False
            continue

        last = output[-1]
        gap = distance(last.x, last.y, waypoint.x, waypoint.y)
        if gap < config.min_separation:
            continue

        if at_junction and gap > config.max_junction_gap:
            logger.warning(
                f"Junction gap {gap:.2f}m exceeds {config.max_junction_gap:.2f}m; not concatenating"
            )
            result.discontinuity = True
            break
        at_junction = False

        if gap > config.max_separation:
            pieces = int(math.ceil(gap / config.max_separation))
            for k in range(1, pieces):
                if len(output) - vehicle_index >= config.max_size:
                    break
                output.append(interpolate_waypoint(last, waypoint, k / pieces))
                result.interpolated += 1
            if len(output) - vehicle_index >= config.max_size:
                break

        output.append(waypoint)
        result.appended += 1

    excess = len(output) - config.max_size
    if excess > 0:
        result.trimmed = output.trim_front(excess)

    if not output.is_empty():
        result.committed_index = max(
            int(np.searchsorted(candidate.s, output[-1].s, side="right")) - 1, 0
        )
    result.sufficient = len(output) >= config.min_size
    return result


def spacing_ok(output: OutputTrajectory, config: ConcatenatorConfig, tolerance: float = 1e-6) -> bool:
    """True if every consecutive waypoint gap lies within the configured separation."""
    gaps = output.separations()
    if len(gaps) == 0:
        return True
    return bool(
        np.all(gaps >= config.min_separation - tolerance)
        and np.all(gaps <= config.max_separation + tolerance)
    )
