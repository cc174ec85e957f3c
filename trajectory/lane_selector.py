"""
Lane/trajectory selection with lane-change hysteresis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from data.formats.data_format import CandidateTrajectory

logger = logging.getLogger(__name__)


@dataclass
class SelectionResult:
    """Outcome of trajectory selection."""
    trajectory: Optional[CandidateTrajectory]
    lane_change: bool = False
    keep_cost: Optional[float] = None
    change_cost: Optional[float] = None

    @property
    def failed(self) -> bool:
        return self.trajectory is None


def _best(candidates: Sequence[CandidateTrajectory]) -> Optional[CandidateTrajectory]:
    best = None
    for candidate in candidates:
        if best is None or candidate.cost < best.cost:
            best = candidate
    return best


def select_trajectory(
    candidates: Sequence[CandidateTrajectory],
    current_lane_id: int,
    lane_change_margin: float,
) -> SelectionResult:
    """
    Pick the trajectory to follow.

    A lane change is only taken when the best other-lane candidate beats the
    best same-lane candidate by more than `lane_change_margin`.

    Args:
        candidates: Candidate trajectories (any order)
        current_lane_id: Lane the vehicle currently occupies
        lane_change_margin: Cost advantage required to change lanes

    Returns:
        SelectionResult; trajectory is None if nothing is selectable
    """
    if lane_change_margin < 0.0:
        logger.warning(f"Negative lane change margin {lane_change_margin}; using 0")
        lane_change_margin = 0.0

    usable = [c for c in candidates if not c.is_empty()]
    keep = _best([c for c in usable if c.lane_id == current_lane_id])
    change = _best([c for c in usable if c.lane_id != current_lane_id])

    keep_cost = keep.cost if keep is not None else None
    change_cost = change.cost if change is not None else None

    if keep is not None and change is not None:
        if change.cost < keep.cost - lane_change_margin:
            logger.info(
                f"Lane change to {change.lane_id}: cost {change.cost:.3f} < {keep.cost:.3f} - {lane_change_margin:.3f}"
            )
            return SelectionResult(change, True, keep_cost, change_cost)
        return SelectionResult(keep, False, keep_cost, change_cost)
    if keep is not None:
        return SelectionResult(keep, False, keep_cost, change_cost)
    if change is not None:
        return SelectionResult(change, True, keep_cost, change_cost)
    return SelectionResult(None, False, keep_cost, change_cost)
