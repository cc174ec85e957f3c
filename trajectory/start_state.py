"""
Replan start-state selection.
Decides each cycle whether to regenerate from the vehicle pose or continue
from a point ahead on the committed output trajectory.
"""

from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from typing import Optional, Tuple

from data.formats.data_format import FrenetState, OutputTrajectory, VehicleState
from trajectory.reference_spline import ReferenceSpline

logger = logging.getLogger(__name__)


class PlanningMode(Enum):
    REGENERATE = "regenerate"
    CONTINUE = "continue"


class StartStateSelector:
    """Two-state machine {REGENERATE, CONTINUE}; starts in REGENERATE."""

    def __init__(self, continue_lookahead_index: int = 5, min_planning_speed: float = 1.0,
                 min_remaining_waypoints: int = 10):
        self.continue_lookahead_index = max(int(continue_lookahead_index), 0)
        self.min_planning_speed = max(float(min_planning_speed), 0.0)
        self.min_remaining_waypoints = max(int(min_remaining_waypoints), 1)
        self.mode = PlanningMode.REGENERATE
        self._regenerate_requested = False

    def request_regenerate(self) -> None:
        """External request: the next selection regenerates."""
        self._regenerate_requested = True

    def on_success(self) -> None:
        self.mode = PlanningMode.CONTINUE

    def on_failure(self) -> None:
        self.mode = PlanningMode.REGENERATE

    def _must_regenerate(self, output: OutputTrajectory, vehicle_index: int) -> Optional[str]:
        if self._regenerate_requested:
            return "regenerate requested"
        if self.mode == PlanningMode.REGENERATE:
            return "previous cycle failed or first cycle"
        if output.is_empty():
            return "no output trajectory"
        if len(output) - vehicle_index < self.min_remaining_waypoints:
            return "output trajectory consumed"
        return None

    def select(self, vehicle_state: VehicleState, reference: ReferenceSpline,
               output: OutputTrajectory, vehicle_index: int) -> Tuple[FrenetState, PlanningMode]:
        """
        Compute the sampling start state for this cycle.

        Args:
            vehicle_state: Current baselink state
            reference: Reference spline
            output: Committed output trajectory
            vehicle_index: Index of the output waypoint nearest the vehicle

        Returns:
            (start_state, mode)
        """
        reason = self._must_regenerate(output, vehicle_index)
        if reason is not None:
            logger.info(f"Regenerating trajectory: {reason}")
            self.mode = PlanningMode.REGENERATE
            self._regenerate_requested = False
            start_state = reference.frenet_state(vehicle_state)
        else:
            index = min(max(vehicle_index, 0) + self.continue_lookahead_index, len(output) - 1)
            start_state = output[index].frenet_state()
            logger.debug(f"Continuing from output waypoint {index} (s={start_state.s:.2f})")

        if start_state.s_d < self.min_planning_speed:
            start_state = dataclasses.replace(start_state, s_d=self.min_planning_speed)
        return start_state, self.mode
