"""
Fail-safe stop path.
"""

import logging

from data.formats.data_format import ControlCommand, OutputTrajectory
from trajectory.start_state import StartStateSelector
from control.pid_controller import PIDState

logger = logging.getLogger(__name__)


class FailSafe:
    """Drops the committed trajectory and commands a straight-wheel stop."""

    def __init__(self, stop_acceleration: float = -1.0):
        if stop_acceleration > 0.0:
            logger.warning(f"Positive fail-safe acceleration {stop_acceleration}; using {-stop_acceleration}")
            stop_acceleration = -stop_acceleration
        self.stop_acceleration = stop_acceleration
        self.engagements = 0

    def stop_command(self, timestamp: float) -> ControlCommand:
        return ControlCommand(
            timestamp=timestamp,
            acceleration=self.stop_acceleration,
            steering_angle=0.0,
            is_fail_safe=True,
        )

    def engage(self, output: OutputTrajectory, selector: StartStateSelector,
               timestamp: float, reason: str = ""):
        """
        Enter the fail-safe path.

        Returns:
            (stop command, reset PID state)
        """
        self.engagements += 1
        logger.warning(f"Fail-safe stop engaged: {reason}" if reason else "Fail-safe stop engaged")
        output.clear()
        selector.on_failure()
        return self.stop_command(timestamp), PIDState()
