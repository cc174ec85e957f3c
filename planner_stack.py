"""
Local planner stack.
Connects ingestion, replanning, selection, concatenation and control into one cycle.
"""

import copy
import logging
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from control.fail_safe import FailSafe
from control.pid_controller import PIDState, build_longitudinal_controller
from control.stanley_controller import build_stanley_controller
from data.formats.data_format import (
    ControlCommand, CycleOutput, CycleStatus, Lane, OutputTrajectory, SamplingCorridor
)
from perception.ingestion import PerceptionIngestion, PerceptionSnapshot
from trajectory.concatenator import build_concatenator_config, concatenate
from trajectory.frenet_sampler import build_lattice_planner
from trajectory.lane_selector import select_trajectory
from trajectory.reference_spline import ReferenceSpline
from trajectory.sampling_width import SamplingBounds, adjacent_lane_widths, get_sampling_width
from trajectory.start_state import PlanningMode, StartStateSelector

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "planner_config.yaml"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

CycleListener = Callable[[CycleOutput], None]


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> Path:
    """Stream + file logging for the planner stack. Returns the log file path."""
    if log_dir is None:
        log_dir = Path(__file__).parent / 'tmp' / 'logs'
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'planner_stack.log'

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(str(log_file))
        ]
    )
    return log_file


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def deep_merge(base: dict, updates: dict) -> dict:
    """Return a copy of `base` with `updates` merged in recursively."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class PlanningConfig:
    """Cycle-level tunables."""
    vehicle_width: float = 1.9  # m
    front_axle_offset: float = 2.8  # m, baselink to front axle
    lane_change_margin: float = 1.0  # cost units
    target_lane_id: Optional[int] = None  # None = stay in current lane
    continue_lookahead_index: int = 5
    min_planning_speed: float = 1.0  # m/s
    cycle_deadline: float = 0.1  # s
    stale_input_timeout: float = 0.5  # s
    local_lane_behind_m: float = 10.0
    local_lane_ahead_m: float = 80.0
    reference_resolution: float = 0.5  # m
    default_dt: float = 0.1  # s, used on the first cycle
    planning_frame: str = "map"
    corridor_points: int = 40


def build_planning_config(config: dict) -> PlanningConfig:
    """Build cycle-level config from the `vehicle` and `planning` sections."""
    vehicle_cfg = config.get('vehicle', {}) or {}
    planning_cfg = config.get('planning', {}) or {}
    defaults = PlanningConfig()

    target_lane_id = planning_cfg.get('target_lane_id', defaults.target_lane_id)
    planning = PlanningConfig(
        vehicle_width=float(vehicle_cfg.get('width', defaults.vehicle_width)),
        front_axle_offset=float(vehicle_cfg.get('wheelbase', defaults.front_axle_offset)),
        lane_change_margin=float(planning_cfg.get('lane_change_margin', defaults.lane_change_margin)),
        target_lane_id=int(target_lane_id) if target_lane_id is not None else None,
        continue_lookahead_index=int(planning_cfg.get('continue_lookahead_index', defaults.continue_lookahead_index)),
        min_planning_speed=float(planning_cfg.get('min_planning_speed', defaults.min_planning_speed)),
        cycle_deadline=float(planning_cfg.get('cycle_deadline', defaults.cycle_deadline)),
        stale_input_timeout=float(planning_cfg.get('stale_input_timeout', defaults.stale_input_timeout)),
        local_lane_behind_m=float(planning_cfg.get('local_lane_behind_m', defaults.local_lane_behind_m)),
        local_lane_ahead_m=float(planning_cfg.get('local_lane_ahead_m', defaults.local_lane_ahead_m)),
        reference_resolution=float(planning_cfg.get('reference_resolution', defaults.reference_resolution)),
        default_dt=float(planning_cfg.get('default_dt', defaults.default_dt)),
        planning_frame=str(planning_cfg.get('planning_frame', defaults.planning_frame)),
        corridor_points=int(planning_cfg.get('corridor_points', defaults.corridor_points)),
    )

    if planning.vehicle_width <= 0.0:
        logger.warning(f"Invalid vehicle width {planning.vehicle_width}; using {defaults.vehicle_width}")
        planning.vehicle_width = defaults.vehicle_width
    if planning.lane_change_margin < 0.0:
        logger.warning(f"Negative lane change margin {planning.lane_change_margin}; using 0")
        planning.lane_change_margin = 0.0
    if planning.cycle_deadline <= 0.0:
        logger.warning(f"Invalid cycle deadline {planning.cycle_deadline}; using {defaults.cycle_deadline}")
        planning.cycle_deadline = defaults.cycle_deadline
    if planning.default_dt <= 0.0:
        planning.default_dt = defaults.default_dt
    return planning


class PlannerStack:
    """
    Local motion planner: decision and control loop.

    Inputs arrive through `update_lane`, `update_odometry` and
    `update_obstacles` (any thread); `tick()` runs one planning cycle on the
    latest snapshot and emits a CycleOutput to every listener.
    """

    def __init__(self, config: Optional[dict] = None, config_path: Optional[str] = None,
                 candidate_planner=None):
        """
        Initialize planner stack.

        Args:
            config: Configuration dict (loaded from config_path if None)
            config_path: YAML config path (default: config/planner_config.yaml)
            candidate_planner: Object with a `plan(start_state, reference, bounds, obstacles)`
                method (default: LatticeCandidatePlanner built from config)
        """
        self.config = config if config is not None else load_config(config_path)
        self._custom_planner = candidate_planner

        self.output = OutputTrajectory()
        self.pid_state = PIDState()
        self.selector: Optional[StartStateSelector] = None
        self.ingestion: Optional[PerceptionIngestion] = None
        self._apply_config(self.config)

        self.cycle_id = 0
        self.skipped_cycles = 0
        self.last_output: Optional[CycleOutput] = None

        self._cycle_lock = threading.Lock()
        self._config_lock = threading.Lock()
        self._pending_updates: List[dict] = []
        self._listeners: List[CycleListener] = []
        self._reference: Optional[ReferenceSpline] = None
        self._reference_version = -1
        self._last_cycle_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def _apply_config(self, config: dict):
        """(Re)build components from config, keeping runtime state."""
        vehicle_cfg = config.get('vehicle', {}) or {}
        control_cfg = config.get('control', {}) or {}
        fail_safe_cfg = config.get('fail_safe', {}) or {}

        self.planning = build_planning_config(config)
        self.concat_config = build_concatenator_config(config.get('trajectory', {}))
        self.stanley = build_stanley_controller(control_cfg.get('lateral', {}), vehicle_cfg)
        self.longitudinal = build_longitudinal_controller(control_cfg.get('longitudinal', {}))
        self.fail_safe = FailSafe(stop_acceleration=float(fail_safe_cfg.get('stop_acceleration', -1.0)))
        if self._custom_planner is not None:
            self.candidate_planner = self._custom_planner
        else:
            self.candidate_planner = build_lattice_planner(config.get('candidate_planner', {}), vehicle_cfg)

        if self.selector is None:
            self.selector = StartStateSelector(
                continue_lookahead_index=self.planning.continue_lookahead_index,
                min_planning_speed=self.planning.min_planning_speed,
                min_remaining_waypoints=self.concat_config.min_size,
            )
        else:
            self.selector.continue_lookahead_index = max(self.planning.continue_lookahead_index, 0)
            self.selector.min_planning_speed = max(self.planning.min_planning_speed, 0.0)
            self.selector.min_remaining_waypoints = self.concat_config.min_size

        if self.ingestion is None:
            self.ingestion = PerceptionIngestion(
                planning_frame=self.planning.planning_frame,
                front_axle_offset=self.planning.front_axle_offset,
            )
        else:
            self.ingestion.front_axle_offset = self.planning.front_axle_offset

    def reconfigure(self, updates: dict):
        """Queue a partial config update; applied at the start of the next cycle."""
        with self._config_lock:
            self._pending_updates.append(copy.deepcopy(updates))
        logger.info(f"Reconfiguration queued: {sorted(updates.keys())}")

    def _apply_pending_config(self):
        with self._config_lock:
            updates = self._pending_updates
            self._pending_updates = []
        if not updates:
            return
        merged = self.config
        for update in updates:
            merged = deep_merge(merged, update)
        self.config = merged
        self._apply_config(merged)
        logger.info("Reconfiguration applied")

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def update_lane(self, waypoints, timestamp: float) -> bool:
        return self.ingestion.update_lane(waypoints, timestamp)

    def update_odometry(self, x: float, y: float, yaw: float, vx: float, vy: float = 0.0,
                        yaw_rate: float = 0.0, timestamp: float = 0.0):
        return self.ingestion.update_odometry(x, y, yaw, vx, vy, yaw_rate, timestamp)

    def update_obstacles(self, obstacles, frame_id: str, timestamp: float) -> bool:
        return self.ingestion.update_obstacles(obstacles, frame_id, timestamp)

    def add_listener(self, listener: CycleListener):
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def tick(self, timestamp: Optional[float] = None) -> Optional[CycleOutput]:
        """
        Run one planning cycle.

        Returns:
            CycleOutput, or None if a cycle was already running and this
            trigger was dropped
        """
        if not self._cycle_lock.acquire(blocking=False):
            self.skipped_cycles += 1
            logger.warning(f"Planning cycle still running; dropped trigger ({self.skipped_cycles} skipped)")
            return None
        try:
            output = self._run_cycle(timestamp)
        finally:
            self._cycle_lock.release()

        self.last_output = output
        for listener in self._listeners:
            try:
                listener(output)
            except Exception:
                logger.exception(f"Cycle {output.cycle_id}: listener {listener!r} failed")
        return output

    def _cycle_dt(self, now: float) -> float:
        if self._last_cycle_time is None or now <= self._last_cycle_time:
            dt = self.planning.default_dt
        else:
            dt = now - self._last_cycle_time
        self._last_cycle_time = now
        return dt

    def _reference_for(self, snapshot: PerceptionSnapshot) -> ReferenceSpline:
        if self._reference is None or self._reference_version != snapshot.lane_version:
            self._reference = ReferenceSpline(snapshot.lane, resolution=self.planning.reference_resolution)
            self._reference_version = snapshot.lane_version
            logger.info(f"Reference spline rebuilt: {self._reference.length:.1f}m, lane {self._reference.lane_id}")
        return self._reference

    def _local_lane(self, lane: Lane, nearest: int) -> Lane:
        xs, ys = lane.xs, lane.ys
        if len(xs) < 2:
            return lane
        spacing = float(np.mean(np.hypot(np.diff(xs), np.diff(ys))))
        spacing = max(spacing, 1e-3)
        behind = int(np.ceil(self.planning.local_lane_behind_m / spacing))
        ahead = int(np.ceil(self.planning.local_lane_ahead_m / spacing))
        return lane.local_window(nearest, behind, ahead)

    def _corridor(self, reference: ReferenceSpline, bounds: SamplingBounds, s_start: float) -> SamplingCorridor:
        s_from = max(s_start - self.planning.local_lane_behind_m, 0.0)
        s_to = min(s_start + self.planning.local_lane_ahead_m, reference.length)
        s = np.linspace(s_from, max(s_to, s_from), max(self.planning.corridor_points, 2))
        left_x, left_y, _ = reference.to_world(s, np.full_like(s, bounds.left))
        right_x, right_y, _ = reference.to_world(s, np.full_like(s, bounds.right))
        return SamplingCorridor(
            left=bounds.left,
            right=bounds.right,
            target=bounds.target,
            left_line=np.column_stack((left_x, left_y)),
            right_line=np.column_stack((right_x, right_y)),
        )

    def _fail(self, now: float, status: CycleStatus, reason: str, snapshot: PerceptionSnapshot,
              **outputs) -> CycleOutput:
        command, self.pid_state = self.fail_safe.engage(self.output, self.selector, now, reason)
        return CycleOutput(
            timestamp=now,
            cycle_id=self.cycle_id,
            status=status,
            mode=PlanningMode.REGENERATE.value,
            command=command,
            obstacles=snapshot.obstacles,
            **outputs,
        )

    def _run_cycle(self, timestamp: Optional[float]) -> CycleOutput:
        self._apply_pending_config()
        snapshot = self.ingestion.snapshot()
        now = float(timestamp) if timestamp is not None else float(snapshot.odom_stamp or 0.0)
        self.cycle_id += 1
        dt = self._cycle_dt(now)

        missing = []
        if snapshot.lane is None:
            missing.append("lane")
        if snapshot.vehicle_state is None:
            missing.append("odometry")
        if missing:
            logger.warning(f"Cycle {self.cycle_id}: waiting for {', '.join(missing)}")
            return self._fail(now, CycleStatus.INPUT_MISSING, f"missing {', '.join(missing)}", snapshot)

        stale = snapshot.stale_inputs(now, self.planning.stale_input_timeout)
        if stale:
            logger.warning(f"Cycle {self.cycle_id}: stale inputs {stale}; planning with last known values")

        vehicle = snapshot.vehicle_state
        reference = self._reference_for(snapshot)
        reference_path = reference.sample_path()
        nearest_lane_index = snapshot.lane.nearest_index(vehicle.x, vehicle.y)
        local_lane = self._local_lane(snapshot.lane, nearest_lane_index)

        # Start state
        vehicle_index = self.output.nearest_index(vehicle.x, vehicle.y)
        start_state, mode = self.selector.select(vehicle, reference, self.output, vehicle_index)
        if mode == PlanningMode.REGENERATE:
            self.output.clear()
            vehicle_index = 0

        # Sampling bounds; widths follow the lane waypoint nearest the vehicle
        lane_width = float(snapshot.lane.waypoints[nearest_lane_index].lane_width)
        lane_offset = int(round(start_state.d / lane_width)) if lane_width > 0.0 else 0
        current_lane_id = reference.lane_id + lane_offset
        left_width, right_width = adjacent_lane_widths(snapshot.lane.waypoints[nearest_lane_index], lane_offset)
        bounds = get_sampling_width(
            current_lane_id,
            self.planning.target_lane_id,
            self.planning.vehicle_width,
            lane_width,
            left_width,
            right_width,
        ).shifted(lane_offset * lane_width)
        corridor = self._corridor(reference, bounds, start_state.s)
        common = dict(reference_path=reference_path, local_lane=local_lane, sampling_corridor=None)

        # Candidates
        started = time.perf_counter()
        try:
            candidates = self.candidate_planner.plan(start_state, reference, bounds, snapshot.obstacles)
        except Exception:
            logger.exception(f"Cycle {self.cycle_id}: candidate planner failed")
            return self._fail(now, CycleStatus.SELECTION_FAILED, "candidate planner error", snapshot,
                              planning_time=time.perf_counter() - started, **common)
        planning_time = time.perf_counter() - started
        if planning_time > self.planning.cycle_deadline:
            logger.warning(
                f"Cycle {self.cycle_id}: planning took {planning_time * 1000:.1f}ms "
                f"(deadline {self.planning.cycle_deadline * 1000:.1f}ms); discarding result"
            )
            return self._fail(now, CycleStatus.SELECTION_FAILED, "deadline exceeded", snapshot,
                              planning_time=planning_time, **common)

        # Selection
        selection = select_trajectory(candidates, current_lane_id, self.planning.lane_change_margin)
        if selection.failed:
            return self._fail(now, CycleStatus.SELECTION_FAILED, "no feasible candidate", snapshot,
                              planning_time=planning_time, **common)

        # Concatenation
        result = concatenate(self.output, selection.trajectory, self.concat_config, vehicle_index)
        if not result.sufficient:
            logger.warning(
                f"Cycle {self.cycle_id}: output trajectory has {len(self.output)} waypoints "
                f"(min {self.concat_config.min_size})"
            )
            return self._fail(now, CycleStatus.SELECTION_FAILED, "output trajectory shorter than min_size",
                              snapshot, planning_time=planning_time, **common)
        if result.discontinuity:
            logger.info(
                f"Cycle {self.cycle_id}: concatenation discontinuous "
                f"({len(self.output)} waypoints); regenerating next cycle"
            )
            self.selector.request_regenerate()

        # Control
        front_axle = snapshot.front_axle_state
        next_index = self.output.nearest_index(front_axle.x, front_axle.y)
        steering = self.stanley.compute_steering(self.output, front_axle, next_index)
        if steering is None:
            return self._fail(now, CycleStatus.CONTROL_FAULT, "no trackable trajectory", snapshot,
                              planning_time=planning_time, **common)

        vehicle_index = self.output.nearest_index(vehicle.x, vehicle.y)
        longitudinal, self.pid_state = self.longitudinal.compute_acceleration(
            self.output, vehicle, vehicle_index, self.pid_state, dt
        )
        if not result.discontinuity:
            self.selector.on_success()

        command = ControlCommand(
            timestamp=now,
            acceleration=longitudinal.acceleration,
            steering_angle=steering.steering_angle,
            cross_track_error=steering.cross_track_error,
            heading_error=steering.heading_error,
            target_speed=longitudinal.target_speed,
            speed_error=longitudinal.speed_error,
            pid_integral=self.pid_state.integral,
        )
        common['sampling_corridor'] = corridor
        return CycleOutput(
            timestamp=now,
            cycle_id=self.cycle_id,
            status=CycleStatus.OK,
            mode=mode.value,
            command=command,
            output_trajectory=self.output.snapshot(),
            next_trajectory=selection.trajectory,
            candidates=tuple(candidates),
            obstacles=snapshot.obstacles,
            planning_time=planning_time,
            lane_change=selection.lane_change,
            **common,
        )


def main():
    """Main entry point."""
    import argparse

    from tools.closed_loop_sim import SCENARIOS, run_scenario

    parser = argparse.ArgumentParser(description='Run local planner stack in closed-loop simulation')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/planner_config.yaml)')
    parser.add_argument('--scenario', type=str, default='straight', choices=sorted(SCENARIOS),
                        help='Simulation scenario')
    parser.add_argument('--max_frames', type=int, default=300,
                        help='Maximum number of cycles to run')
    parser.add_argument('--dt', type=float, default=0.1,
                        help='Simulation time step (seconds)')
    parser.add_argument('--record', action='store_true', default=True,
                        help='Record cycles (default: True)')
    parser.add_argument('--no-record', dest='record', action='store_false',
                        help='Disable recording')
    parser.add_argument('--recording_dir', type=str, default='data/recordings',
                        help='Directory for recordings')

    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config.get('logging', {}).get('level', 'INFO'))

    summary = run_scenario(
        args.scenario,
        config=config,
        max_frames=args.max_frames,
        dt=args.dt,
        recording_dir=args.recording_dir if args.record else None,
    )
    logger.info(
        f"Scenario '{args.scenario}' finished: {summary.cycles} cycles, "
        f"{summary.fail_safe_cycles} fail-safe, max |cte| {summary.max_abs_cross_track_error:.3f}m, "
        f"distance {summary.distance_travelled:.1f}m"
    )


if __name__ == "__main__":
    main()
