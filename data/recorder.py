"""
Cycle recorder for the planner stack.
Records per-cycle commands, controller diagnostics and the committed output trajectory.
"""

import h5py
import numpy as np
import json
import threading
import queue
import logging
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from .formats.data_format import CycleOutput, CycleStatus

logger = logging.getLogger(__name__)

STATUS_CODES = {status: code for code, status in enumerate(CycleStatus)}
MODE_CODES = {"regenerate": 0, "continue": 1}

# name -> dtype of the per-cycle scalar datasets
SCALAR_FIELDS = {
    "timestamps": np.float64,
    "cycle_ids": np.int64,
    "status": np.int8,
    "mode": np.int8,
    "acceleration": np.float32,
    "steering_angle": np.float32,
    "cross_track_error": np.float32,
    "heading_error": np.float32,
    "target_speed": np.float32,
    "is_fail_safe": np.int8,
    "lane_change": np.int8,
    "planning_time": np.float32,
    "candidate_count": np.int32,
    "output_size": np.int32,
}


def _optional(value: Optional[float]) -> float:
    return float("nan") if value is None else float(value)


class CycleRecorder:
    """Records planner cycles to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 flush_every: int = 50, metadata: Optional[dict] = None):
        """
        Initialize cycle recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            flush_every: Buffered cycles before a background flush
            metadata: Extra metadata stored in the file attributes
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        self.cycle_buffer: List[CycleOutput] = []
        self.cycle_buffer_lock = threading.Lock()
        self.flush_queue: "queue.Queue[List[CycleOutput]]" = queue.Queue()
        self.flush_stop_event = threading.Event()
        self.cycle_count = 0
        self.flush_every = max(int(flush_every), 1)
        self.flush_thread = threading.Thread(
            target=self._flush_worker,
            name="CycleRecorderFlushWorker",
            daemon=True,
        )
        self.flush_thread.start()

        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
            "status_codes": {status.value: code for status, code in STATUS_CODES.items()},
            "mode_codes": MODE_CODES,
        }
        if metadata:
            self.metadata.update(metadata)

    def _create_datasets(self):
        """Create HDF5 datasets for data storage."""
        max_shape = (None,)
        for name, dtype in SCALAR_FIELDS.items():
            self.h5_file.create_dataset(f"cycle/{name}", shape=(0,), maxshape=max_shape, dtype=dtype)
        for name in ("x", "y", "v"):
            self.h5_file.create_dataset(
                f"output_trajectory/{name}",
                shape=(0,),
                maxshape=max_shape,
                dtype=h5py.vlen_dtype(np.float32),
            )

    def record_cycle(self, cycle: CycleOutput):
        """Buffer one cycle; usable directly as a planner stack listener."""
        with self.cycle_buffer_lock:
            self.cycle_buffer.append(cycle)
            self.cycle_count += 1
            should_flush = len(self.cycle_buffer) >= self.flush_every
        if should_flush:
            self.flush()

    __call__ = record_cycle

    def flush(self):
        """Flush buffered cycles to disk."""
        with self.cycle_buffer_lock:
            if not self.cycle_buffer:
                return
            cycles = self.cycle_buffer
            self.cycle_buffer = []
        self.flush_queue.put(cycles)

    def _flush_worker(self):
        while not self.flush_stop_event.is_set() or not self.flush_queue.empty():
            try:
                cycles = self.flush_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._write_cycles(cycles)
            finally:
                self.flush_queue.task_done()

    def _write_cycles(self, cycles: List[CycleOutput]):
        if not cycles:
            return

        columns = {name: [] for name in SCALAR_FIELDS}
        traj_x, traj_y, traj_v = [], [], []
        for cycle in cycles:
            command = cycle.command
            columns["timestamps"].append(cycle.timestamp)
            columns["cycle_ids"].append(cycle.cycle_id)
            columns["status"].append(STATUS_CODES[cycle.status])
            columns["mode"].append(MODE_CODES.get(cycle.mode, -1))
            columns["acceleration"].append(command.acceleration)
            columns["steering_angle"].append(command.steering_angle)
            columns["cross_track_error"].append(_optional(command.cross_track_error))
            columns["heading_error"].append(_optional(command.heading_error))
            columns["target_speed"].append(_optional(command.target_speed))
            columns["is_fail_safe"].append(int(command.is_fail_safe))
            columns["lane_change"].append(int(cycle.lane_change))
            columns["planning_time"].append(cycle.planning_time)
            columns["candidate_count"].append(len(cycle.candidates))
            columns["output_size"].append(len(cycle.output_trajectory))
            traj_x.append(np.array([p.x for p in cycle.output_trajectory], dtype=np.float32))
            traj_y.append(np.array([p.y for p in cycle.output_trajectory], dtype=np.float32))
            traj_v.append(np.array([p.v for p in cycle.output_trajectory], dtype=np.float32))

        current_size = self.h5_file["cycle/timestamps"].shape[0]
        new_size = current_size + len(cycles)
        for name, values in columns.items():
            dataset = self.h5_file[f"cycle/{name}"]
            dataset.resize((new_size,))
            dataset[current_size:new_size] = np.asarray(values, dtype=SCALAR_FIELDS[name])

        for name, rows in (("x", traj_x), ("y", traj_y), ("v", traj_v)):
            dataset = self.h5_file[f"output_trajectory/{name}"]
            dataset.resize((new_size,))
            for offset, row in enumerate(rows):
                dataset[current_size + offset] = row

        self.h5_file.flush()

    def close(self):
        """Close the recording file."""
        try:
            with self.cycle_buffer_lock:
                if self.cycle_buffer:
                    cycles = self.cycle_buffer
                    self.cycle_buffer = []
                    self.flush_queue.put(cycles)
            self.flush_stop_event.set()
            self.flush_thread.join(timeout=5.0)
        except Exception as e:
            logger.error(f"Error during final flush: {e}", exc_info=True)

        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["total_cycles"] = self.cycle_count

        try:
            self.h5_file.attrs["metadata"] = json.dumps(self.metadata, indent=2)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to save metadata: {e}")

        self.h5_file.close()
        logger.info(f"Recording saved to: {self.output_file}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
