"""
Replay utility for planner stack recordings.
"""

import json
from pathlib import Path
from typing import Iterator

import h5py
import numpy as np


class CycleReplay:
    """Replay recorded planner cycles."""

    def __init__(self, recording_file: str):
        """
        Initialize cycle replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        """Load recording metadata."""
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}
        self._status_names = {code: name for name, code in self.metadata.get("status_codes", {}).items()}
        self._mode_names = {code: name for name, code in self.metadata.get("mode_codes", {}).items()}

    def __len__(self) -> int:
        if "cycle/timestamps" not in self.h5_file:
            return 0
        return int(self.h5_file["cycle/timestamps"].shape[0])

    def get_cycles(self) -> Iterator[dict]:
        """
        Get recorded cycles iterator.

        Yields:
            Dictionary with per-cycle data; output trajectory as an [N, 2] array
        """
        if "cycle/timestamps" not in self.h5_file:
            return

        cycle_group = self.h5_file["cycle"]
        columns = {name: cycle_group[name][:] for name in cycle_group.keys()}
        traj_x = self.h5_file["output_trajectory/x"]
        traj_y = self.h5_file["output_trajectory/y"]
        traj_v = self.h5_file["output_trajectory/v"]

        for i in range(len(self)):
            status = int(columns["status"][i])
            mode = int(columns["mode"][i])
            yield {
                "timestamp": float(columns["timestamps"][i]),
                "cycle_id": int(columns["cycle_ids"][i]),
                "status": self._status_names.get(status, status),
                "mode": self._mode_names.get(mode, mode),
                "acceleration": float(columns["acceleration"][i]),
                "steering_angle": float(columns["steering_angle"][i]),
                "cross_track_error": float(columns["cross_track_error"][i]),
                "heading_error": float(columns["heading_error"][i]),
                "target_speed": float(columns["target_speed"][i]),
                "is_fail_safe": bool(columns["is_fail_safe"][i]),
                "lane_change": bool(columns["lane_change"][i]),
                "planning_time": float(columns["planning_time"][i]),
                "candidate_count": int(columns["candidate_count"][i]),
                "output_size": int(columns["output_size"][i]),
                "output_trajectory": np.column_stack((traj_x[i], traj_y[i])),
                "output_speed": np.asarray(traj_v[i]),
            }

    def get_statistics(self) -> dict:
        """Get recording statistics."""
        stats = {"num_cycles": len(self)}
        if len(self) == 0:
            return stats
        statuses = self.h5_file["cycle/status"][:]
        cte = self.h5_file["cycle/cross_track_error"][:]
        timestamps = self.h5_file["cycle/timestamps"][:]
        stats["duration"] = float(timestamps[-1] - timestamps[0])
        stats["fail_safe_cycles"] = int(np.sum(self.h5_file["cycle/is_fail_safe"][:]))
        stats["status_counts"] = {
            self._status_names.get(int(code), int(code)): int(np.sum(statuses == code))
            for code in np.unique(statuses)
        }
        finite = cte[np.isfinite(cte)]
        stats["max_abs_cross_track_error"] = float(np.max(np.abs(finite))) if len(finite) else 0.0
        stats["max_planning_time"] = float(np.max(self.h5_file["cycle/planning_time"][:]))
        return stats

    def close(self):
        """Close recording file."""
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
