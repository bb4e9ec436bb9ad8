"""
Pose log recording the body poses of every tracking cycle.

Writes JSON Lines: a header, one record per cycle and a footer, so an
offline run can be inspected or compared after the fact.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

import numpy as np

from .pose import pose_to_dict


class PoseLog:
    """
    Usage:
        log = PoseLog(log_dir="./logs")
        log.start_recording()
        log.log_poses(iteration=0, mode="TRACKING", poses={"triangle": pose})
        log.stop_recording()
    """

    SCHEMA_VERSION = "1.0"

    def __init__(self, log_dir: str = "./logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_file: Optional[Path] = None
        self._file_handle: Optional[TextIO] = None
        self._start_time: Optional[str] = None
        self._record_count = 0

    def start_recording(self, session_name: Optional[str] = None) -> str:
        """
        Open a new log file.

        Returns:
            Path to the created log file

        Raises:
            RuntimeError: If recording is already in progress
        """
        if self._file_handle is not None:
            raise RuntimeError("Recording already in progress")

        self._start_time = datetime.now().isoformat()
        if session_name is None:
            session_name = datetime.now().strftime("poses_%Y%m%d_%H%M%S")

        self._log_file = self.log_dir / f"{session_name}.jsonl"
        self._file_handle = open(self._log_file, "w", encoding="utf-8")
        self._record_count = 0
        self._write({
            "_type": "header",
            "schema_version": self.SCHEMA_VERSION,
            "capture_start": self._start_time,
            "log_format": "jsonl",
        })
        return str(self._log_file)

    def log_poses(self, iteration: int, mode: str, poses: Dict[str, np.ndarray]) -> None:
        if self._file_handle is None:
            raise RuntimeError("Not currently recording")
        self._write({
            "_type": "poses",
            "iteration": iteration,
            "mode": mode,
            "poses": {name: pose_to_dict(pose) for name, pose in poses.items()},
        })
        self._record_count += 1

    def stop_recording(self) -> Dict[str, Any]:
        if self._file_handle is None:
            return {"status": "not_recording"}

        self._write({
            "_type": "footer",
            "capture_end": datetime.now().isoformat(),
            "total_records": self._record_count,
        })
        self._file_handle.close()

        metadata = {
            "log_file": str(self._log_file),
            "start_time": self._start_time,
            "end_time": datetime.now().isoformat(),
            "total_records": self._record_count,
        }
        self._file_handle = None
        self._log_file = None
        return metadata

    @property
    def is_recording(self) -> bool:
        return self._file_handle is not None

    def _write(self, entry: Dict[str, Any]) -> None:
        if self._file_handle is None:
            raise RuntimeError("Not currently recording")
        self._file_handle.write(json.dumps(entry) + "\n")
        self._file_handle.flush()
