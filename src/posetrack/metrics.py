"""
Metrics for the tracking loop.

Provides functionality to:
- Count refreshes and failed refreshes per sensor
- Measure the cycle rate over a rolling window
- Count cycles spent in each mode
"""

import time
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class SensorRefreshStats:
    """Per-sensor refresh counters."""
    sensor_name: str
    refresh_count: int = 0
    failure_count: int = 0
    last_refresh_at: float = 0.0


class CycleMetrics:
    """
    Metrics collector for the orchestrator loop.

    Usage:
        metrics = CycleMetrics()
        metrics.record_refresh("color_camera", success=True)
        metrics.record_cycle("TRACKING")
        summary = metrics.get_summary()
    """

    def __init__(self, history_size: int = 60):
        """
        Args:
            history_size: Number of cycles kept for the rolling rate
        """
        self.history_size = history_size
        self._sensors: Dict[str, SensorRefreshStats] = {}
        self._mode_cycles: Dict[str, int] = {}
        self._cycle_times: deque = deque(maxlen=history_size)
        self._cycle_count = 0
        self._lock = threading.Lock()
        self._start_time = time.time()

    def record_refresh(self, sensor_name: str, success: bool) -> None:
        with self._lock:
            stats = self._sensors.get(sensor_name)
            if stats is None:
                stats = SensorRefreshStats(sensor_name=sensor_name)
                self._sensors[sensor_name] = stats
            stats.refresh_count += 1
            if not success:
                stats.failure_count += 1
            stats.last_refresh_at = time.time()

    def record_cycle(self, mode: str) -> None:
        with self._lock:
            self._cycle_count += 1
            self._mode_cycles[mode] = self._mode_cycles.get(mode, 0) + 1
            self._cycle_times.append(time.perf_counter())

    def refresh_count(self, sensor_name: str) -> int:
        with self._lock:
            stats = self._sensors.get(sensor_name)
            return stats.refresh_count if stats is not None else 0

    def cycles_in(self, mode: str) -> int:
        with self._lock:
            return self._mode_cycles.get(mode, 0)

    @property
    def cycle_rate(self) -> float:
        """Cycles per second over the rolling window."""
        with self._lock:
            if len(self._cycle_times) < 2:
                return 0.0
            span = self._cycle_times[-1] - self._cycle_times[0]
            if span <= 0:
                return 0.0
            return (len(self._cycle_times) - 1) / span

    def get_summary(self) -> Dict[str, Any]:
        rate = self.cycle_rate
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "cycles": self._cycle_count,
                "cycle_rate": round(rate, 2),
                "mode_cycles": dict(self._mode_cycles),
                "sensors": {
                    name: {
                        "refresh_count": s.refresh_count,
                        "failure_count": s.failure_count,
                    }
                    for name, s in self._sensors.items()
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._sensors.clear()
            self._mode_cycles.clear()
            self._cycle_times.clear()
            self._cycle_count = 0
            self._start_time = time.time()
