"""
Orchestrator driving sensors, detectors, optimizers and viewers.

Provides the complete per-cycle chain:
- refresh every distinct sensor once -> detection or tracking -> viewers
  -> wait / poll the command source -> next cycle

Modes:
    WAITING --d--> DETECTING --(one cycle)--> STOPPED or TRACKING
    WAITING/STOPPED/DETECTING --t--> TRACKING
    TRACKING/DETECTING --s--> STOPPED
    any --q--> QUIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from itertools import chain
from typing import Any, Dict, List, Optional

import numpy as np

from .commands import Command, CommandSource, KeyboardCommandSource
from .components import DetectorLike, OptimizerLike, RendererGeometry, ViewerLike
from .errors import ConfigurationError, SetupOrderError, TrackingError
from .metrics import CycleMetrics
from .pose_log import PoseLog
from .sensor import Sensor

logger = logging.getLogger(__name__)


class Mode(Enum):
    WAITING = "WAITING"
    DETECTING = "DETECTING"
    TRACKING = "TRACKING"
    STOPPED = "STOPPED"
    QUIT = "QUIT"


@dataclass
class OrchestratorConfig:
    viewer_time_ms: int = 1
    synchronize_sensors: bool = False
    start_tracking_after_detection: bool = False
    pose_log_dir: Optional[str] = None


class Orchestrator:
    """
    Named registry of viewers, optimizers and detectors plus the loop that
    drives them.

    Usage:
        orchestrator = Orchestrator("tracker")
        orchestrator.add_viewer(viewer)
        orchestrator.add_optimizer(optimizer)
        orchestrator.add_detector(detector)
        if orchestrator.set_up():
            orchestrator.run_process(start_in_tracking=True)
    """

    def __init__(
        self,
        name: str,
        config: Optional[OrchestratorConfig] = None,
        command_source: Optional[CommandSource] = None,
    ):
        """
        Args:
            name: Orchestrator name
            config: Loop configuration (defaults if None)
            command_source: Where commands come from (keyboard if None)
        """
        self.name = name
        self.config = config if config is not None else OrchestratorConfig()
        self.command_source: CommandSource = (
            command_source if command_source is not None else KeyboardCommandSource()
        )

        self._viewers: Dict[str, ViewerLike] = {}
        self._optimizers: Dict[str, OptimizerLike] = {}
        self._detectors: Dict[str, DetectorLike] = {}

        # Distinct sensors and geometries reachable from the registries, by name
        self._sensors: Dict[str, Sensor] = {}
        self._renderer_geometries: Dict[str, RendererGeometry] = {}

        self._mode = Mode.WAITING
        self._iteration = 0
        self._track_after_detection = False
        self._set_up = False

        self.metrics = CycleMetrics()
        self.pose_log: Optional[PoseLog] = (
            PoseLog(self.config.pose_log_dir) if self.config.pose_log_dir else None
        )

    # Registries

    def add_viewer(self, viewer: ViewerLike) -> None:
        self._add(self._viewers, "viewer", viewer)

    def add_optimizer(self, optimizer: OptimizerLike) -> None:
        self._add(self._optimizers, "optimizer", optimizer)

    def add_detector(self, detector: DetectorLike) -> None:
        self._add(self._detectors, "detector", detector)

    def remove_viewer(self, name: str) -> bool:
        return self._remove(self._viewers, name)

    def remove_optimizer(self, name: str) -> bool:
        return self._remove(self._optimizers, name)

    def remove_detector(self, name: str) -> bool:
        return self._remove(self._detectors, name)

    @property
    def viewers(self) -> List[ViewerLike]:
        return list(self._viewers.values())

    @property
    def optimizers(self) -> List[OptimizerLike]:
        return list(self._optimizers.values())

    @property
    def detectors(self) -> List[DetectorLike]:
        return list(self._detectors.values())

    @property
    def sensors(self) -> List[Sensor]:
        """Distinct sensors collected by the last set_up()."""
        return list(self._sensors.values())

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def iteration(self) -> int:
        return self._iteration

    @property
    def is_set_up(self) -> bool:
        return self._set_up

    def _add(self, registry: Dict[str, Any], kind: str, component: Any) -> None:
        if component.name in registry:
            raise ConfigurationError(
                f"{kind} '{component.name}' already exists in orchestrator '{self.name}'"
            )
        registry[component.name] = component
        self._set_up = False

    def _remove(self, registry: Dict[str, Any], name: str) -> bool:
        if registry.pop(name, None) is None:
            return False
        self._set_up = False
        return True

    def _collect_sensors(self) -> Dict[str, Sensor]:
        sensors: Dict[str, Sensor] = {}
        components = chain(self._viewers.values(), self._optimizers.values(), self._detectors.values())
        for component in components:
            for sensor in component.sensors:
                existing = sensors.get(sensor.name)
                if existing is None:
                    sensors[sensor.name] = sensor
                elif existing is not sensor:
                    raise ConfigurationError(f"two different sensors are named '{sensor.name}'")
        return sensors

    def _collect_renderer_geometries(self) -> Dict[str, RendererGeometry]:
        geometries: Dict[str, RendererGeometry] = {}
        for viewer in self._viewers.values():
            geometry = viewer.renderer_geometry
            if geometry is None:
                continue
            existing = geometries.get(geometry.name)
            if existing is None:
                geometries[geometry.name] = geometry
            elif existing is not geometry:
                raise ConfigurationError(f"two different renderer geometries are named '{geometry.name}'")
        return geometries

    # Set up

    def set_up(self) -> bool:
        """
        Set up every reachable component, failing fast.

        Order: distinct sensors, renderer geometries, viewers, optimizers,
        detectors. Components set up before a failure stay set up.
        """
        self._set_up = False
        try:
            self._sensors = self._collect_sensors()
            self._renderer_geometries = self._collect_renderer_geometries()
        except ConfigurationError as exc:
            logger.error("Orchestrator '%s' set up failed: %s", self.name, exc)
            return False

        stages = (
            ("sensor", self._sensors),
            ("renderer geometry", self._renderer_geometries),
            ("viewer", self._viewers),
            ("optimizer", self._optimizers),
            ("detector", self._detectors),
        )
        for kind, registry in stages:
            for name, component in registry.items():
                if not component.set_up():
                    logger.error("Orchestrator '%s': %s '%s' set up failed", self.name, kind, name)
                    return False

        self._set_up = True
        logger.info(
            "Orchestrator '%s' set up: %d sensor(s), %d viewer(s), %d optimizer(s), %d detector(s)",
            self.name, len(self._sensors), len(self._viewers), len(self._optimizers), len(self._detectors),
        )
        return True

    # Process

    def run_process(self, start_in_tracking: bool = False, single_pass: bool = False) -> bool:
        """
        Run the tracking loop until QUIT.

        Args:
            start_in_tracking: Enter TRACKING immediately instead of WAITING
            single_pass: Run exactly one detection cycle and one tracking
                cycle, then quit, ignoring commands

        Returns:
            True unless set up was missing or a cycle failed
        """
        if not self._set_up:
            logger.error("%s", SetupOrderError(f"Set up orchestrator '{self.name}' first"))
            return False

        self._iteration = 0
        self._track_after_detection = False
        if single_pass:
            self._track_after_detection = True
            self._set_mode(Mode.DETECTING)
        elif start_in_tracking:
            self._set_mode(Mode.TRACKING)
        else:
            self._set_mode(Mode.WAITING)

        if self.pose_log is not None:
            self.pose_log.start_recording()
        try:
            return self._loop(single_pass)
        finally:
            if self.pose_log is not None:
                self.pose_log.stop_recording()

    def _loop(self, single_pass: bool) -> bool:
        cycles = 0
        while self._mode is not Mode.QUIT:
            try:
                ok = self.execute_cycle()
            except TrackingError as exc:
                logger.error("Orchestrator '%s': cycle %d failed: %s", self.name, self._iteration, exc)
                ok = False
            if not ok:
                self._set_mode(Mode.QUIT)
                return False

            command = self.command_source.poll(self.config.viewer_time_ms)
            self._iteration += 1
            cycles += 1

            if single_pass:
                if cycles >= 2:
                    self._set_mode(Mode.QUIT)
                continue
            if command is not None:
                self.handle_command(command)
        return True

    def execute_cycle(self) -> bool:
        """One cycle: refresh, active-mode logic, render."""
        mode = self._mode
        synchronized = self.config.synchronize_sensors or mode is Mode.DETECTING
        self.refresh_sensors(synchronized)

        if mode is Mode.DETECTING:
            if not self.execute_detection_cycle(self._iteration):
                return False
            follow = Mode.TRACKING if self._track_after_detection else Mode.STOPPED
            self._track_after_detection = False
            self._set_mode(follow)
        elif mode is Mode.TRACKING:
            if not self.execute_tracking_cycle(self._iteration):
                return False

        if not self.update_viewers(self._iteration):
            return False

        self.metrics.record_cycle(mode.value)
        if self.pose_log is not None and self.pose_log.is_recording:
            self.pose_log.log_poses(self._iteration, mode.value, self.get_poses())
        return True

    def refresh_sensors(self, synchronized: bool = False) -> None:
        """Refresh each distinct sensor once; failures leave the previous frame."""
        for name, sensor in self._sensors.items():
            ok = sensor.refresh_frame(synchronized)
            self.metrics.record_refresh(name, ok)
            if not ok:
                logger.warning("Sensor '%s' refresh failed at cycle %d; continuing", name, self._iteration)

    def execute_detection_cycle(self, iteration: int) -> bool:
        for name, detector in self._detectors.items():
            if not detector.detect(iteration):
                logger.error("Detector '%s' failed at cycle %d", name, iteration)
                return False
        return True

    def execute_tracking_cycle(self, iteration: int) -> bool:
        for name, optimizer in self._optimizers.items():
            if not optimizer.run(iteration):
                logger.error("Optimizer '%s' failed at cycle %d", name, iteration)
                return False
        return True

    def update_viewers(self, iteration: int) -> bool:
        for name, viewer in self._viewers.items():
            if not viewer.update(iteration):
                logger.error("Viewer '%s' failed at cycle %d", name, iteration)
                return False
        return True

    def handle_command(self, command: Command) -> None:
        """Apply a command at the cycle boundary."""
        mode = self._mode
        if mode is Mode.QUIT:
            return

        if command is Command.QUIT:
            self._set_mode(Mode.QUIT)
        elif command in (Command.DETECT, Command.DETECT_AND_TRACK):
            self._track_after_detection = (
                command is Command.DETECT_AND_TRACK or self.config.start_tracking_after_detection
            )
            self._set_mode(Mode.DETECTING)
        elif command is Command.TRACK:
            if mode in (Mode.DETECTING, Mode.WAITING, Mode.STOPPED):
                self._set_mode(Mode.TRACKING)
        elif command is Command.STOP:
            if mode in (Mode.TRACKING, Mode.DETECTING):
                self._set_mode(Mode.STOPPED)

    def _set_mode(self, mode: Mode) -> None:
        if mode is not self._mode:
            logger.info("Orchestrator '%s': %s -> %s", self.name, self._mode.value, mode.value)
        self._mode = mode

    # Results

    def get_poses(self) -> Dict[str, np.ndarray]:
        """body2world pose of every optimized body."""
        return {opt.body.name: opt.body.body2world_pose for opt in self._optimizers.values()}

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "set_up": self._set_up,
            "mode": self._mode.value,
            "iteration": self._iteration,
            "sensors": list(self._sensors),
            "viewers": list(self._viewers),
            "optimizers": list(self._optimizers),
            "detectors": list(self._detectors),
            "metrics": self.metrics.get_summary(),
        }
