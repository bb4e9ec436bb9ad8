"""
Sensor contract shared by every capture backend.

A sensor owns its intrinsics, its extrinsic pose pair and the most recently
captured frame. Backends implement five hooks:

- _load_metadata: read the backend's document into the sensor
- _write_metadata: write the resolved configuration back out
- _open_device: acquire and configure the capture device
- _capture: return one frame or raise CaptureError
- _close_device: release the device

Lifecycle:
    sensor = VideoCaptureSensor("color_camera", "color_camera.yaml")
    if sensor.set_up():
        sensor.refresh_frame()
        frame = sensor.image
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from .errors import (
    CaptureError, ConfigurationError, DeviceError, EndOfSequenceError, SetupOrderError, TrackingError
)
from .metadata import Intrinsics, SaveSettings, check_image_type
from .pose import as_pose, identity_pose, invert_pose

logger = logging.getLogger(__name__)

# What refresh_frame reports when a capture yields no data
STALE_FRAME_RETAIN = "retain"
STALE_FRAME_FAIL = "fail"
STALE_FRAME_POLICIES = (STALE_FRAME_RETAIN, STALE_FRAME_FAIL)


class Sensor:
    """
    Base class for capture backends.

    ``world2camera_pose`` is always the inverse of ``camera2world_pose``;
    assigning either one recomputes the other.
    """

    kind = "sensor"

    def __init__(
        self,
        name: str,
        metafile_path: Optional[Union[str, Path]] = None,
        *,
        intrinsics: Optional[Intrinsics] = None,
        camera2world_pose: Optional[np.ndarray] = None,
        save_settings: Optional[SaveSettings] = None,
        stale_frame_policy: str = STALE_FRAME_RETAIN,
    ):
        if stale_frame_policy not in STALE_FRAME_POLICIES:
            raise ValueError(f"stale_frame_policy must be one of {STALE_FRAME_POLICIES}")

        self._name = name
        self._metafile_path: Optional[Path] = Path(metafile_path) if metafile_path is not None else None
        self._intrinsics: Optional[Intrinsics] = intrinsics
        self._camera2world_pose = identity_pose()
        self._world2camera_pose = identity_pose()
        if camera2world_pose is not None:
            self.camera2world_pose = camera2world_pose
        self._save = save_settings if save_settings is not None else SaveSettings()
        self._image: Optional[np.ndarray] = None
        self._set_up = False
        self.stale_frame_policy = stale_frame_policy

    @property
    def name(self) -> str:
        return self._name

    @property
    def metafile_path(self) -> Optional[Path]:
        return self._metafile_path

    @property
    def intrinsics(self) -> Optional[Intrinsics]:
        return self._intrinsics

    @property
    def camera2world_pose(self) -> np.ndarray:
        return self._camera2world_pose.copy()

    @camera2world_pose.setter
    def camera2world_pose(self, pose: np.ndarray) -> None:
        self._camera2world_pose = as_pose(pose).copy()
        self._world2camera_pose = invert_pose(self._camera2world_pose)

    @property
    def world2camera_pose(self) -> np.ndarray:
        return self._world2camera_pose.copy()

    @world2camera_pose.setter
    def world2camera_pose(self, pose: np.ndarray) -> None:
        self._world2camera_pose = as_pose(pose).copy()
        self._camera2world_pose = invert_pose(self._world2camera_pose)

    @property
    def image(self) -> Optional[np.ndarray]:
        """Most recent frame. Consumers must treat it as read-only."""
        return self._image

    @property
    def is_set_up(self) -> bool:
        return self._set_up

    @property
    def save_settings(self) -> SaveSettings:
        return self._save

    def set_up(self) -> bool:
        """
        Load metadata, persist the resolved configuration, open the device
        and capture one validating frame.

        Returns:
            True if the sensor is ready for refresh_frame()
        """
        self._set_up = False
        try:
            if self._metafile_path is not None:
                self._load_metadata(self._metafile_path)
            if self._intrinsics is None:
                raise ConfigurationError(f"sensor '{self._name}' has no intrinsics")
            if self._save.save_images:
                check_image_type(self._save.save_image_type)
            self._save_metadata_if_desired()

            self._close_device()
            self._open_device()
            try:
                image = self._capture(True)
            except CaptureError as exc:
                self._close_device()
                raise DeviceError(f"validating capture failed: {exc}") from exc
            self._save_image_if_desired(image)
        except TrackingError as exc:
            logger.error("Sensor '%s' set up failed: %s", self._name, exc)
            return False

        self._image = image
        self._set_up = True
        logger.info(
            "Sensor '%s' (%s) set up, frame %s",
            self._name, self.kind, "x".join(str(v) for v in image.shape[:2][::-1]),
        )
        return True

    def refresh_frame(self, synchronized: bool = False) -> bool:
        """
        Capture one frame into the frame buffer.

        Args:
            synchronized: Hint for backends with hardware multi-sensor sync;
                backends without it ignore the flag

        Returns:
            False before set_up, or on a failed capture under the "fail"
            policy; True otherwise (a failed capture under the "retain"
            policy keeps the previous frame)
        """
        if not self._set_up:
            logger.error("%s", SetupOrderError(f"Set up sensor '{self._name}' first"))
            return False

        try:
            image = self._capture(synchronized)
        except CaptureError as exc:
            # Running off the end of a recording is expected
            level = logging.DEBUG if isinstance(exc, EndOfSequenceError) else logging.ERROR
            if self.stale_frame_policy == STALE_FRAME_FAIL:
                logger.log(level, "Sensor '%s': %s", self._name, exc)
                return False
            logger.log(level, "Sensor '%s': %s; keeping previous frame", self._name, exc)
            return True

        self._image = image
        self._save_image_if_desired(image)
        return True

    def close(self) -> None:
        self._close_device()
        self._set_up = False

    def _save_metadata_if_desired(self) -> None:
        if not self._save.save_images:
            return
        path = self._save.save_directory / f"{self._name}.yaml"
        self._write_metadata(path)
        logger.debug("Sensor '%s' configuration written to %s", self._name, path)

    def _save_image_if_desired(self, image: np.ndarray) -> None:
        if not self._save.save_images:
            return
        path = self._save.image_path(self._name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not cv2.imwrite(str(path), image):
                logger.warning("Sensor '%s': could not write %s", self._name, path)
        except (cv2.error, OSError) as exc:
            logger.warning("Sensor '%s': could not write %s: %s", self._name, path, exc)
        self._save.save_index += 1

    def _load_metadata(self, path: Path) -> None:
        raise NotImplementedError

    def _write_metadata(self, path: Path) -> None:
        raise NotImplementedError

    def _open_device(self) -> None:
        raise NotImplementedError

    def _capture(self, synchronized: bool) -> np.ndarray:
        raise NotImplementedError

    def _close_device(self) -> None:
        raise NotImplementedError
