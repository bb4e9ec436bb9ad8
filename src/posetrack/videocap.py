"""Live capture from any device supported by OpenCV's video IO."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Protocol, Union

import cv2
import numpy as np

from .errors import CaptureError, ConfigurationError, DeviceError
from .metadata import Intrinsics, SaveSettings, VideoCaptureMetadata
from .sensor import STALE_FRAME_RETAIN, Sensor


class _VideoCaptureApi(Protocol):
    def isOpened(self) -> bool: ...

    def set(self, prop_id: int, value: float) -> bool: ...

    def read(self) -> tuple[bool, Optional[np.ndarray]]: ...

    def release(self) -> None: ...


CaptureFactory = Callable[[int, int], _VideoCaptureApi]


def open_video_capture(device_id: int, api_id: int) -> _VideoCaptureApi:
    return cv2.VideoCapture(device_id, api_id)


class VideoCaptureSensor(Sensor):
    """
    Color camera backed by ``cv2.VideoCapture``.

    Required document keys: device_id, api_id, intrinsics.
    """

    kind = "videocap"

    def __init__(
        self,
        name: str,
        metafile_path: Optional[Union[str, Path]] = None,
        *,
        intrinsics: Optional[Intrinsics] = None,
        device_id: int = 0,
        api_id: int = 0,
        camera2world_pose: Optional[np.ndarray] = None,
        save_settings: Optional[SaveSettings] = None,
        stale_frame_policy: str = STALE_FRAME_RETAIN,
        capture_factory: Optional[CaptureFactory] = None,
    ):
        super().__init__(
            name,
            metafile_path,
            intrinsics=intrinsics,
            camera2world_pose=camera2world_pose,
            save_settings=save_settings,
            stale_frame_policy=stale_frame_policy,
        )
        self._device_id = int(device_id)
        self._api_id = int(api_id)
        self._capture_factory: CaptureFactory = (
            capture_factory if capture_factory is not None else open_video_capture
        )
        self._cap: Optional[_VideoCaptureApi] = None

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def api_id(self) -> int:
        return self._api_id

    def metadata(self) -> VideoCaptureMetadata:
        """Current configuration as a document."""
        if self._intrinsics is None:
            raise ConfigurationError(f"sensor '{self._name}' has no intrinsics")
        return VideoCaptureMetadata(
            device_id=self._device_id,
            api_id=self._api_id,
            intrinsics=self._intrinsics,
            camera2world_pose=self.camera2world_pose,
            save=self._save,
        )

    def _load_metadata(self, path: Path) -> None:
        meta = VideoCaptureMetadata.read(path)
        self._device_id = meta.device_id
        self._api_id = meta.api_id
        self._intrinsics = meta.intrinsics
        self.camera2world_pose = meta.camera2world_pose
        self._save = meta.save

    def _write_metadata(self, path: Path) -> None:
        self.metadata().write(path)

    def _open_device(self) -> None:
        if self._intrinsics is None:
            raise ConfigurationError(f"sensor '{self._name}' has no intrinsics")
        try:
            cap = self._capture_factory(self._device_id, self._api_id)
        except cv2.error as exc:
            raise DeviceError(f"could not open video capture {self._device_id}: {exc}") from exc

        if cap is None or not cap.isOpened():
            raise DeviceError(
                f"could not open video capture {self._device_id} (api {self._api_id})"
            )

        if not (
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._intrinsics.width)
            and cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._intrinsics.height)
        ):
            cap.release()
            raise DeviceError(
                f"could not set desired resolution "
                f"{self._intrinsics.width}x{self._intrinsics.height}"
            )
        self._cap = cap

    def _capture(self, synchronized: bool) -> np.ndarray:
        # OpenCV devices have no hardware sync; the hint is ignored
        cap = self._cap
        if cap is None:
            raise CaptureError("video capture not open")
        ok, frame = cap.read()
        if not ok or frame is None or frame.size == 0:
            raise CaptureError("could not retrieve image")
        return frame

    def _close_device(self) -> None:
        cap = self._cap
        self._cap = None
        if cap is not None:
            cap.release()
