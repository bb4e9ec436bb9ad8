"""Offline replay of an image sequence stored on disk."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from .errors import CaptureError, ConfigurationError, DeviceError, EndOfSequenceError
from .metadata import ImageLoaderMetadata, Intrinsics, SaveSettings
from .sensor import STALE_FRAME_RETAIN, Sensor


class ImageLoaderSensor(Sensor):
    """
    Color camera that reads one image per refresh.

    Images are named ``<image_name_pre><index><image_name_post>.<load_image_type>``
    inside ``load_directory``, the index zero-padded to ``n_leading_zeros``
    digits. ``load_index`` advances after every successful read.
    """

    kind = "loader"

    def __init__(
        self,
        name: str,
        metafile_path: Optional[Union[str, Path]] = None,
        *,
        load_directory: Optional[Union[str, Path]] = None,
        intrinsics: Optional[Intrinsics] = None,
        image_name_pre: str = "",
        load_index: int = 0,
        n_leading_zeros: int = 0,
        image_name_post: str = "",
        load_image_type: str = "png",
        camera2world_pose: Optional[np.ndarray] = None,
        save_settings: Optional[SaveSettings] = None,
        stale_frame_policy: str = STALE_FRAME_RETAIN,
    ):
        super().__init__(
            name,
            metafile_path,
            intrinsics=intrinsics,
            camera2world_pose=camera2world_pose,
            save_settings=save_settings,
            stale_frame_policy=stale_frame_policy,
        )
        self._load_directory: Optional[Path] = Path(load_directory) if load_directory is not None else None
        self._image_name_pre = image_name_pre
        self._load_index = int(load_index)
        self._n_leading_zeros = int(n_leading_zeros)
        self._image_name_post = image_name_post
        self._load_image_type = load_image_type

    @property
    def load_directory(self) -> Optional[Path]:
        return self._load_directory

    @property
    def load_index(self) -> int:
        return self._load_index

    def image_path(self, index: Optional[int] = None) -> Path:
        if self._load_directory is None:
            raise ConfigurationError(f"sensor '{self._name}' has no load_directory")
        idx = self._load_index if index is None else int(index)
        filename = (
            f"{self._image_name_pre}{str(idx).zfill(self._n_leading_zeros)}"
            f"{self._image_name_post}.{self._load_image_type}"
        )
        return self._load_directory / filename

    def metadata(self) -> ImageLoaderMetadata:
        if self._intrinsics is None or self._load_directory is None:
            raise ConfigurationError(f"sensor '{self._name}' is not fully configured")
        return ImageLoaderMetadata(
            load_directory=self._load_directory,
            intrinsics=self._intrinsics,
            image_name_pre=self._image_name_pre,
            load_index=self._load_index,
            n_leading_zeros=self._n_leading_zeros,
            image_name_post=self._image_name_post,
            load_image_type=self._load_image_type,
            camera2world_pose=self.camera2world_pose,
            save=self._save,
        )

    def _load_metadata(self, path: Path) -> None:
        meta = ImageLoaderMetadata.read(path)
        self._load_directory = meta.load_directory
        self._intrinsics = meta.intrinsics
        self._image_name_pre = meta.image_name_pre
        self._load_index = meta.load_index
        self._n_leading_zeros = meta.n_leading_zeros
        self._image_name_post = meta.image_name_post
        self._load_image_type = meta.load_image_type
        self.camera2world_pose = meta.camera2world_pose
        self._save = meta.save

    def _write_metadata(self, path: Path) -> None:
        self.metadata().write(path)

    def _open_device(self) -> None:
        if self._load_directory is None or not self._load_directory.is_dir():
            raise DeviceError(f"load directory does not exist: {self._load_directory}")

    def _capture(self, synchronized: bool) -> np.ndarray:
        path = self.image_path()
        if not path.is_file():
            raise EndOfSequenceError(f"no image at {path}")
        image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if image is None or image.size == 0:
            raise CaptureError(f"could not read image from {path}")
        self._load_index += 1
        return image

    def _close_device(self) -> None:
        return
