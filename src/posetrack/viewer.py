"""
Viewer combining a sensor frame with the bodies of a renderer geometry.

Each body is drawn as its projected coordinate axes (x red, y green,
z blue) at the current pose estimate.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

from .components import Body, RendererGeometry
from .errors import SetupOrderError
from .metadata import check_image_type
from .sensor import Sensor

logger = logging.getLogger(__name__)

_AXIS_COLORS = ((0, 0, 255), (0, 255, 0), (255, 0, 0))


class ImageViewer:
    """
    Usage:
        viewer = ImageViewer("viewer", camera, renderer_geometry)
        viewer.start_saving_images("out/")
        orchestrator.add_viewer(viewer)
    """

    def __init__(
        self,
        name: str,
        sensor: Sensor,
        renderer_geometry: Optional[RendererGeometry] = None,
        *,
        display: bool = True,
        axis_length: float = 0.05,
    ):
        """
        Args:
            name: Viewer name, also the display window title
            sensor: Sensor whose frame is shown
            renderer_geometry: Bodies to overlay (None = frame only)
            display: Show the image with cv2.imshow
            axis_length: Length of the drawn body axes in meters
        """
        self.name = name
        self.sensor = sensor
        self._renderer_geometry = renderer_geometry
        self.display = display
        self.axis_length = float(axis_length)

        self._save_directory: Optional[Path] = None
        self._save_image_type = "png"
        self._save_index = 0
        self._last_image: Optional[np.ndarray] = None
        self._set_up = False

    @property
    def sensors(self) -> List[Sensor]:
        return [self.sensor]

    @property
    def renderer_geometry(self) -> Optional[RendererGeometry]:
        return self._renderer_geometry

    @property
    def last_image(self) -> Optional[np.ndarray]:
        return self._last_image

    @property
    def is_saving_images(self) -> bool:
        return self._save_directory is not None

    def start_saving_images(self, directory: Union[str, Path], image_type: str = "png") -> None:
        """
        Raises:
            ConfigurationError: If OpenCV cannot encode ``image_type``
        """
        check_image_type(image_type)
        self._save_directory = Path(directory)
        self._save_directory.mkdir(parents=True, exist_ok=True)
        self._save_image_type = image_type
        self._save_index = 0

    def stop_saving_images(self) -> None:
        self._save_directory = None

    def set_up(self) -> bool:
        self._set_up = False
        if not self.sensor.is_set_up:
            logger.error("%s", SetupOrderError(f"viewer '{self.name}': set up sensor '{self.sensor.name}' first"))
            return False
        self._set_up = True
        return True

    def update(self, iteration: int) -> bool:
        if not self._set_up:
            logger.error("%s", SetupOrderError(f"Set up viewer '{self.name}' first"))
            return False

        image = self.render()
        if image is None:
            logger.warning("Viewer '%s': sensor '%s' has no frame yet", self.name, self.sensor.name)
            return True
        self._last_image = image

        if self.display:
            cv2.imshow(self.name, image)
        if self._save_directory is not None:
            path = self._save_directory / f"{self.name}_image_{self._save_index}.{self._save_image_type}"
            try:
                if not cv2.imwrite(str(path), image):
                    logger.warning("Viewer '%s': could not write %s", self.name, path)
            except (cv2.error, OSError) as exc:
                logger.warning("Viewer '%s': could not write %s: %s", self.name, path, exc)
            self._save_index += 1
        return True

    def render(self) -> Optional[np.ndarray]:
        """Copy of the current sensor frame with body axes drawn on it."""
        frame = self.sensor.image
        if frame is None:
            return None

        if frame.ndim == 2:
            image = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        elif frame.shape[2] == 4:
            image = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
        else:
            image = frame.copy()
        if image.dtype != np.uint8:
            image = cv2.convertScaleAbs(image, alpha=255.0 / max(1.0, float(image.max())))

        if self._renderer_geometry is not None:
            for body in self._renderer_geometry.bodies:
                self._draw_body(image, body)
        return image

    def _draw_body(self, image: np.ndarray, body: Body) -> None:
        intrinsics = self.sensor.intrinsics
        if intrinsics is None:
            return

        body2camera = self.sensor.world2camera_pose @ body.body2world_pose
        axes = np.vstack([np.zeros(3), np.eye(3) * self.axis_length])
        points = (body2camera[:3, :3] @ axes.T).T + body2camera[:3, 3]
        if np.any(points[:, 2] <= 0.0):
            return

        pixels = np.round(intrinsics.project(points)).astype(int)
        origin = (int(pixels[0, 0]), int(pixels[0, 1]))
        for tip, color in zip(pixels[1:], _AXIS_COLORS):
            _ = cv2.line(image, origin, (int(tip[0]), int(tip[1])), color, 2, cv2.LINE_AA)
        _ = cv2.putText(
            image, body.name, (origin[0] + 5, origin[1] - 5),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1, cv2.LINE_AA,
        )
