"""Selection of a sensor backend by name."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Type, Union

from .errors import ConfigurationError
from .loader import ImageLoaderSensor
from .sensor import Sensor
from .videocap import VideoCaptureSensor

SENSOR_TYPES: Dict[str, Type[Sensor]] = {
    VideoCaptureSensor.kind: VideoCaptureSensor,
    ImageLoaderSensor.kind: ImageLoaderSensor,
}


def create_sensor(kind: str, name: str, metafile_path: Union[str, Path]) -> Sensor:
    """
    Build a sensor of a known backend from its document.

    Raises:
        ConfigurationError: If ``kind`` is not one of SENSOR_TYPES
    """
    sensor_cls = SENSOR_TYPES.get(kind)
    if sensor_cls is None:
        valid = ", ".join(sorted(SENSOR_TYPES))
        raise ConfigurationError(f"unknown sensor backend '{kind}' (choose from: {valid})")
    return sensor_cls(name, metafile_path)
