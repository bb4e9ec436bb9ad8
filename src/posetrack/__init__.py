"""
Orchestration core of a model-based 6-DoF object pose tracker.

Modules:
- errors: Exception taxonomy
- pose: 4x4 pose helpers and pose text output
- metadata: YAML metadata documents (cv2.FileStorage)
- sensor: Sensor contract and frame buffer
- videocap: Live capture through cv2.VideoCapture
- loader: Offline replay of image sequences
- backends: Sensor backend selection by name
- components: Body, renderer geometry, link, optimizer, static detector
- viewer: Image viewer drawing body axes
- commands: Keyboard and scripted command sources
- metrics: Cycle and refresh metrics
- pose_log: JSONL pose recording
- orchestrator: Component registry and tracking state machine
"""

from .errors import (
    TrackingError, ConfigurationError, DeviceError, CaptureError, EndOfSequenceError, SetupOrderError
)
from .pose import identity_pose, as_pose, invert_pose, pose_to_dict, write_pose_txt
from .metadata import (
    Intrinsics, MetadataReader, MetadataWriter, SaveSettings,
    VideoCaptureMetadata, ImageLoaderMetadata, resolve_relative_path
)
from .sensor import Sensor, STALE_FRAME_RETAIN, STALE_FRAME_FAIL
from .videocap import VideoCaptureSensor
from .loader import ImageLoaderSensor
from .backends import SENSOR_TYPES, create_sensor
from .components import Body, RendererGeometry, Link, Optimizer, StaticDetector
from .viewer import ImageViewer
from .commands import (
    Command, CommandSource, ScriptedCommandSource, KeyboardCommandSource, parse_command
)
from .metrics import CycleMetrics
from .pose_log import PoseLog
from .orchestrator import Mode, Orchestrator, OrchestratorConfig

__all__ = [
    # Errors
    "TrackingError",
    "ConfigurationError",
    "DeviceError",
    "CaptureError",
    "EndOfSequenceError",
    "SetupOrderError",
    # Poses
    "identity_pose",
    "as_pose",
    "invert_pose",
    "pose_to_dict",
    "write_pose_txt",
    # Metadata
    "Intrinsics",
    "MetadataReader",
    "MetadataWriter",
    "SaveSettings",
    "VideoCaptureMetadata",
    "ImageLoaderMetadata",
    "resolve_relative_path",
    # Sensors
    "Sensor",
    "STALE_FRAME_RETAIN",
    "STALE_FRAME_FAIL",
    "VideoCaptureSensor",
    "ImageLoaderSensor",
    "SENSOR_TYPES",
    "create_sensor",
    # Components
    "Body",
    "RendererGeometry",
    "Link",
    "Optimizer",
    "StaticDetector",
    "ImageViewer",
    # Commands
    "Command",
    "CommandSource",
    "ScriptedCommandSource",
    "KeyboardCommandSource",
    "parse_command",
    # Orchestrator
    "CycleMetrics",
    "PoseLog",
    "Mode",
    "Orchestrator",
    "OrchestratorConfig",
]
