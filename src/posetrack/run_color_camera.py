"""
Live tracking with a color camera.

Usage:
    python -m posetrack.run_color_camera camera.yaml body.yaml detector.yaml /tmp/track

Keys in the viewer window: d/x detection, t tracking, s stop, q quit.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .commands import COMMAND_HELP, CommandSource, KeyboardCommandSource
from .components import Body, Link, Optimizer, RendererGeometry, StaticDetector
from .log_setup import LOG_LEVELS, configure_logging
from .orchestrator import Orchestrator, OrchestratorConfig
from .videocap import VideoCaptureSensor
from .viewer import ImageViewer

logger = logging.getLogger(__name__)


def build_orchestrator(
    camera_metafile: Path,
    body_metafile: Path,
    detector_metafile: Path,
    temp_directory: Path,
    *,
    viewer_time_ms: int = 10,
    command_source: CommandSource | None = None,
    display: bool = True,
) -> Orchestrator:
    camera = VideoCaptureSensor("color_camera", camera_metafile)
    renderer_geometry = RendererGeometry("renderer_geometry")
    viewer = ImageViewer("color_viewer", camera, renderer_geometry, display=display)

    body = Body(body_metafile.stem, body_metafile)
    renderer_geometry.add_body(body)
    link = Link(f"{body.name}_link", body)
    optimizer = Optimizer(f"{body.name}_optimizer", link)
    detector = StaticDetector(f"{body.name}_detector", detector_metafile, optimizer)

    config = OrchestratorConfig(viewer_time_ms=viewer_time_ms, pose_log_dir=str(temp_directory))
    orchestrator = Orchestrator(
        "tracker",
        config,
        command_source if command_source is not None else KeyboardCommandSource(),
    )
    orchestrator.add_viewer(viewer)
    orchestrator.add_optimizer(optimizer)
    orchestrator.add_detector(detector)
    return orchestrator


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m posetrack.run_color_camera")
    parser.add_argument("camera_metafile", type=Path, help="VideoCapture camera document")
    parser.add_argument("body_metafile", type=Path, help="Body document")
    parser.add_argument("detector_metafile", type=Path, help="Static detector document")
    parser.add_argument("temp_directory", type=Path, help="Directory for logs and intermediate files")
    parser.add_argument("--viewer-time", type=int, default=10, help="Milliseconds to wait per cycle")
    parser.add_argument("--log-level", default="info", choices=sorted(LOG_LEVELS), help="Logging level")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code == 0 else -1

    configure_logging(args.log_level, args.log_file)

    orchestrator = build_orchestrator(
        args.camera_metafile,
        args.body_metafile,
        args.detector_metafile,
        args.temp_directory,
        viewer_time_ms=args.viewer_time,
    )
    if not orchestrator.set_up():
        print("error: tracker set up failed", file=sys.stderr)
        return -1

    print(COMMAND_HELP)
    if not orchestrator.run_process(start_in_tracking=True, single_pass=False):
        return -1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
