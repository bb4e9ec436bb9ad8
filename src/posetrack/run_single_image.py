"""
Offline tracking of a single image.

Usage:
    python -m posetrack.run_single_image /data/sequence

BASE_DIR holds color_camera.yaml (image loader), body.yaml, detector.yaml
and optionally region_model.yaml / region_modality.yaml. One detection and
one tracking cycle are run, the rendered frames are saved into BASE_DIR and
the final body pose is written to BASE_DIR/pose_out.txt.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from .commands import COMMAND_HELP, ScriptedCommandSource
from .components import Body, Link, ModalityLike, Optimizer, RendererGeometry, StaticDetector
from .loader import ImageLoaderSensor
from .log_setup import LOG_LEVELS, configure_logging
from .orchestrator import Orchestrator, OrchestratorConfig
from .pose import write_pose_txt
from .sensor import Sensor
from .viewer import ImageViewer

logger = logging.getLogger(__name__)

CAMERA_FILE = "color_camera.yaml"
BODY_FILE = "body.yaml"
DETECTOR_FILE = "detector.yaml"
REGION_MODEL_FILE = "region_model.yaml"
REGION_MODALITY_FILE = "region_modality.yaml"
POSE_OUT_FILE = "pose_out.txt"
POSE_OUT_NAME = "PoseOut"

# (name, metafile_path, body, sensor) -> modality
ModalityFactory = Callable[[str, Path, Body, Sensor], ModalityLike]


def build_orchestrator(
    base_directory: Path,
    *,
    display: bool = False,
    modality_factory: Optional[ModalityFactory] = None,
) -> Orchestrator:
    """
    Assemble the offline pipeline from the documents in ``base_directory``.

    Raises:
        FileNotFoundError: If a required document is missing
    """
    for filename in (CAMERA_FILE, BODY_FILE, DETECTOR_FILE):
        if not (base_directory / filename).is_file():
            raise FileNotFoundError(base_directory / filename)

    camera = ImageLoaderSensor("color_camera", base_directory / CAMERA_FILE)
    renderer_geometry = RendererGeometry("renderer_geometry")
    viewer = ImageViewer("color_viewer", camera, renderer_geometry, display=display)
    viewer.start_saving_images(base_directory)

    body = Body("body", base_directory / BODY_FILE)
    renderer_geometry.add_body(body)
    link = Link("body_link", body)

    region_modality_path = base_directory / REGION_MODALITY_FILE
    if region_modality_path.is_file():
        if modality_factory is not None:
            link.add_modality(modality_factory("region_modality", region_modality_path, body, camera))
        else:
            logger.info("%s present but no region modality is available; tracking keeps the detected pose",
                        region_modality_path)
    if (base_directory / REGION_MODEL_FILE).is_file():
        logger.debug("Region model document: %s", base_directory / REGION_MODEL_FILE)

    optimizer = Optimizer("body_optimizer", link)
    detector = StaticDetector("body_detector", base_directory / DETECTOR_FILE, optimizer)

    # Single pass ignores commands; the scripted source only provides the delay
    orchestrator = Orchestrator("tracker", OrchestratorConfig(), ScriptedCommandSource())
    orchestrator.add_viewer(viewer)
    orchestrator.add_optimizer(optimizer)
    orchestrator.add_detector(detector)
    return orchestrator


def run(
    base_directory: Path,
    *,
    display: bool = False,
    modality_factory: Optional[ModalityFactory] = None,
) -> Optional[Path]:
    """
    Run one detection and one tracking cycle.

    Returns:
        Path of the written pose file, or None if set up or the run failed
    """
    try:
        orchestrator = build_orchestrator(base_directory, display=display, modality_factory=modality_factory)
    except FileNotFoundError as exc:
        logger.error("Missing document: %s", exc)
        return None

    if not orchestrator.set_up():
        return None
    print(COMMAND_HELP)
    if not orchestrator.run_process(start_in_tracking=True, single_pass=True):
        return None

    pose = orchestrator.get_poses()["body"]
    return write_pose_txt(base_directory / POSE_OUT_FILE, POSE_OUT_NAME, pose)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m posetrack.run_single_image")
    parser.add_argument("base_directory", type=Path, help="Directory with the pipeline documents")
    parser.add_argument("--display", action="store_true", help="Show the rendered frames")
    parser.add_argument("--log-level", default="info", choices=sorted(LOG_LEVELS), help="Logging level")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code == 0 else -1

    configure_logging(args.log_level, args.log_file)

    pose_file = run(args.base_directory, display=args.display)
    if pose_file is None:
        print("error: single image run failed", file=sys.stderr)
        return -1
    print(f"Pose written to {pose_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
