import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from posetrack.commands import Command, KEY_COMMANDS, ScriptedCommandSource, parse_command
from posetrack.components import Body, Link, Optimizer, RendererGeometry, StaticDetector
from posetrack.errors import ConfigurationError
from posetrack.metadata import Intrinsics, MetadataWriter
from posetrack.metrics import CycleMetrics
from posetrack.pose import as_pose, identity_pose, invert_pose, pose_to_dict, write_pose_txt
from posetrack.videocap import VideoCaptureSensor
from posetrack.viewer import ImageViewer


INTRINSICS = Intrinsics(fu=100.0, fv=100.0, ppu=32.0, ppv=24.0, width=64, height=48)


def _translation(tx: float, ty: float, tz: float) -> np.ndarray:
    pose = identity_pose()
    pose[:3, 3] = [tx, ty, tz]
    return pose


class BlackCapture:
    def isOpened(self) -> bool:
        return True

    def set(self, prop_id: int, value: float) -> bool:
        return True

    def read(self):
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self) -> None:
        pass


class ShiftModality:
    def __init__(self, name: str, step: np.ndarray):
        self.name = name
        self.step = step
        self.calls: list = []

    @property
    def sensors(self):
        return []

    def set_up(self) -> bool:
        return True

    def calculate_correction(self, iteration: int):
        self.calls.append(iteration)
        return self.step


def _camera() -> VideoCaptureSensor:
    return VideoCaptureSensor("color_camera", intrinsics=INTRINSICS, capture_factory=lambda d, a: BlackCapture())


# Poses

def test_as_pose_shapes():
    assert as_pose(list(range(16))).shape == (4, 4)
    top = np.arange(12, dtype=float).reshape(3, 4)
    pose = as_pose(top)
    assert np.allclose(pose[:3], top)
    assert np.allclose(pose[3], [0, 0, 0, 1])
    with pytest.raises(ValueError):
        as_pose(np.zeros((3, 3)))


def test_invert_pose():
    pose = _translation(1.0, -2.0, 0.5)
    assert np.allclose(invert_pose(pose) @ pose, np.eye(4))


def test_pose_to_dict():
    result = pose_to_dict(_translation(1.0, 2.0, 3.0))
    assert result["position"] == [1.0, 2.0, 3.0]
    assert np.allclose(result["quaternion"], [1.0, 0.0, 0.0, 0.0])


def test_write_pose_txt(tmp_path):
    path = write_pose_txt(tmp_path / "pose_out.txt", "PoseOut", _translation(0.0, 0.0, 0.25))

    lines = path.read_text().splitlines()
    assert lines[0] == "PoseOut"
    assert len(lines) == 5
    assert np.allclose(np.array([row.split() for row in lines[1:]], dtype=float), _translation(0.0, 0.0, 0.25))


# Bodies, links, optimizers, detectors

def test_body_reads_document(tmp_path):
    path = tmp_path / "body.yaml"
    with MetadataWriter(path) as writer:
        writer.write("geometry_path", "triangle.obj")
        writer.write("body2world_pose", _translation(0.0, 0.1, 0.5))

    body = Body("triangle", path)

    assert body.set_up()
    assert body.geometry_path == tmp_path / "triangle.obj"
    assert np.allclose(body.body2world_pose, _translation(0.0, 0.1, 0.5))
    assert np.allclose(body.world2body_pose, _translation(0.0, -0.1, -0.5))


def test_body_missing_document(tmp_path):
    body = Body("triangle", tmp_path / "missing.yaml")
    assert body.set_up() is False
    assert not body.is_set_up


def test_renderer_geometry_rejects_duplicate_bodies():
    geometry = RendererGeometry("renderer_geometry")
    geometry.add_body(Body("triangle"))
    with pytest.raises(ConfigurationError):
        geometry.add_body(Body("triangle"))
    assert geometry.remove_body("triangle")
    assert not geometry.remove_body("triangle")


def test_link_rejects_duplicate_modalities():
    link = Link("link", Body("triangle"))
    link.add_modality(ShiftModality("region", identity_pose()))
    with pytest.raises(ConfigurationError):
        link.add_modality(ShiftModality("region", identity_pose()))


def test_optimizer_composes_corrections():
    body = Body("triangle", body2world_pose=_translation(0.0, 0.0, 1.0))
    link = Link("link", body)
    modality = ShiftModality("region", _translation(0.01, 0.0, 0.0))
    link.add_modality(modality)
    optimizer = Optimizer("optimizer", link, n_iterations=3)

    assert optimizer.set_up()
    assert optimizer.run(5)

    assert modality.calls == [5, 5, 5]
    assert np.allclose(body.body2world_pose, _translation(0.03, 0.0, 1.0))


def test_optimizer_rejects_zero_iterations():
    with pytest.raises(ValueError):
        Optimizer("optimizer", Link("link", Body("triangle")), n_iterations=0)


def test_static_detector(tmp_path):
    path = tmp_path / "detector.yaml"
    with MetadataWriter(path) as writer:
        writer.write("body2world_pose", _translation(0.0, 0.0, 0.4))
    body = Body("triangle")
    optimizer = Optimizer("optimizer", Link("link", body))
    detector = StaticDetector("detector", path, optimizer)

    assert detector.detect(0) is False
    assert detector.set_up()
    assert detector.detect(0)
    assert np.allclose(body.body2world_pose, _translation(0.0, 0.0, 0.4))


def test_static_detector_requires_pose(tmp_path):
    path = tmp_path / "detector.yaml"
    with MetadataWriter(path) as writer:
        writer.write("threshold", 0.5)
    detector = StaticDetector("detector", path, Optimizer("optimizer", Link("link", Body("triangle"))))

    assert detector.set_up() is False


# Viewer

def test_viewer_requires_sensor_set_up():
    viewer = ImageViewer("viewer", _camera(), display=False)
    assert viewer.set_up() is False


def test_viewer_draws_bodies_without_touching_frame(tmp_path):
    camera = _camera()
    geometry = RendererGeometry("renderer_geometry")
    geometry.add_body(Body("triangle", body2world_pose=_translation(0.0, 0.0, 0.5)))
    viewer = ImageViewer("viewer", camera, geometry, display=False)
    viewer.start_saving_images(tmp_path / "frames")

    assert camera.set_up()
    assert viewer.set_up()
    assert viewer.update(0)
    assert viewer.update(1)

    assert viewer.last_image.shape == (48, 64, 3)
    assert viewer.last_image.any()
    assert not camera.image.any()
    assert (tmp_path / "frames" / "viewer_image_0.png").is_file()
    assert (tmp_path / "frames" / "viewer_image_1.png").is_file()

    viewer.stop_saving_images()
    assert not viewer.is_saving_images


def test_viewer_rejects_unsupported_image_type(tmp_path):
    viewer = ImageViewer("viewer", _camera(), display=False)

    with pytest.raises(ConfigurationError, match="foo"):
        viewer.start_saving_images(tmp_path / "frames", "foo")
    assert not viewer.is_saving_images


def test_viewer_survives_image_write_error(tmp_path, monkeypatch):
    camera = _camera()
    viewer = ImageViewer("viewer", camera, display=False)
    viewer.start_saving_images(tmp_path / "frames")
    assert camera.set_up()
    assert viewer.set_up()

    def broken_imwrite(path, image):
        raise cv2.error("encoder failed")

    monkeypatch.setattr(cv2, "imwrite", broken_imwrite)
    assert viewer.update(0)


class GrayCapture(BlackCapture):
    def read(self):
        return True, np.zeros((48, 64), dtype=np.uint16)


def test_viewer_converts_grayscale():
    camera = VideoCaptureSensor("gray", intrinsics=INTRINSICS, capture_factory=lambda d, a: GrayCapture())
    viewer = ImageViewer("viewer", camera, display=False)
    assert camera.set_up()

    assert viewer.set_up()
    rendered = viewer.render()
    assert rendered.shape == (48, 64, 3)
    assert rendered.dtype == np.uint8


# Commands and metrics

def test_parse_command():
    assert parse_command("d") is Command.DETECT
    assert parse_command("X") is Command.DETECT_AND_TRACK
    assert parse_command(Command.STOP) is Command.STOP
    assert parse_command("z") is None
    assert parse_command(None) is None
    assert set(KEY_COMMANDS) == {"d", "x", "t", "s", "q"}


def test_scripted_source_ends_with_quit():
    source = ScriptedCommandSource(["t", None, Command.STOP])

    assert source.poll(1) is Command.TRACK
    assert source.poll(1) is None
    assert source.poll(1) is Command.STOP
    assert source.poll(1) is Command.QUIT
    assert source.poll_count == 4


def test_cycle_metrics_summary():
    metrics = CycleMetrics()
    metrics.record_refresh("color_camera", True)
    metrics.record_refresh("color_camera", False)
    metrics.record_cycle("TRACKING")
    metrics.record_cycle("TRACKING")
    metrics.record_cycle("STOPPED")

    summary = metrics.get_summary()

    assert summary["cycles"] == 3
    assert summary["mode_cycles"] == {"TRACKING": 2, "STOPPED": 1}
    assert summary["sensors"]["color_camera"] == {"refresh_count": 2, "failure_count": 1}
    assert metrics.refresh_count("color_camera") == 2
    assert metrics.cycles_in("WAITING") == 0

    metrics.reset()
    assert metrics.get_summary()["cycles"] == 0
