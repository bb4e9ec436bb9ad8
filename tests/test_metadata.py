import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from posetrack.errors import ConfigurationError
from posetrack.metadata import (
    ImageLoaderMetadata,
    Intrinsics,
    MetadataReader,
    MetadataWriter,
    SaveSettings,
    VideoCaptureMetadata,
    resolve_relative_path,
)
from posetrack.pose import as_pose, identity_pose


INTRINSICS = Intrinsics(fu=615.0, fv=615.0, ppu=320.0, ppv=240.0, width=640, height=480)

MINIMAL_CAMERA_DOC = """%YAML:1.0
---
device_id: 2
api_id: 200
intrinsics:
  f_u: 615.0
  f_v: 616.0
  pp_x: 320.0
  pp_y: 240.0
  width: 640
  height: 480
"""


def _pose(tx: float, ty: float, tz: float) -> np.ndarray:
    pose = identity_pose()
    pose[:3, 3] = [tx, ty, tz]
    return pose


def test_resolve_relative_path(tmp_path):
    doc = tmp_path / "config" / "camera.yaml"
    assert resolve_relative_path(doc, "images") == tmp_path / "config" / "images"
    assert resolve_relative_path(doc, tmp_path / "abs") == tmp_path / "abs"


def test_reader_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        MetadataReader(tmp_path / "missing.yaml")


def test_minimal_document_uses_defaults(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC)

    meta = VideoCaptureMetadata.read(path)

    assert meta.device_id == 2
    assert meta.api_id == 200
    assert meta.intrinsics == Intrinsics(615.0, 616.0, 320.0, 240.0, 640, 480)
    assert np.allclose(meta.camera2world_pose, np.eye(4))
    assert meta.save.save_images is False
    assert meta.save.save_directory == tmp_path
    assert meta.save.save_index == 0
    assert meta.save.save_image_type == "png"


def test_relative_save_directory_resolves_against_document(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC + "save_images: 1\nsave_directory: \"out\"\n")

    meta = VideoCaptureMetadata.read(path)

    assert meta.save.save_images is True
    assert meta.save.save_directory == tmp_path / "out"


def test_absolute_save_directory_is_kept(tmp_path):
    target = tmp_path / "elsewhere"
    path = tmp_path / "sub" / "camera.yaml"
    path.parent.mkdir()
    path.write_text(MINIMAL_CAMERA_DOC + f"save_directory: \"{target}\"\n")

    meta = VideoCaptureMetadata.read(path)

    assert meta.save.save_directory == target


def test_missing_required_key_raises(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC.replace("device_id: 2\n", ""))

    with pytest.raises(ConfigurationError, match="device_id"):
        VideoCaptureMetadata.read(path)


def test_invalid_value_raises(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC.replace("device_id: 2", "device_id: \"abc\""))

    with pytest.raises(ConfigurationError):
        VideoCaptureMetadata.read(path)


def test_incomplete_intrinsics_raise(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC.replace("  height: 480\n", ""))

    with pytest.raises(ConfigurationError, match="intrinsics"):
        VideoCaptureMetadata.read(path)


def test_video_capture_metadata_round_trip(tmp_path):
    meta = VideoCaptureMetadata(
        device_id=1,
        api_id=0,
        intrinsics=INTRINSICS,
        camera2world_pose=_pose(0.1, -0.2, 0.3),
        save=SaveSettings(save_images=True, save_directory=tmp_path / "saved", save_index=4, save_image_type="jpg"),
    )
    path = meta.write(tmp_path / "camera.yaml")

    loaded = VideoCaptureMetadata.read(path)

    assert loaded.device_id == 1
    assert loaded.api_id == 0
    assert loaded.intrinsics == INTRINSICS
    assert np.allclose(loaded.camera2world_pose, meta.camera2world_pose)
    assert loaded.save == meta.save


def test_image_loader_metadata_round_trip(tmp_path):
    meta = ImageLoaderMetadata(
        load_directory=tmp_path / "images",
        intrinsics=INTRINSICS,
        image_name_pre="frame_",
        load_index=7,
        n_leading_zeros=4,
        image_name_post="_color",
        load_image_type="jpg",
        camera2world_pose=_pose(1.0, 2.0, 3.0),
    )
    path = meta.write(tmp_path / "loader.yaml")

    loaded = ImageLoaderMetadata.read(path)

    assert loaded.load_directory == tmp_path / "images"
    assert loaded.image_name_pre == "frame_"
    assert loaded.load_index == 7
    assert loaded.n_leading_zeros == 4
    assert loaded.image_name_post == "_color"
    assert loaded.load_image_type == "jpg"
    assert np.allclose(loaded.camera2world_pose, meta.camera2world_pose)


def test_writer_rejects_unknown_types(tmp_path):
    with MetadataWriter(tmp_path / "doc.yaml") as writer:
        with pytest.raises(TypeError):
            writer.write("values", {"a": 1})


def test_reader_optional_and_has(tmp_path):
    path = tmp_path / "doc.yaml"
    with MetadataWriter(path) as writer:
        writer.write("enabled", True)
        writer.write("pose", as_pose(_pose(0.0, 0.0, 1.0)))

    with MetadataReader(path) as reader:
        assert reader.has("enabled")
        assert not reader.has("missing")
        assert reader.required("enabled", "bool") is True
        assert reader.optional("missing", "int", 5) == 5
        assert np.allclose(reader.required("pose", "pose"), _pose(0.0, 0.0, 1.0))


def test_intrinsics_projection():
    points = np.array([[0.0, 0.0, 1.0], [0.1, -0.1, 0.5]])
    pixels = INTRINSICS.project(points)

    assert np.allclose(pixels[0], [320.0, 240.0])
    assert np.allclose(pixels[1], [320.0 + 615.0 * 0.2, 240.0 - 615.0 * 0.2])
    assert INTRINSICS.resolution == (640, 480)
    assert INTRINSICS.camera_matrix[0, 0] == 615.0


def test_save_settings_image_path(tmp_path):
    save = SaveSettings(save_images=True, save_directory=tmp_path, save_index=3, save_image_type="bmp")
    assert save.image_path("color_camera") == tmp_path / "color_camera_image_3.bmp"


def test_unsupported_save_image_type_raises(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(MINIMAL_CAMERA_DOC + "save_image_type: \"foo\"\n")

    with pytest.raises(ConfigurationError, match="foo"):
        VideoCaptureMetadata.read(path)


def test_written_paths_are_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    meta = ImageLoaderMetadata(
        load_directory=Path("images"),
        intrinsics=INTRINSICS,
        save=SaveSettings(save_directory=Path("saved")),
    )
    path = meta.write(tmp_path / "out" / "loader.yaml")

    loaded = ImageLoaderMetadata.read(path)

    assert loaded.load_directory == (tmp_path / "images").resolve()
    assert loaded.save.save_directory == (tmp_path / "saved").resolve()
