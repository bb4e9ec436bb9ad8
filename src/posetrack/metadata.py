"""
Metadata documents describing sensors and pipeline components.

Provides functionality to:
- Read required and optional keys from OpenCV FileStorage YAML documents
- Write resolved configurations back in the same format
- Resolve relative paths against the directory of the document naming them
- Describe camera intrinsics and image persistence settings

Documents look like:

    %YAML:1.0
    ---
    device_id: 0
    api_id: 0
    intrinsics:
       f_u: 615.0
       f_v: 615.0
       pp_x: 320.0
       pp_y: 240.0
       width: 640
       height: 480
    camera2world_pose: !!opencv-matrix
       rows: 4
       cols: 4
       dt: d
       data: [ 1., 0., 0., 0., 0., 1., 0., 0., 0., 0., 1., 0., 0., 0., 0., 1. ]
    save_images: 0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Union

import cv2
import numpy as np

from .errors import ConfigurationError
from .pose import as_pose, identity_pose

PathLike = Union[str, Path]

_MISSING = object()


def resolve_relative_path(metafile_path: PathLike, path: PathLike) -> Path:
    """
    Resolve a path named inside a document.

    Relative paths are taken relative to the document's own directory;
    absolute paths are returned unchanged.
    """
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return Path(metafile_path).parent / candidate


def check_image_type(image_type: str) -> str:
    """
    Reject image extensions OpenCV cannot encode.

    Raises:
        ConfigurationError: If cv2 has no writer for ``image_type``
    """
    if not image_type or not cv2.haveImageWriter(f"image.{image_type}"):
        raise ConfigurationError(f"unsupported image type: '{image_type}'")
    return image_type


@dataclass
class Intrinsics:
    """Pinhole intrinsics and image resolution."""
    fu: float
    fv: float
    ppu: float
    ppv: float
    width: int
    height: int

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array([
            [self.fu, 0.0, self.ppu],
            [0.0, self.fv, self.ppv],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.width, self.height)

    def project(self, points: np.ndarray) -> np.ndarray:
        """
        Project camera-space points to pixel coordinates.

        Args:
            points: Nx3 array of points in the camera frame (z forward)

        Returns:
            Nx2 array of (u, v) pixel coordinates
        """
        pts = np.atleast_2d(np.asarray(points, dtype=np.float64))
        z = pts[:, 2]
        u = self.fu * pts[:, 0] / z + self.ppu
        v = self.fv * pts[:, 1] / z + self.ppv
        return np.stack([u, v], axis=1)


def _read_int(node: cv2.FileNode) -> int:
    if node.isInt() or node.isReal():
        return int(node.real())
    if node.isString():
        return int(node.string())
    raise ValueError("expected an integer")


def _read_float(node: cv2.FileNode) -> float:
    if node.isInt() or node.isReal():
        return float(node.real())
    if node.isString():
        return float(node.string())
    raise ValueError("expected a number")


def _read_bool(node: cv2.FileNode) -> bool:
    if node.isInt() or node.isReal():
        return bool(int(node.real()))
    if node.isString():
        text = node.string().strip().lower()
        if text in ("true", "yes", "on", "1"):
            return True
        if text in ("false", "no", "off", "0"):
            return False
    raise ValueError("expected a boolean")


def _read_str(node: cv2.FileNode) -> str:
    if node.isString():
        return node.string()
    raise ValueError("expected a string")


def _read_intrinsics(node: cv2.FileNode) -> Intrinsics:
    if not node.isMap():
        raise ValueError("expected a map with f_u, f_v, pp_x, pp_y, width, height")
    values: Dict[str, Any] = {}
    for key, reader in (
        ("f_u", _read_float),
        ("f_v", _read_float),
        ("pp_x", _read_float),
        ("pp_y", _read_float),
        ("width", _read_int),
        ("height", _read_int),
    ):
        child = node.getNode(key)
        if child.empty() or child.isNone():
            raise ValueError(f"missing '{key}'")
        values[key] = reader(child)
    return Intrinsics(
        fu=values["f_u"],
        fv=values["f_v"],
        ppu=values["pp_x"],
        ppv=values["pp_y"],
        width=values["width"],
        height=values["height"],
    )


def _read_pose(node: cv2.FileNode) -> np.ndarray:
    if node.isSeq():
        values = []
        for i in range(node.size()):
            child = node.at(i)
            if child.isSeq():
                values.extend(child.at(j).real() for j in range(child.size()))
            else:
                values.append(child.real())
        return as_pose(values)
    mat = node.mat()
    if mat is None:
        raise ValueError("expected an opencv-matrix or a sequence of 16 numbers")
    return as_pose(mat)


_READERS: Dict[str, Callable[[cv2.FileNode], Any]] = {
    "int": _read_int,
    "float": _read_float,
    "bool": _read_bool,
    "str": _read_str,
    "path": _read_str,
    "intrinsics": _read_intrinsics,
    "pose": _read_pose,
}


class MetadataReader:
    """
    Read typed keys from a metadata document.

    Usage:
        with MetadataReader("camera.yaml") as reader:
            device_id = reader.required("device_id", "int")
            pose = reader.optional("camera2world_pose", "pose", identity_pose())
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        if not self.path.is_file():
            raise ConfigurationError(f"metadata file not found: {self.path}")
        try:
            self._fs = cv2.FileStorage(str(self.path), cv2.FILE_STORAGE_READ)
        except cv2.error as exc:
            raise ConfigurationError(f"could not parse {self.path}: {exc}") from exc
        if not self._fs.isOpened():
            raise ConfigurationError(f"could not open {self.path}")

    def __enter__(self) -> "MetadataReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._fs.release()

    def has(self, key: str) -> bool:
        node = self._fs.getNode(key)
        return not (node.empty() or node.isNone())

    def required(self, key: str, kind: str) -> Any:
        """
        Read a key that must be present.

        Raises:
            ConfigurationError: If the key is absent or malformed
        """
        value = self._read(key, kind, _MISSING)
        if value is _MISSING:
            raise ConfigurationError(f"required key '{key}' missing from {self.path}")
        return value

    def optional(self, key: str, kind: str, default: Any) -> Any:
        """Read a key, falling back to ``default`` when it is absent."""
        return self._read(key, kind, default)

    def _read(self, key: str, kind: str, default: Any) -> Any:
        reader = _READERS.get(kind)
        if reader is None:
            raise ValueError(f"unknown metadata kind: {kind}")

        if not self.has(key):
            if kind == "path" and default is not _MISSING and default is not None:
                return resolve_relative_path(self.path, default)
            return default

        try:
            value = reader(self._fs.getNode(key))
        except (ValueError, cv2.error) as exc:
            raise ConfigurationError(f"invalid value for '{key}' in {self.path}: {exc}") from exc

        if kind == "path":
            return resolve_relative_path(self.path, value)
        return value


class MetadataWriter:
    """
    Write a metadata document readable by MetadataReader.

    Usage:
        with MetadataWriter(save_dir / "camera.yaml") as writer:
            writer.write("device_id", 0)
            writer.write("intrinsics", intrinsics)
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fs = cv2.FileStorage(str(self.path), cv2.FILE_STORAGE_WRITE)
        if not self._fs.isOpened():
            raise ConfigurationError(f"could not open {self.path} for writing")

    def __enter__(self) -> "MetadataWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._fs.release()

    def write(self, key: str, value: Any) -> None:
        if isinstance(value, Intrinsics):
            self._fs.startWriteStruct(key, cv2.FileNode_MAP)
            self._fs.write("f_u", float(value.fu))
            self._fs.write("f_v", float(value.fv))
            self._fs.write("pp_x", float(value.ppu))
            self._fs.write("pp_y", float(value.ppv))
            self._fs.write("width", int(value.width))
            self._fs.write("height", int(value.height))
            self._fs.endWriteStruct()
        elif isinstance(value, np.ndarray):
            self._fs.write(key, np.ascontiguousarray(value, dtype=np.float64))
        elif isinstance(value, bool):
            # FileStorage has no boolean type
            self._fs.write(key, int(value))
        elif isinstance(value, (int, np.integer)):
            self._fs.write(key, int(value))
        elif isinstance(value, (float, np.floating)):
            self._fs.write(key, float(value))
        elif isinstance(value, (str, Path)):
            self._fs.write(key, str(value))
        else:
            raise TypeError(f"cannot write {type(value).__name__} for key '{key}'")


@dataclass
class SaveSettings:
    """Persistence of a sensor's configuration and captured images."""
    save_images: bool = False
    save_directory: Path = field(default_factory=lambda: Path("."))
    save_index: int = 0
    save_image_type: str = "png"

    @classmethod
    def read(cls, reader: MetadataReader) -> "SaveSettings":
        return cls(
            save_images=reader.optional("save_images", "bool", False),
            save_directory=reader.optional("save_directory", "path", Path(".")),
            save_index=reader.optional("save_index", "int", 0),
            save_image_type=check_image_type(reader.optional("save_image_type", "str", "png")),
        )

    def write(self, writer: MetadataWriter) -> None:
        # Absolute, so the saved document does not depend on the working directory
        writer.write("save_directory", Path(self.save_directory).resolve())
        writer.write("save_index", self.save_index)
        writer.write("save_image_type", self.save_image_type)
        writer.write("save_images", self.save_images)

    def image_path(self, name: str) -> Path:
        return self.save_directory / f"{name}_image_{self.save_index}.{self.save_image_type}"


@dataclass
class VideoCaptureMetadata:
    """Document of a live capture device."""
    device_id: int
    api_id: int
    intrinsics: Intrinsics
    camera2world_pose: np.ndarray = field(default_factory=identity_pose)
    save: SaveSettings = field(default_factory=SaveSettings)

    @classmethod
    def read(cls, path: PathLike) -> "VideoCaptureMetadata":
        with MetadataReader(path) as reader:
            return cls(
                device_id=reader.required("device_id", "int"),
                api_id=reader.required("api_id", "int"),
                intrinsics=reader.required("intrinsics", "intrinsics"),
                camera2world_pose=reader.optional("camera2world_pose", "pose", identity_pose()),
                save=SaveSettings.read(reader),
            )

    def write(self, path: PathLike) -> Path:
        with MetadataWriter(path) as writer:
            writer.write("device_id", self.device_id)
            writer.write("api_id", self.api_id)
            writer.write("intrinsics", self.intrinsics)
            writer.write("camera2world_pose", as_pose(self.camera2world_pose))
            self.save.write(writer)
            return writer.path


@dataclass
class ImageLoaderMetadata:
    """Document of an offline image sequence."""
    load_directory: Path
    intrinsics: Intrinsics
    image_name_pre: str = ""
    load_index: int = 0
    n_leading_zeros: int = 0
    image_name_post: str = ""
    load_image_type: str = "png"
    camera2world_pose: np.ndarray = field(default_factory=identity_pose)
    save: SaveSettings = field(default_factory=SaveSettings)

    @classmethod
    def read(cls, path: PathLike) -> "ImageLoaderMetadata":
        with MetadataReader(path) as reader:
            return cls(
                load_directory=reader.required("load_directory", "path"),
                intrinsics=reader.required("intrinsics", "intrinsics"),
                image_name_pre=reader.optional("image_name_pre", "str", ""),
                load_index=reader.optional("load_index", "int", 0),
                n_leading_zeros=reader.optional("n_leading_zeros", "int", 0),
                image_name_post=reader.optional("image_name_post", "str", ""),
                load_image_type=reader.optional("load_image_type", "str", "png"),
                camera2world_pose=reader.optional("camera2world_pose", "pose", identity_pose()),
                save=SaveSettings.read(reader),
            )

    def write(self, path: PathLike) -> Path:
        with MetadataWriter(path) as writer:
            writer.write("load_directory", Path(self.load_directory).resolve())
            writer.write("intrinsics", self.intrinsics)
            writer.write("image_name_pre", self.image_name_pre)
            writer.write("load_index", self.load_index)
            writer.write("n_leading_zeros", self.n_leading_zeros)
            writer.write("image_name_post", self.image_name_post)
            writer.write("load_image_type", self.load_image_type)
            writer.write("camera2world_pose", as_pose(self.camera2world_pose))
            self.save.write(writer)
            return writer.path

