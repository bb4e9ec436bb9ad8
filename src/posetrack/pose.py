"""
Rigid transform helpers.

Poses are 4x4 homogeneous float64 matrices mapping points from the frame
named first to the frame named second (camera2world maps camera-space
points into world space).
"""

from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
from scipy import linalg
from scipy.spatial.transform import Rotation


def identity_pose() -> np.ndarray:
    return np.eye(4, dtype=np.float64)


def as_pose(value: Any) -> np.ndarray:
    """
    Coerce a 4x4, 3x4 or flat 16-element value into a 4x4 pose.

    Raises:
        ValueError: If the value cannot be interpreted as a pose
    """
    arr = np.array(value, dtype=np.float64)
    if arr.size == 16:
        return arr.reshape(4, 4)
    if arr.shape == (3, 4):
        pose = identity_pose()
        pose[:3, :] = arr
        return pose
    raise ValueError(f"pose must be 4x4, 3x4 or 16 values, got shape {arr.shape}")


def invert_pose(pose: np.ndarray) -> np.ndarray:
    return linalg.inv(as_pose(pose))


def pose_to_dict(pose: np.ndarray) -> Dict[str, Any]:
    """Position and [w, x, y, z] quaternion of a pose."""
    pose = as_pose(pose)
    x, y, z, w = Rotation.from_matrix(pose[:3, :3]).as_quat()
    return {
        "position": pose[:3, 3].tolist(),
        "quaternion": [float(w), float(x), float(y), float(z)],
    }


def write_pose_txt(path: Union[str, Path], name: str, pose: np.ndarray) -> Path:
    """
    Write a named pose as plain text: the name, then the four matrix rows.

    Returns:
        Path of the written file
    """
    path = Path(path)
    pose = as_pose(pose)
    lines = [name]
    lines.extend(" ".join(f"{v:.9g}" for v in row) for row in pose)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
