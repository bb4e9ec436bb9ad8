"""
Pipeline components consumed by the orchestrator.

Pose refinement, mesh rendering and detection are external collaborators;
this module fixes their interfaces (the *Like protocols) and provides the
minimal concrete classes the drivers need:

- Body: a named rigid object with a body2world pose
- RendererGeometry: registry of bodies shared by viewers
- Link: one body plus the modalities that measure it
- Optimizer: applies the corrections of a link's modalities to its body
- StaticDetector: resets a body to a pose read from a document
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Union

import numpy as np

from .errors import ConfigurationError, TrackingError
from .metadata import MetadataReader
from .pose import as_pose, identity_pose, invert_pose
from .sensor import Sensor

logger = logging.getLogger(__name__)


class ModalityLike(Protocol):
    name: str

    @property
    def sensors(self) -> Sequence[Sensor]: ...

    def set_up(self) -> bool: ...

    def calculate_correction(self, iteration: int) -> Optional[np.ndarray]:
        """Pose increment in the body frame, or None if nothing was measured."""
        ...


class ViewerLike(Protocol):
    name: str

    @property
    def sensors(self) -> Sequence[Sensor]: ...

    @property
    def renderer_geometry(self) -> Optional["RendererGeometry"]: ...

    def set_up(self) -> bool: ...

    def update(self, iteration: int) -> bool: ...


class OptimizerLike(Protocol):
    name: str

    @property
    def sensors(self) -> Sequence[Sensor]: ...

    @property
    def body(self) -> "Body": ...

    def set_up(self) -> bool: ...

    def run(self, iteration: int) -> bool: ...


class DetectorLike(Protocol):
    name: str

    @property
    def sensors(self) -> Sequence[Sensor]: ...

    def set_up(self) -> bool: ...

    def detect(self, iteration: int) -> bool: ...


def unique_sensors(groups: Iterable[Sequence[Sensor]]) -> List[Sensor]:
    """Flatten sensor lists, keeping the first occurrence of each object."""
    seen: set[int] = set()
    result: List[Sensor] = []
    for group in groups:
        for sensor in group:
            if id(sensor) not in seen:
                seen.add(id(sensor))
                result.append(sensor)
    return result


class Body:
    """
    Rigid object tracked by the pipeline.

    Optional document keys: geometry_path (resolved against the document),
    body2world_pose. ``world2body_pose`` is always the inverse of
    ``body2world_pose``.
    """

    def __init__(
        self,
        name: str,
        metafile_path: Optional[Union[str, Path]] = None,
        *,
        geometry_path: Optional[Union[str, Path]] = None,
        body2world_pose: Optional[np.ndarray] = None,
    ):
        self.name = name
        self.metafile_path = Path(metafile_path) if metafile_path is not None else None
        self.geometry_path = Path(geometry_path) if geometry_path is not None else None
        self._body2world_pose = identity_pose()
        self._world2body_pose = identity_pose()
        if body2world_pose is not None:
            self.body2world_pose = body2world_pose
        self._set_up = False

    @property
    def body2world_pose(self) -> np.ndarray:
        return self._body2world_pose.copy()

    @body2world_pose.setter
    def body2world_pose(self, pose: np.ndarray) -> None:
        self._body2world_pose = as_pose(pose).copy()
        self._world2body_pose = invert_pose(self._body2world_pose)

    @property
    def world2body_pose(self) -> np.ndarray:
        return self._world2body_pose.copy()

    @property
    def is_set_up(self) -> bool:
        return self._set_up

    def set_up(self) -> bool:
        self._set_up = False
        if self.metafile_path is not None:
            try:
                with MetadataReader(self.metafile_path) as reader:
                    self.geometry_path = reader.optional("geometry_path", "path", self.geometry_path)
                    pose = reader.optional("body2world_pose", "pose", None)
            except ConfigurationError as exc:
                logger.error("Body '%s' set up failed: %s", self.name, exc)
                return False
            if pose is not None:
                self.body2world_pose = pose
        self._set_up = True
        return True


class RendererGeometry:
    """Bodies available for rendering; each body is registered once."""

    def __init__(self, name: str):
        self.name = name
        self._bodies: Dict[str, Body] = {}
        self._set_up = False

    @property
    def bodies(self) -> List[Body]:
        return list(self._bodies.values())

    @property
    def is_set_up(self) -> bool:
        return self._set_up

    def add_body(self, body: Body) -> None:
        if body.name in self._bodies:
            raise ConfigurationError(f"body '{body.name}' already exists in renderer geometry '{self.name}'")
        self._bodies[body.name] = body
        self._set_up = False

    def remove_body(self, name: str) -> bool:
        return self._bodies.pop(name, None) is not None

    def set_up(self) -> bool:
        self._set_up = False
        for body in self._bodies.values():
            if not body.is_set_up and not body.set_up():
                logger.error("Renderer geometry '%s': body '%s' set up failed", self.name, body.name)
                return False
        self._set_up = True
        return True


class Link:
    """One body and the modalities measuring its pose."""

    def __init__(self, name: str, body: Body):
        self.name = name
        self.body = body
        self._modalities: Dict[str, ModalityLike] = {}

    @property
    def modalities(self) -> List[ModalityLike]:
        return list(self._modalities.values())

    @property
    def sensors(self) -> List[Sensor]:
        return unique_sensors(m.sensors for m in self._modalities.values())

    def add_modality(self, modality: ModalityLike) -> None:
        if modality.name in self._modalities:
            raise ConfigurationError(f"modality '{modality.name}' already exists in link '{self.name}'")
        self._modalities[modality.name] = modality

    def set_up(self) -> bool:
        for modality in self._modalities.values():
            if not modality.set_up():
                logger.error("Link '%s': modality '%s' set up failed", self.name, modality.name)
                return False
        return True


class Optimizer:
    """
    Refines the pose of one link's body per tracking cycle.

    Each of the ``n_iterations`` passes asks every modality for a body-frame
    pose increment and composes it onto ``body2world_pose``.
    """

    def __init__(self, name: str, link: Link, n_iterations: int = 1):
        if n_iterations < 1:
            raise ValueError("n_iterations must be >= 1")
        self.name = name
        self.link = link
        self.n_iterations = n_iterations

    @property
    def body(self) -> Body:
        return self.link.body

    @property
    def sensors(self) -> List[Sensor]:
        return self.link.sensors

    def set_up(self) -> bool:
        body = self.link.body
        if not body.is_set_up and not body.set_up():
            return False
        return self.link.set_up()

    def run(self, iteration: int) -> bool:
        body = self.link.body
        for _ in range(self.n_iterations):
            for modality in self.link.modalities:
                correction = modality.calculate_correction(iteration)
                if correction is None:
                    continue
                body.body2world_pose = body.body2world_pose @ as_pose(correction)
        return True


class StaticDetector:
    """
    Detector that resets its optimizer's body to a fixed pose.

    Required document key: body2world_pose.
    """

    def __init__(
        self,
        name: str,
        metafile_path: Optional[Union[str, Path]] = None,
        optimizer: Optional[OptimizerLike] = None,
        *,
        body2world_pose: Optional[np.ndarray] = None,
    ):
        if optimizer is None:
            raise ValueError("StaticDetector requires an optimizer")
        self.name = name
        self.metafile_path = Path(metafile_path) if metafile_path is not None else None
        self.optimizer = optimizer
        self._body2world_pose = as_pose(body2world_pose) if body2world_pose is not None else None
        self._set_up = False

    @property
    def sensors(self) -> List[Sensor]:
        return []

    @property
    def body2world_pose(self) -> Optional[np.ndarray]:
        return None if self._body2world_pose is None else self._body2world_pose.copy()

    def set_up(self) -> bool:
        self._set_up = False
        try:
            if self.metafile_path is not None:
                with MetadataReader(self.metafile_path) as reader:
                    self._body2world_pose = reader.required("body2world_pose", "pose")
            if self._body2world_pose is None:
                raise ConfigurationError(f"detector '{self.name}' has no body2world_pose")
        except TrackingError as exc:
            logger.error("Detector '%s' set up failed: %s", self.name, exc)
            return False
        self._set_up = True
        return True

    def detect(self, iteration: int) -> bool:
        if not self._set_up or self._body2world_pose is None:
            logger.error("Set up detector '%s' first", self.name)
            return False
        self.optimizer.body.body2world_pose = self._body2world_pose
        logger.debug("Detector '%s' reset body '%s' at iteration %d", self.name, self.optimizer.body.name, iteration)
        return True
