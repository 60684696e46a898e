"""Occluder boxes — opaque scene geometry (benches, walls, shelving).

An occluder only contributes its world-space AABB to the spatial index. Any
ray touching that AABB is treated as fully blocked; occluders never add a
partial attenuation length.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.geometry import AABB
from core_engine.transform import DegenerateTransformError, Transform, transform_points

logger = logging.getLogger(__name__)


class OccluderBox:
    """Opaque box whose local extent spans ``[0, size]`` from its corner.

    Parameters
    ----------
    name : str
        Identifier used in logs.
    transform : Transform, optional
        World transform; owned by the scene layer.
    size : array-like
        Width, height and depth in local units. Shape: (3,).
    """

    def __init__(
        self,
        name: str = "",
        transform: Transform | None = None,
        size: np.ndarray | tuple[float, float, float] = (1.0, 1.0, 1.0),
    ) -> None:
        size = np.array(size, dtype=np.float64).reshape(3)
        if np.any(size < 0.0):
            raise ValueError(f"Occluder '{name}' has negative size {size}")
        self.name = name
        self.transform = transform if transform is not None else Transform()
        self.size = size

    def __repr__(self) -> str:
        return f"OccluderBox(name={self.name!r}, size={self.size.tolist()})"

    def bounding_box(self) -> AABB:
        """World-space AABB, recomputed from the current transform.

        Raises
        ------
        DegenerateTransformError
            If the transform yields non-finite coordinates.
        """
        corners = transform_points(self.transform.matrix(), AABB(np.zeros(3), self.size).corners())
        if not np.all(np.isfinite(corners)):
            raise DegenerateTransformError(f"Occluder '{self.name}' has a non-finite transform")
        return AABB.from_points(corners)
