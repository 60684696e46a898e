"""World transforms — position, Euler rotation and scale as 4×4 matrices.

Scene objects (flux volumes, occluder boxes, lights) carry a
:class:`Transform` owned and mutated by the scene layer. The engine only
reads it, and recomputes every derived matrix on demand so that a moved
object is picked up by the next pass.

Conventions
-----------
- Right-handed, +Y up.
- Euler angles are radians applied in intrinsic X→Y→Z order, i.e.
  ``R = Rx(a) · Ry(b) · Rz(c)``.
- World matrix ``M = T · R · S``.
- Normals transform with the normal matrix ``(M₃ₓ₃⁻¹)ᵀ``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

_DET_EPSILON: float = 1e-12


class DegenerateTransformError(ValueError):
    """Raised when a transform cannot be inverted (zero scale, NaN, ...)."""


def euler_xyz_to_matrix(angles: np.ndarray) -> np.ndarray:
    """Rotation matrix for XYZ-ordered Euler angles.

    Parameters
    ----------
    angles : np.ndarray
        Rotation about X, Y, Z [rad]. Shape: (3,).

    Returns
    -------
    np.ndarray
        Orthonormal rotation matrix. Shape: (3, 3).
    """
    a, b, c = (float(v) for v in angles)
    ca, sa = np.cos(a), np.sin(a)
    cb, sb = np.cos(b), np.sin(b)
    cc, sc = np.cos(c), np.sin(c)

    rx = np.array([[1.0, 0.0, 0.0], [0.0, ca, -sa], [0.0, sa, ca]])
    ry = np.array([[cb, 0.0, sb], [0.0, 1.0, 0.0], [-sb, 0.0, cb]])
    rz = np.array([[cc, -sc, 0.0], [sc, cc, 0.0], [0.0, 0.0, 1.0]])
    return rx @ ry @ rz


def invert_affine(matrix: np.ndarray) -> np.ndarray:
    """Invert a 4×4 affine matrix, rejecting singular or non-finite input.

    Raises
    ------
    DegenerateTransformError
        If the linear part has a (near-)zero determinant or the matrix
        contains non-finite values.
    """
    if not np.all(np.isfinite(matrix)):
        raise DegenerateTransformError("Transform contains non-finite values")
    det = np.linalg.det(matrix[:3, :3])
    if abs(det) < _DET_EPSILON:
        raise DegenerateTransformError(f"Transform is not invertible (det={det:.3e})")
    return np.linalg.inv(matrix)


def normal_matrix(matrix: np.ndarray) -> np.ndarray:
    """Inverse-transpose of the linear part of an affine matrix. Shape: (3, 3)."""
    return invert_affine(matrix)[:3, :3].T


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply an affine matrix to points of shape (N, 3) or (3,)."""
    pts = np.asarray(points, dtype=np.float64)
    return pts @ matrix[:3, :3].T + matrix[:3, 3]


def transform_directions(matrix: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Apply only the linear part of an affine matrix (no translation)."""
    vecs = np.asarray(vectors, dtype=np.float64)
    return vecs @ matrix[:3, :3].T


@dataclass
class Transform:
    """Mutable world transform of a scene object.

    Attributes
    ----------
    position : np.ndarray
        World position. Shape: (3,).
    rotation : np.ndarray
        Euler XYZ angles [rad]. Shape: (3,).
    scale : np.ndarray
        Per-axis scale. Shape: (3,).
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    def __post_init__(self) -> None:
        self.position = np.array(self.position, dtype=np.float64).reshape(3)
        self.rotation = np.array(self.rotation, dtype=np.float64).reshape(3)
        scale = np.array(self.scale, dtype=np.float64)
        self.scale = np.full(3, float(scale)) if scale.ndim == 0 else scale.reshape(3)

    def rotation_matrix(self) -> np.ndarray:
        return euler_xyz_to_matrix(self.rotation)

    def matrix(self) -> np.ndarray:
        """World matrix ``T · R · S``. Shape: (4, 4)."""
        m = np.eye(4)
        m[:3, :3] = self.rotation_matrix() * self.scale[np.newaxis, :]
        m[:3, 3] = self.position
        return m

    def inverse_matrix(self) -> np.ndarray:
        return invert_affine(self.matrix())

    def rotate(self, vector: np.ndarray) -> np.ndarray:
        """Rotate a local-space direction into world space and normalize it."""
        v = self.rotation_matrix() @ np.asarray(vector, dtype=np.float64)
        norm = np.linalg.norm(v)
        if norm == 0.0 or not np.isfinite(norm):
            raise DegenerateTransformError("Cannot rotate a zero or non-finite vector")
        return v / norm
