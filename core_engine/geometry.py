"""Geometry primitives — AABB, Ray and slab-method intersection.

The slab kernels are compiled with Numba ``@njit(cache=True)`` and operate
on plain float64 arrays; the :class:`AABB` and :class:`Ray` containers wrap
those arrays for the Python-level spatial index and scene objects.

Design Notes
------------
- **Unnormalized directions**: a ray direction is never normalized by this
  module. Parametric distances ``t`` are in units of ``|direction|``; callers
  that need metric lengths map hit points back to world space.
- **Zero direction components**: the inverse direction substitutes a large
  finite sentinel for ``1/0``, so no ``0 * inf`` NaN can appear. The slab
  kernel recognises the sentinel and tests such an axis by the origin
  coordinate alone, which keeps rays running along a face inclusive.
- **Inclusive boundaries**: touching a face counts as a hit, both for
  ray/box tests and for box/box overlap.

References
----------
- Kay, T.L. & Kajiya, J.T. (1986). "Ray Tracing Complex Scenes."
  SIGGRAPH '86, pp. 269-278.
- Williams, A. et al. (2005). "An Efficient and Robust Ray-Box
  Intersection Algorithm." J. Graphics Tools, 10(1), 49-54.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

_INF: float = 1e30


# ===================================================================
# SLAB KERNELS — Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def inverse_direction(ray_dir: np.ndarray) -> np.ndarray:
    """Per-axis inverse of a ray direction.

    Parameters
    ----------
    ray_dir : np.ndarray
        Ray direction [dx, dy, dz]. Shape: (3,).

    Returns
    -------
    np.ndarray
        ``1 / ray_dir`` with zero components replaced by a large positive
        finite value. Shape: (3,).
    """
    inv_dir = np.empty(3, dtype=np.float64)
    for axis in range(3):
        if ray_dir[axis] == 0.0:
            inv_dir[axis] = _INF
        else:
            inv_dir[axis] = 1.0 / ray_dir[axis]
    return inv_dir


@njit(cache=True, fastmath=False)
def slab_interval(
    ray_origin: np.ndarray,
    inv_dir: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
) -> tuple[float, float, bool]:
    """Three-pair slab test returning the parametric overlap interval.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin. Shape: (3,).
    inv_dir : np.ndarray
        Precomputed inverse direction (see :func:`inverse_direction`).
    bbox_min, bbox_max : np.ndarray
        Box corners. Shape: (3,) each.

    Returns
    -------
    t_min : float
        Largest slab entry parameter (may be negative).
    t_max : float
        Smallest slab exit parameter.
    overlap : bool
        False as soon as one axis interval does not overlap the others.
    """
    t_min = -np.inf
    t_max = np.inf

    for axis in range(3):
        if inv_dir[axis] == _INF:
            # Parallel to this slab pair: only the origin decides.
            if ray_origin[axis] < bbox_min[axis] or ray_origin[axis] > bbox_max[axis]:
                return t_min, t_max, False
            continue

        t1 = (bbox_min[axis] - ray_origin[axis]) * inv_dir[axis]
        t2 = (bbox_max[axis] - ray_origin[axis]) * inv_dir[axis]

        if t1 > t2:
            t1, t2 = t2, t1

        if t1 > t_min:
            t_min = t1
        if t2 < t_max:
            t_max = t2

        if t_min > t_max:
            return t_min, t_max, False

    return t_min, t_max, True


# ===================================================================
# CONTAINERS
# ===================================================================


@dataclass(frozen=True, eq=False)
class AABB:
    """Axis-aligned bounding box.

    Attributes
    ----------
    min : np.ndarray
        Minimum corner. Shape: (3,), dtype: float64.
    max : np.ndarray
        Maximum corner. Shape: (3,), dtype: float64.
        ``min <= max`` component-wise; zero extent is allowed.
    """

    min: np.ndarray
    max: np.ndarray

    def __post_init__(self) -> None:
        lo = np.asarray(self.min, dtype=np.float64).reshape(3).copy()
        hi = np.asarray(self.max, dtype=np.float64).reshape(3).copy()
        if np.any(lo > hi):
            raise ValueError(f"AABB min {lo} exceeds max {hi}")
        lo.setflags(write=False)
        hi.setflags(write=False)
        object.__setattr__(self, "min", lo)
        object.__setattr__(self, "max", hi)

    @classmethod
    def from_points(cls, points: np.ndarray) -> AABB:
        """Smallest box enclosing a point cloud of shape (N, 3)."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return cls(pts.min(axis=0), pts.max(axis=0))

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.min + self.max)

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    def corners(self) -> np.ndarray:
        """The eight corners, shape (8, 3), x varying fastest."""
        lo, hi = self.min, self.max
        return np.array(
            [
                [lo[0], lo[1], lo[2]],
                [hi[0], lo[1], lo[2]],
                [lo[0], hi[1], lo[2]],
                [hi[0], hi[1], lo[2]],
                [lo[0], lo[1], hi[2]],
                [hi[0], lo[1], hi[2]],
                [lo[0], hi[1], hi[2]],
                [hi[0], hi[1], hi[2]],
            ],
            dtype=np.float64,
        )

    def intersects(self, other: AABB) -> bool:
        """Inclusive overlap test (shared faces count as overlap)."""
        return bool(np.all(self.min <= other.max) and np.all(other.min <= self.max))

    def contains_point(self, point: np.ndarray) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(self.min <= p) and np.all(p <= self.max))

    def union(self, other: AABB) -> AABB:
        return AABB(np.minimum(self.min, other.min), np.maximum(self.max, other.max))

    def __repr__(self) -> str:
        return f"AABB(min={self.min.tolist()}, max={self.max.tolist()})"


@dataclass(frozen=True, eq=False)
class Ray:
    """Half-line ``origin + t * direction`` for ``t >= 0``.

    Attributes
    ----------
    origin : np.ndarray
        Ray origin. Shape: (3,).
    direction : np.ndarray
        Ray direction, not necessarily unit length. Shape: (3,).
    inv_direction : np.ndarray
        Cached per-axis inverse direction used by the slab kernels.
    """

    origin: np.ndarray
    direction: np.ndarray
    inv_direction: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        origin = np.array(self.origin, dtype=np.float64).reshape(3)
        direction = np.array(self.direction, dtype=np.float64).reshape(3)
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "direction", direction)
        object.__setattr__(self, "inv_direction", inverse_direction(direction))

    def at(self, t: float) -> np.ndarray:
        """Point at parameter ``t``."""
        return self.origin + t * self.direction


# ===================================================================
# RAY / BOX QUERIES
# ===================================================================


def ray_intersects_aabb(ray: Ray, box: AABB) -> bool:
    """Test whether a ray touches an AABB in front of (or at) its origin.

    Parameters
    ----------
    ray : Ray
        Query ray.
    box : AABB
        Box to test.

    Returns
    -------
    bool
        False if any axis interval is empty or the whole overlap lies
        behind the ray origin.
    """
    _, t_max, overlap = slab_interval(ray.origin, ray.inv_direction, box.min, box.max)
    return bool(overlap and t_max >= 0.0)


def ray_box_entry_exit(ray: Ray, box: AABB) -> tuple[float, float] | None:
    """Parametric entry and exit distances of a ray through an AABB.

    Parameters
    ----------
    ray : Ray
        Query ray.
    box : AABB
        Box to test.

    Returns
    -------
    tuple[float, float] or None
        ``(t_enter, t_exit)`` with ``t_enter = max(0, t_min)``; ``None``
        when the slab intervals do not overlap or ``t_exit < 0``.
    """
    t_min, t_max, overlap = slab_interval(ray.origin, ray.inv_direction, box.min, box.max)
    if not overlap or t_max < 0.0:
        return None
    return max(0.0, float(t_min)), float(t_max)
