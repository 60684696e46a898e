"""Flux volumes — sampled boxes whose received light is being estimated.

A flux volume is an oriented box (a plant canopy, a seed tray, ...) with a
fixed template of surface sample points. Each sample point carries a local
position in the unit cube ``[0, 1]³`` and an outward unit normal. The engine
evaluates every light at every sample point and stores the mean as the
volume's flux value.

Flux volumes are also the *translucent* objects of the scene: a ray that
crosses one is attenuated by the path length it travels inside the box
(see :mod:`core_engine.photometry`).

Local Space
-----------
Template points live in the unit cube. A volume maps the unit cube onto its
``local_bounds`` box (the unit cube itself for a plain volume, an
8 × 5 × 8 block centred on X/Z for a plant canopy) and then through the
world transform. All matrix work below uses the combined "box matrix"::

    B = M_world · T(local_min) · S(local_size)

so ray queries can always run the slab test against ``[0, 1]³``.

Sample Template
---------------
The default template covers the top face, the four side faces, the top
corners, the top edges and the mid-height vertical edges. The bottom face is
deliberately absent: volumes usually sit on a bench or the floor, and a
sample point on the contact face would be blocked by its support.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from core_engine.geometry import AABB, Ray, ray_box_entry_exit
from core_engine.transform import (
    DegenerateTransformError,
    Transform,
    invert_affine,
    normal_matrix,
    transform_directions,
    transform_points,
)

logger = logging.getLogger(__name__)

UNIT_BOX = AABB(np.zeros(3), np.ones(3))

# Plant canopy block in the plant's local frame (origin at the stem base).
CANOPY_SIZE = np.array([8.0, 5.0, 8.0])
CANOPY_OFFSET = np.array([-4.0, 0.0, -4.0])

# Default level thresholds of the flux indicator.
DEFAULT_LOW_THRESHOLD: float = 40.0
DEFAULT_HIGH_THRESHOLD: float = 60.0


# ---------------------------------------------------------------------------
# Sample Template
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class SampleTemplate:
    """Immutable set of local sample points with outward normals.

    Attributes
    ----------
    name : str
        Template identifier.
    points : np.ndarray
        Local positions in ``[0, 1]³``. Shape: (N, 3), read-only.
    normals : np.ndarray
        Unit outward normals. Shape: (N, 3), read-only.
    """

    name: str
    points: np.ndarray
    normals: np.ndarray

    def __post_init__(self) -> None:
        points = np.array(self.points, dtype=np.float64).reshape(-1, 3)
        normals = np.array(self.normals, dtype=np.float64).reshape(-1, 3)

        if points.shape != normals.shape:
            raise ValueError(
                f"Template '{self.name}': {points.shape[0]} points but "
                f"{normals.shape[0]} normals"
            )
        if np.any(points < 0.0) or np.any(points > 1.0):
            raise ValueError(f"Template '{self.name}': points must lie in [0, 1]^3")

        lengths = np.linalg.norm(normals, axis=1)
        if np.any(lengths < 1e-12):
            raise ValueError(f"Template '{self.name}': zero-length normal")
        normals = normals / lengths[:, np.newaxis]

        points.setflags(write=False)
        normals.setflags(write=False)
        object.__setattr__(self, "points", points)
        object.__setattr__(self, "normals", normals)

    def __len__(self) -> int:
        return self.points.shape[0]


def _canopy_template() -> SampleTemplate:
    up = (0.0, 1.0, 0.0)
    front = (0.0, 0.0, 1.0)
    back = (0.0, 0.0, -1.0)
    right = (1.0, 0.0, 0.0)
    left = (-1.0, 0.0, 0.0)

    entries = [
        # Face centres (no bottom face)
        ((0.5, 1.0, 0.5), up),
        ((0.5, 0.5, 1.0), front),
        ((0.5, 0.5, 0.0), back),
        ((1.0, 0.5, 0.5), right),
        ((0.0, 0.5, 0.5), left),
        # Top corners, one entry per adjacent face
        ((0.0, 1.0, 0.0), up), ((0.0, 1.0, 0.0), left), ((0.0, 1.0, 0.0), back),
        ((1.0, 1.0, 0.0), up), ((1.0, 1.0, 0.0), right), ((1.0, 1.0, 0.0), back),
        ((0.0, 1.0, 1.0), up), ((0.0, 1.0, 1.0), left), ((0.0, 1.0, 1.0), front),
        ((1.0, 1.0, 1.0), up), ((1.0, 1.0, 1.0), right), ((1.0, 1.0, 1.0), front),
        # Top edge centres
        ((0.5, 1.0, 0.0), up), ((0.5, 1.0, 0.0), back),
        ((0.5, 1.0, 1.0), up), ((0.5, 1.0, 1.0), front),
        ((0.0, 1.0, 0.5), up), ((0.0, 1.0, 0.5), left),
        ((1.0, 1.0, 0.5), up), ((1.0, 1.0, 0.5), right),
        # Vertical edge centres
        ((0.0, 0.5, 0.0), left), ((0.0, 0.5, 0.0), back),
        ((1.0, 0.5, 0.0), right), ((1.0, 0.5, 0.0), back),
        ((0.0, 0.5, 1.0), left), ((0.0, 0.5, 1.0), front),
        ((1.0, 0.5, 1.0), right), ((1.0, 0.5, 1.0), front),
    ]
    points = [p for p, _ in entries]
    normals = [n for _, n in entries]
    return SampleTemplate("canopy", np.array(points), np.array(normals))


def face_grid_template(divisions: int, include_bottom: bool = False) -> SampleTemplate:
    """Regular grid of sample points over the faces of the unit cube.

    Parameters
    ----------
    divisions : int
        Grid cells per face edge; each face gets ``divisions²`` points at
        the cell centres.
    include_bottom : bool
        Whether the ``y = 0`` face is sampled.

    Returns
    -------
    SampleTemplate
        Template named ``"grid{divisions}"``.
    """
    if divisions < 1:
        raise ValueError(f"divisions must be >= 1, got {divisions}")

    centres = (np.arange(divisions, dtype=np.float64) + 0.5) / divisions
    u, v = np.meshgrid(centres, centres, indexing="ij")
    u = u.ravel()
    v = v.ravel()
    zeros = np.zeros_like(u)
    ones = np.ones_like(u)

    faces = [
        (np.column_stack([u, ones, v]), (0.0, 1.0, 0.0)),
        (np.column_stack([u, v, ones]), (0.0, 0.0, 1.0)),
        (np.column_stack([u, v, zeros]), (0.0, 0.0, -1.0)),
        (np.column_stack([ones, u, v]), (1.0, 0.0, 0.0)),
        (np.column_stack([zeros, u, v]), (-1.0, 0.0, 0.0)),
    ]
    if include_bottom:
        faces.append((np.column_stack([u, zeros, v]), (0.0, -1.0, 0.0)))

    points = np.concatenate([pts for pts, _ in faces])
    normals = np.concatenate([np.tile(n, (pts.shape[0], 1)) for pts, n in faces])
    return SampleTemplate(f"grid{divisions}", points, normals)


CANOPY_TEMPLATE = _canopy_template()


# ---------------------------------------------------------------------------
# Flux Level Indicator
# ---------------------------------------------------------------------------


class FluxLevel(str, Enum):
    """Coarse classification of a flux value for display."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify_flux(
    value: float,
    low_threshold: float = DEFAULT_LOW_THRESHOLD,
    high_threshold: float = DEFAULT_HIGH_THRESHOLD,
) -> FluxLevel:
    """Map a flux value to LOW (< low), MEDIUM (low..high) or HIGH (> high)."""
    if value < low_threshold:
        return FluxLevel.LOW
    if value <= high_threshold:
        return FluxLevel.MEDIUM
    return FluxLevel.HIGH


# ---------------------------------------------------------------------------
# Flux Volume
# ---------------------------------------------------------------------------


class FluxVolume:
    """Oriented, sampled box that receives light.

    Parameters
    ----------
    name : str
        Identifier used in results and logs.
    transform : Transform, optional
        World transform; owned by the scene layer.
    template : SampleTemplate
        Sample-point template (shared, immutable).
    local_bounds : AABB
        Box in the object's local frame onto which the unit cube is mapped.
    """

    def __init__(
        self,
        name: str = "",
        transform: Transform | None = None,
        template: SampleTemplate = CANOPY_TEMPLATE,
        local_bounds: AABB = UNIT_BOX,
    ) -> None:
        self.name = name
        self.transform = transform if transform is not None else Transform()
        self.template = template
        self.local_bounds = local_bounds
        self._flux_value = 0.0

    @classmethod
    def plant_canopy(cls, name: str = "", transform: Transform | None = None) -> FluxVolume:
        """Volume covering a plant canopy block rooted at the local origin."""
        return cls(
            name=name,
            transform=transform,
            local_bounds=AABB(CANOPY_OFFSET, CANOPY_OFFSET + CANOPY_SIZE),
        )

    def __repr__(self) -> str:
        return f"FluxVolume(name={self.name!r}, flux={self._flux_value:.3f})"

    # --- Flux value -------------------------------------------------------

    @property
    def flux_value(self) -> float:
        """Last flux computed by the engine (0.0 before the first pass)."""
        return self._flux_value

    @property
    def flux_level(self) -> FluxLevel:
        return classify_flux(self._flux_value)

    def record_flux(self, value: float) -> None:
        """Store the result of a simulation pass."""
        self._flux_value = float(value)

    # --- Geometry ---------------------------------------------------------

    def box_matrix(self) -> np.ndarray:
        """Matrix mapping the unit cube to world space. Shape: (4, 4)."""
        local = np.eye(4)
        local[:3, :3] = np.diag(self.local_bounds.size)
        local[:3, 3] = self.local_bounds.min
        return self.transform.matrix() @ local

    def bounding_box(self) -> AABB:
        """World-space AABB of the transformed box.

        Raises
        ------
        DegenerateTransformError
            If the transform yields non-finite coordinates.
        """
        corners = transform_points(self.box_matrix(), UNIT_BOX.corners())
        if not np.all(np.isfinite(corners)):
            raise DegenerateTransformError(f"Flux volume '{self.name}' has a non-finite transform")
        return AABB.from_points(corners)

    def get_sampling_points(self) -> tuple[np.ndarray, np.ndarray]:
        """World-space sample points and unit normals.

        Recomputed on every call from the current transform.

        Returns
        -------
        points : np.ndarray
            Shape: (N, 3).
        normals : np.ndarray
            Unit normals. Shape: (N, 3).

        Raises
        ------
        DegenerateTransformError
            If the transform is not invertible (normals are undefined).
        """
        matrix = self.box_matrix()
        points = transform_points(matrix, self.template.points)
        normals = self.template.normals @ normal_matrix(matrix).T
        normals /= np.linalg.norm(normals, axis=1, keepdims=True)
        return points, normals

    def intersect_ray(self, ray: Ray) -> float | None:
        """World-space path length of a ray through this volume.

        Parameters
        ----------
        ray : Ray
            World-space query ray.

        Returns
        -------
        float or None
            Distance between the entry and exit points, or ``None`` if the
            ray misses the volume or the transform is degenerate.
        """
        matrix = self.box_matrix()
        try:
            inverse = invert_affine(matrix)
        except DegenerateTransformError:
            logger.debug("Skipping degenerate flux volume '%s' in ray query", self.name)
            return None

        local_ray = Ray(
            transform_points(inverse, ray.origin),
            transform_directions(inverse, ray.direction),
        )
        hit = ray_box_entry_exit(local_ray, UNIT_BOX)
        if hit is None:
            return None

        t_enter, t_exit = hit
        enter_world = transform_points(matrix, local_ray.at(t_enter))
        exit_world = transform_points(matrix, local_ray.at(t_exit))
        return float(np.linalg.norm(exit_world - enter_world))
