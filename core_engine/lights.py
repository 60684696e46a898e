"""Light descriptors — directional, point and spot lights.

Lights are plain descriptors read by the photometric model; the scene layer
owns and mutates them. Orientation comes from the light's transform:

- a **directional** light shines *from* its rotated local +Y axis
  (the returned direction points toward the light);
- a **spot** light shines *along* its rotated local −Y axis;
- a **point** light only uses its position.

Invalid parameters are never fatal. :meth:`Light.parameter_issues` lists
them for logging, and the ``effective_*`` accessors return the clamped values
the photometric model actually uses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from core_engine.transform import Transform

logger = logging.getLogger(__name__)

LOCAL_UP = np.array([0.0, 1.0, 0.0])
LOCAL_DOWN = np.array([0.0, -1.0, 0.0])

_MAX_CONE_HALF_ANGLE: float = np.pi / 2.0


class LightKind(str, Enum):
    DIRECTIONAL = "directional"
    POINT = "point"
    SPOT = "spot"


@dataclass
class Light:
    """Photometric light descriptor.

    Attributes
    ----------
    kind : LightKind
        Light type.
    name : str
        Identifier used in logs.
    color : np.ndarray
        Linear RGB in [0, 1]. Shape: (3,).
    intensity : float
        Scalar intensity (>= 0).
    transform : Transform
        Position and orientation in world space.
    max_distance : float
        Range cut-off for point/spot lights; 0 means unbounded.
    decay : float
        Exponent of the windowed distance falloff (point/spot only).
    cone_half_angle : float
        Spot cone half-angle [rad].
    """

    kind: LightKind
    name: str = ""
    color: np.ndarray = field(default_factory=lambda: np.ones(3))
    intensity: float = 1.0
    transform: Transform = field(default_factory=Transform)
    max_distance: float = 0.0
    decay: float = 1.0
    cone_half_angle: float = np.pi / 6.0

    def __post_init__(self) -> None:
        self.kind = LightKind(self.kind)
        self.color = np.array(self.color, dtype=np.float64).reshape(3)
        self.intensity = float(self.intensity)
        self.max_distance = float(self.max_distance)
        self.decay = float(self.decay)
        self.cone_half_angle = float(self.cone_half_angle)

    # --- Constructors -----------------------------------------------------

    @classmethod
    def directional(
        cls,
        name: str = "",
        color=(1.0, 1.0, 1.0),
        intensity: float = 1.0,
        rotation=(0.0, 0.0, 0.0),
        position=(0.0, 0.0, 0.0),
    ) -> Light:
        return cls(
            kind=LightKind.DIRECTIONAL,
            name=name,
            color=color,
            intensity=intensity,
            transform=Transform(position=position, rotation=rotation),
        )

    @classmethod
    def point(
        cls,
        name: str = "",
        position=(0.0, 0.0, 0.0),
        color=(1.0, 1.0, 1.0),
        intensity: float = 1.0,
        max_distance: float = 0.0,
        decay: float = 1.0,
    ) -> Light:
        return cls(
            kind=LightKind.POINT,
            name=name,
            color=color,
            intensity=intensity,
            transform=Transform(position=position),
            max_distance=max_distance,
            decay=decay,
        )

    @classmethod
    def spot(
        cls,
        name: str = "",
        position=(0.0, 0.0, 0.0),
        rotation=(0.0, 0.0, 0.0),
        color=(1.0, 1.0, 1.0),
        intensity: float = 1.0,
        max_distance: float = 0.0,
        decay: float = 1.0,
        cone_half_angle: float = np.pi / 6.0,
    ) -> Light:
        return cls(
            kind=LightKind.SPOT,
            name=name,
            color=color,
            intensity=intensity,
            transform=Transform(position=position, rotation=rotation),
            max_distance=max_distance,
            decay=decay,
            cone_half_angle=cone_half_angle,
        )

    # --- World-space accessors --------------------------------------------

    @property
    def world_position(self) -> np.ndarray:
        return self.transform.position

    @property
    def world_direction(self) -> np.ndarray:
        """Unit direction derived from the orientation.

        Toward the light for directional lights, along the beam otherwise.
        """
        if self.kind is LightKind.DIRECTIONAL:
            return self.transform.rotate(LOCAL_UP)
        return self.transform.rotate(LOCAL_DOWN)

    # --- Clamped parameters -----------------------------------------------

    @property
    def effective_intensity(self) -> float:
        if not np.isfinite(self.intensity):
            return 0.0
        return max(self.intensity, 0.0)

    @property
    def effective_color(self) -> np.ndarray:
        return np.clip(self.color, 0.0, 1.0)

    @property
    def effective_decay(self) -> float:
        return max(self.decay, 0.0)

    @property
    def effective_cone_half_angle(self) -> float:
        return float(np.clip(self.cone_half_angle, 0.0, _MAX_CONE_HALF_ANGLE))

    def parameter_issues(self) -> list[str]:
        """Human-readable list of out-of-range parameters (empty if valid)."""
        issues: list[str] = []
        if not np.isfinite(self.intensity) or self.intensity < 0.0:
            issues.append(f"intensity {self.intensity} clamped to >= 0")
        if np.any(self.color < 0.0) or np.any(self.color > 1.0):
            issues.append(f"color {self.color.tolist()} clamped to [0, 1]")
        if self.kind is LightKind.DIRECTIONAL:
            return issues
        if self.max_distance < 0.0:
            issues.append(f"max_distance {self.max_distance} treated as unbounded")
        if self.decay < 0.0:
            issues.append(f"decay {self.decay} clamped to 0")
        if self.kind is LightKind.SPOT and not (
            0.0 <= self.cone_half_angle <= _MAX_CONE_HALF_ANGLE
        ):
            issues.append(
                f"cone half-angle {np.degrees(self.cone_half_angle):.1f}° clamped to [0°, 90°]"
            )
        return issues
