"""YAML scene loader.

Reads a scene description (flux volumes, lights, occluder boxes) and builds
the corresponding core objects. Angles in scene files are in degrees; they
are converted to radians here, which is what every core object expects.

File Format
-----------
::

    name: bench_test
    flux_volumes:
      - name: tray_1
        kind: canopy              # canopy | box
        position: [0, 0, 0]
        rotation_deg: [0, 0, 0]
        scale: 1.0                # scalar or [sx, sy, sz]
        template: canopy          # canopy | grid<N>, optional
    lights:
      - name: sun
        type: directional         # directional | point | spot
        color: [1, 1, 1]
        intensity: 30
        rotation_deg: [-30, 0, 0]
      - name: lamp_1
        type: spot
        position: [0, 25, 0]
        rotation_deg: [0, 0, 0]
        intensity: 80
        max_distance: 60
        decay: 1
        cone_half_angle_deg: 45
    boxes:
      - name: bench
        position: [-10, 0, -2]
        size: [20, 1, 4]

Every section is optional.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from core_engine.flux_volume import CANOPY_TEMPLATE, FluxVolume, SampleTemplate, face_grid_template
from core_engine.lights import Light, LightKind
from core_engine.occluder import OccluderBox
from core_engine.transform import Transform

logger = logging.getLogger(__name__)


@dataclass
class Scene:
    """Scene objects ready to be registered with an engine.

    Attributes
    ----------
    flux_volumes : list[FluxVolume]
        Volumes whose flux is computed.
    lights : list[Light]
        Light sources.
    boxes : list[OccluderBox]
        Opaque occluders.
    metadata : dict
        Free-form information about the scene (name, generator parameters).
    """

    flux_volumes: list[FluxVolume] = field(default_factory=list)
    lights: list[Light] = field(default_factory=list)
    boxes: list[OccluderBox] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def sun(self) -> Light | None:
        """First directional light of the scene, if any."""
        for light in self.lights:
            if light.kind is LightKind.DIRECTIONAL:
                return light
        return None

    def register_with(self, engine: Any) -> None:
        """Register every object with a :class:`FluxSimulationEngine`."""
        for box in self.boxes:
            engine.register_box(box)
        for light in self.lights:
            engine.register_light(light)
        for volume in self.flux_volumes:
            engine.register_flux_volume(volume)
        logger.info(
            "Registered scene '%s': %d flux volumes, %d lights, %d boxes",
            self.metadata.get("name", "unnamed"),
            len(self.flux_volumes),
            len(self.lights),
            len(self.boxes),
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def load_scene(scene_path: str | Path) -> Scene:
    """Load a scene description from a YAML file.

    Parameters
    ----------
    scene_path : str or Path
        Path to the YAML scene file.

    Returns
    -------
    Scene
        Parsed scene.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If an entry is malformed or names an unknown kind.
    """
    scene_path = Path(scene_path)
    if not scene_path.exists():
        raise FileNotFoundError(f"Scene file not found: {scene_path}")

    with open(scene_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    logger.info("Loading scene from: %s", scene_path)
    scene = parse_scene(raw)
    scene.metadata.setdefault("source", str(scene_path))
    return scene


def parse_scene(raw: dict[str, Any]) -> Scene:
    """Build a :class:`Scene` from an already parsed mapping."""
    scene = Scene(metadata={"name": str(raw.get("name", "unnamed"))})

    for i, entry in enumerate(raw.get("flux_volumes") or []):
        scene.flux_volumes.append(_wrap(_parse_flux_volume, entry, "flux_volumes", i))
    for i, entry in enumerate(raw.get("lights") or []):
        scene.lights.append(_wrap(_parse_light, entry, "lights", i))
    for i, entry in enumerate(raw.get("boxes") or []):
        scene.boxes.append(_wrap(_parse_box, entry, "boxes", i))

    logger.debug(
        "Parsed scene '%s': %d volumes, %d lights, %d boxes",
        scene.metadata["name"],
        len(scene.flux_volumes),
        len(scene.lights),
        len(scene.boxes),
    )
    return scene


def _wrap(parser, entry: Any, section: str, i: int):
    if not isinstance(entry, dict):
        raise ValueError(f"{section}[{i}] must be a mapping, got {type(entry).__name__}")
    try:
        return parser(entry)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid entry {section}[{i}]: {exc}") from exc


def _vector(entry: dict, key: str, default: tuple[float, float, float]) -> np.ndarray:
    value = entry.get(key, default)
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        return np.full(3, float(arr))
    if arr.shape != (3,):
        raise ValueError(f"'{key}' must have 3 components, got {list(arr.ravel())}")
    return arr


def _transform(entry: dict) -> Transform:
    return Transform(
        position=_vector(entry, "position", (0.0, 0.0, 0.0)),
        rotation=np.radians(_vector(entry, "rotation_deg", (0.0, 0.0, 0.0))),
        scale=_vector(entry, "scale", (1.0, 1.0, 1.0)),
    )


def _template(name: str) -> SampleTemplate:
    if name == "canopy":
        return CANOPY_TEMPLATE
    if name.startswith("grid") and name[4:].isdigit():
        return face_grid_template(int(name[4:]))
    raise ValueError(f"Unknown sample template '{name}'")


def _parse_flux_volume(entry: dict) -> FluxVolume:
    kind = str(entry.get("kind", "box"))
    name = str(entry.get("name", ""))
    transform = _transform(entry)

    if kind == "canopy":
        volume = FluxVolume.plant_canopy(name=name, transform=transform)
    elif kind == "box":
        volume = FluxVolume(name=name, transform=transform)
    else:
        raise ValueError(f"Unknown flux volume kind '{kind}'")

    if "template" in entry:
        volume.template = _template(str(entry["template"]))
    return volume


def _parse_light(entry: dict) -> Light:
    kind = LightKind(str(entry["type"]).lower())
    light = Light(
        kind=kind,
        name=str(entry.get("name", "")),
        color=_vector(entry, "color", (1.0, 1.0, 1.0)),
        intensity=float(entry.get("intensity", 1.0)),
        transform=Transform(
            position=_vector(entry, "position", (0.0, 0.0, 0.0)),
            rotation=np.radians(_vector(entry, "rotation_deg", (0.0, 0.0, 0.0))),
        ),
        max_distance=float(entry.get("max_distance", 0.0)),
        decay=float(entry.get("decay", 1.0)),
    )
    if "cone_half_angle_deg" in entry:
        light.cone_half_angle = float(np.radians(float(entry["cone_half_angle_deg"])))
    return light


def _parse_box(entry: dict) -> OccluderBox:
    return OccluderBox(
        name=str(entry.get("name", "")),
        transform=_transform(entry),
        size=_vector(entry, "size", (1.0, 1.0, 1.0)),
    )
