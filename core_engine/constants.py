"""Engine parameters and configuration loader.

Tunable values (attenuation coefficient, spatial index limits, flux level
thresholds, demo scene layout, runner pacing) are loaded from YAML into
frozen dataclasses. :func:`default_config` returns the built-in values that
``config/default_config.yaml`` also ships, so the engine can run without a
file on disk.

Only the luminance weights and the spot light default cone are true
constants; everything else is a configuration value.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "default_config.yaml"

_INDEX_MODES = ("octree", "quadtree")

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhotometryConfig:
    """Photometric model parameters.

    Attributes
    ----------
    attenuation_coefficient : float
        Beer–Lambert coefficient κ per unit path length inside flux volumes.
    luminance_weights : tuple[float, float, float]
        RGB weights used to turn a light colour into a scalar brightness.
    """

    attenuation_coefficient: float = 0.2
    luminance_weights: tuple[float, float, float] = (0.299, 0.587, 0.114)


@dataclass(frozen=True)
class SpatialIndexConfig:
    """Spatial index parameters.

    Attributes
    ----------
    mode : str
        ``"octree"`` or ``"quadtree"``.
    max_depth : int
        Maximum node depth (root is depth 0).
    max_objects_per_leaf : int
        Leaf capacity before a split.
    scene_extent_min, scene_extent_max : tuple[float, float, float]
        Expected scene extent, used as the index root bounds.
    """

    mode: str = "octree"
    max_depth: int = 5
    max_objects_per_leaf: int = 8
    scene_extent_min: tuple[float, float, float] = (-1000.0, -1000.0, -1000.0)
    scene_extent_max: tuple[float, float, float] = (1000.0, 1000.0, 1000.0)


@dataclass(frozen=True)
class FluxLevelConfig:
    """Thresholds of the LOW / MEDIUM / HIGH flux indicator."""

    low_threshold: float = 40.0
    high_threshold: float = 60.0


@dataclass(frozen=True)
class SceneConfig:
    """Layout of the synthetic greenhouse demo scene.

    Attributes
    ----------
    rows : int
        Number of plant rows (along Z).
    plants_per_row : int
        Plants per row (along X).
    row_spacing, plant_spacing : float
        Distances between rows and between plants in a row.
    plant_scale_jitter : float
        Relative random variation of the canopy scale.
    lamp_height : float
        Height of the pendant spot lights above the floor.
    lamp_intensity : float
        Intensity of each pendant light.
    lamp_max_distance : float
        Range of each pendant light (0 = unbounded).
    lamp_decay : float
        Falloff exponent of each pendant light.
    lamp_cone_deg : float
        Spot cone half-angle [deg].
    sun_intensity : float
        Intensity of the directional sun light.
    benches : bool
        Whether bench occluders are placed between the rows.
    seed : int
        Random seed for reproducibility.
    """

    rows: int = 3
    plants_per_row: int = 4
    row_spacing: float = 20.0
    plant_spacing: float = 12.0
    plant_scale_jitter: float = 0.15
    lamp_height: float = 25.0
    lamp_intensity: float = 80.0
    lamp_max_distance: float = 60.0
    lamp_decay: float = 1.0
    lamp_cone_deg: float = 45.0
    sun_intensity: float = 30.0
    benches: bool = True
    seed: int = 42


@dataclass(frozen=True)
class RunnerConfig:
    """Frame loop pacing of the simulation runner.

    Attributes
    ----------
    ticks : int
        Number of frames to simulate.
    requests_per_tick : int
        Calculation requests fired per frame (the extra ones coalesce).
    frame_interval_s : float
        Sleep between frames [s]; 0 runs as fast as possible.
    sun_start_deg, sun_end_deg : float
        Sun tilt about the X axis swept linearly over the run [deg].
    """

    ticks: int = 24
    requests_per_tick: int = 3
    frame_interval_s: float = 0.0
    sun_start_deg: float = -75.0
    sun_end_deg: float = 75.0


@dataclass
class SimulationConfig:
    """Top-level configuration.

    Attributes
    ----------
    photometry : PhotometryConfig
    spatial_index : SpatialIndexConfig
    flux_levels : FluxLevelConfig
    scene : SceneConfig
    runner : RunnerConfig
    source : str
        Where the configuration came from (file path or ``"<defaults>"``).
    """

    photometry: PhotometryConfig = field(default_factory=PhotometryConfig)
    spatial_index: SpatialIndexConfig = field(default_factory=SpatialIndexConfig)
    flux_levels: FluxLevelConfig = field(default_factory=FluxLevelConfig)
    scene: SceneConfig = field(default_factory=SceneConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    source: str = "<defaults>"


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config() -> SimulationConfig:
    """Built-in configuration (validated)."""
    config = SimulationConfig()
    _validate_config(config)
    return config


def load_config(config_path: str | Path | None = None) -> SimulationConfig:
    """Load and validate a configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path, optional
        Path to the YAML configuration file. Defaults to
        ``config/default_config.yaml`` in the project root.

    Returns
    -------
    SimulationConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    logger.info("Loading configuration from: %s", config_path)

    try:
        config = _parse_config(raw)
    except KeyError as exc:
        raise ValueError(f"Missing configuration key {exc} in {config_path}") from exc
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid configuration value in {config_path}: {exc}") from exc

    config.source = str(config_path)
    _validate_config(config)
    logger.info("Configuration loaded successfully.")
    return config


def _vec3(values: Any) -> tuple[float, float, float]:
    x, y, z = (float(v) for v in values)
    return (x, y, z)


def _parse_config(raw: dict[str, Any]) -> SimulationConfig:
    # --- Photometry ---
    pho = raw["photometry"]
    photometry = PhotometryConfig(
        attenuation_coefficient=float(pho["attenuation_coefficient"]),
        luminance_weights=_vec3(pho["luminance_weights"]),
    )

    # --- Spatial index ---
    idx = raw["spatial_index"]
    extent = idx["scene_extent"]
    spatial_index = SpatialIndexConfig(
        mode=str(idx["mode"]).lower(),
        max_depth=int(idx["max_depth"]),
        max_objects_per_leaf=int(idx["max_objects_per_leaf"]),
        scene_extent_min=_vec3(extent["min"]),
        scene_extent_max=_vec3(extent["max"]),
    )

    # --- Flux levels ---
    lvl = raw["flux_levels"]
    flux_levels = FluxLevelConfig(
        low_threshold=float(lvl["low"]),
        high_threshold=float(lvl["high"]),
    )

    # --- Synthetic scene ---
    scn = raw["scene"]
    lamp = scn["lamp"]
    scene = SceneConfig(
        rows=int(scn["rows"]),
        plants_per_row=int(scn["plants_per_row"]),
        row_spacing=float(scn["row_spacing"]),
        plant_spacing=float(scn["plant_spacing"]),
        plant_scale_jitter=float(scn["plant_scale_jitter"]),
        lamp_height=float(lamp["height"]),
        lamp_intensity=float(lamp["intensity"]),
        lamp_max_distance=float(lamp["max_distance"]),
        lamp_decay=float(lamp["decay"]),
        lamp_cone_deg=float(lamp["cone_half_angle_deg"]),
        sun_intensity=float(scn["sun_intensity"]),
        benches=bool(scn["benches"]),
        seed=int(scn["seed"]),
    )

    # --- Runner ---
    run = raw["runner"]
    runner = RunnerConfig(
        ticks=int(run["ticks"]),
        requests_per_tick=int(run["requests_per_tick"]),
        frame_interval_s=float(run["frame_interval_s"]),
        sun_start_deg=float(run["sun_sweep_deg"][0]),
        sun_end_deg=float(run["sun_sweep_deg"][1]),
    )

    return SimulationConfig(
        photometry=photometry,
        spatial_index=spatial_index,
        flux_levels=flux_levels,
        scene=scene,
        runner=runner,
    )


def _validate_config(config: SimulationConfig) -> None:
    """Validate value ranges.

    Raises
    ------
    ValueError
        If any value is out of range.
    """
    pho = config.photometry
    if not (pho.attenuation_coefficient >= 0.0 and np.isfinite(pho.attenuation_coefficient)):
        raise ValueError(
            f"Attenuation coefficient must be finite and >= 0, got {pho.attenuation_coefficient}"
        )
    if any(w < 0.0 for w in pho.luminance_weights):
        raise ValueError(f"Luminance weights must be >= 0, got {pho.luminance_weights}")

    idx = config.spatial_index
    if idx.mode not in _INDEX_MODES:
        raise ValueError(f"Spatial index mode must be one of {_INDEX_MODES}, got '{idx.mode}'")
    if idx.max_depth < 0:
        raise ValueError("Spatial index max_depth cannot be negative.")
    if idx.max_objects_per_leaf < 1:
        raise ValueError("Spatial index max_objects_per_leaf must be >= 1.")
    if any(lo > hi for lo, hi in zip(idx.scene_extent_min, idx.scene_extent_max)):
        raise ValueError("Scene extent min must not exceed max.")

    lvl = config.flux_levels
    if lvl.low_threshold > lvl.high_threshold:
        raise ValueError(
            f"Low flux threshold ({lvl.low_threshold}) exceeds high threshold "
            f"({lvl.high_threshold})"
        )

    scn = config.scene
    if scn.rows < 0 or scn.plants_per_row < 0:
        raise ValueError("Scene row and plant counts cannot be negative.")
    if not (0.0 <= scn.plant_scale_jitter < 1.0):
        raise ValueError("Plant scale jitter must be in [0, 1).")
    if not (0.0 <= scn.lamp_cone_deg <= 90.0):
        raise ValueError("Lamp cone half-angle must be in [0, 90] degrees.")

    run = config.runner
    if run.ticks < 0:
        raise ValueError("Runner tick count cannot be negative.")
    if run.requests_per_tick < 1:
        raise ValueError("Runner requests_per_tick must be >= 1.")
    if run.frame_interval_s < 0:
        raise ValueError("Frame interval cannot be negative.")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """SHA-256 hex digest of an array's raw bytes."""
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
