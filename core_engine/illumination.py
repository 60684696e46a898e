"""Illumination engine — orchestrates the spatial index and photometric model.

This module is the "conductor" that turns registered scene objects into one
flux scalar per flux volume. It is driven by the scene/UI layer, which calls
:meth:`FluxSimulationEngine.calculate` on every frame.

Pipeline (one pass)
-------------------
1. Snapshot the registered flux volumes, lights and occluder boxes.
2. Rebuild the spatial index from scratch: the root covers the configured
   scene extent (grown to enclose every object), occluders are inserted
   first, then flux volumes.
3. For every flux volume, for every sample point, sum the contribution of
   every light (:func:`core_engine.photometry.light_contribution`), with
   the volume itself excluded from its own occlusion queries.
4. Store ``total / sample_count`` on the volume (0 without sample points).

Scheduling
----------
``calculate()`` is a coroutine with exactly one suspension point per pass.
A :class:`~core_engine.scheduler.CalculationScheduler` guarantees that two
passes never overlap and that requests arriving during a pass collapse into
a single trailing re-run for the latest tick id.

Notes
-----
Nothing in a pass is fatal. Degenerate transforms zero the affected volume
or sample point and are logged; invalid light parameters are clamped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from core_engine.flux_volume import (
    DEFAULT_HIGH_THRESHOLD,
    DEFAULT_LOW_THRESHOLD,
    FluxLevel,
    FluxVolume,
    classify_flux,
)
from core_engine.geometry import AABB
from core_engine.lights import Light
from core_engine.occluder import OccluderBox
from core_engine.photometry import (
    DEFAULT_ATTENUATION_COEFFICIENT,
    LUMINANCE_WEIGHTS,
    light_contribution,
)
from core_engine.scheduler import CalculationScheduler, ScheduleDecision
from core_engine.spatial_index import IndexEntry, IndexMode, SpatialIndex
from core_engine.transform import DegenerateTransformError

logger = logging.getLogger(__name__)

_DEFAULT_SCENE_EXTENT = AABB(np.full(3, -1000.0), np.full(3, 1000.0))


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class FluxResult:
    """Result of one simulation pass.

    Attributes
    ----------
    tick_id : int or None
        Tick the pass was started for.
    flux : dict[str, float]
        Flux value per volume name, in registration order.
    sample_counts : dict[str, int]
        Number of sample points evaluated per volume.
    stats : dict[str, float]
        Summary statistics: mean, min and max flux.
    level_counts : dict[str, int]
        Number of volumes per flux level.
    index_stats : dict[str, int]
        Spatial index statistics for this pass.
    elapsed_s : float
        Wall time of the pass.
    """

    tick_id: int | None
    flux: dict[str, float]
    sample_counts: dict[str, int]
    stats: dict[str, float]
    level_counts: dict[str, int]
    index_stats: dict[str, int] = field(default_factory=dict)
    elapsed_s: float = 0.0

    def flux_array(self) -> np.ndarray:
        """Flux values as a float64 array in registration order."""
        return np.array(list(self.flux.values()), dtype=np.float64)


# ---------------------------------------------------------------------------
# Simulation Engine
# ---------------------------------------------------------------------------


class FluxSimulationEngine:
    """Estimates the light received by every registered flux volume.

    Parameters
    ----------
    attenuation_coefficient : float
        Beer–Lambert coefficient for rays crossing other flux volumes.
    scene_extent : AABB, optional
        Expected scene extent used as the spatial index root bounds.
    index_mode : IndexMode or str
        ``"octree"`` or ``"quadtree"``.
    max_depth : int
        Spatial index depth limit.
    max_objects_per_leaf : int
        Spatial index leaf capacity.
    luminance_weights : array-like
        RGB luminance weights.
    low_threshold, high_threshold : float
        Flux level thresholds used in pass statistics.
    """

    def __init__(
        self,
        attenuation_coefficient: float = DEFAULT_ATTENUATION_COEFFICIENT,
        scene_extent: AABB | None = None,
        index_mode: IndexMode | str = IndexMode.OCTREE,
        max_depth: int = 5,
        max_objects_per_leaf: int = 8,
        luminance_weights: np.ndarray = LUMINANCE_WEIGHTS,
        low_threshold: float = DEFAULT_LOW_THRESHOLD,
        high_threshold: float = DEFAULT_HIGH_THRESHOLD,
    ) -> None:
        self.attenuation_coefficient = float(attenuation_coefficient)
        self.scene_extent = scene_extent if scene_extent is not None else _DEFAULT_SCENE_EXTENT
        self.index_mode = IndexMode(index_mode)
        self.max_depth = max_depth
        self.max_objects_per_leaf = max_objects_per_leaf
        self.luminance_weights = np.asarray(luminance_weights, dtype=np.float64)
        self.low_threshold = low_threshold
        self.high_threshold = high_threshold

        self._flux_volumes: list[FluxVolume] = []
        self._lights: list[Light] = []
        self._boxes: list[OccluderBox] = []

        self._lock = threading.RLock()
        self._scheduler = CalculationScheduler()
        self._needs_rebuild = True
        self._pass_count = 0
        self._last_result: FluxResult | None = None
        self._index: SpatialIndex | None = None

        logger.info(
            "FluxSimulationEngine initialized: index=%s (depth<=%d, leaf<=%d), "
            "attenuation=%.3f",
            self.index_mode.value,
            max_depth,
            max_objects_per_leaf,
            self.attenuation_coefficient,
        )

    @classmethod
    def from_config(cls, config: Any) -> FluxSimulationEngine:
        """Build an engine from a :class:`core_engine.constants.SimulationConfig`."""
        idx = config.spatial_index
        return cls(
            attenuation_coefficient=config.photometry.attenuation_coefficient,
            scene_extent=AABB(idx.scene_extent_min, idx.scene_extent_max),
            index_mode=idx.mode,
            max_depth=idx.max_depth,
            max_objects_per_leaf=idx.max_objects_per_leaf,
            luminance_weights=np.array(config.photometry.luminance_weights),
            low_threshold=config.flux_levels.low_threshold,
            high_threshold=config.flux_levels.high_threshold,
        )

    # --- Read-only state --------------------------------------------------

    @property
    def flux_volumes(self) -> tuple[FluxVolume, ...]:
        return tuple(self._flux_volumes)

    @property
    def lights(self) -> tuple[Light, ...]:
        return tuple(self._lights)

    @property
    def boxes(self) -> tuple[OccluderBox, ...]:
        return tuple(self._boxes)

    @property
    def is_calculating(self) -> bool:
        return self._scheduler.is_busy

    @property
    def scheduler(self) -> CalculationScheduler:
        return self._scheduler

    @property
    def needs_rebuild(self) -> bool:
        return self._needs_rebuild

    @property
    def pass_count(self) -> int:
        return self._pass_count

    @property
    def last_result(self) -> FluxResult | None:
        return self._last_result

    @property
    def index(self) -> SpatialIndex | None:
        """Spatial index of the most recent pass."""
        return self._index

    # --- Registration -----------------------------------------------------

    def _add(self, collection: list, obj: object, label: str) -> bool:
        with self._lock:
            if any(existing is obj for existing in collection):
                logger.debug("%s '%s' already registered", label, getattr(obj, "name", ""))
                return False
            collection.append(obj)
            self._needs_rebuild = True
        logger.debug("Registered %s '%s'", label, getattr(obj, "name", ""))
        return True

    def _remove(self, collection: list, obj: object, label: str) -> bool:
        with self._lock:
            for i, existing in enumerate(collection):
                if existing is obj:
                    del collection[i]
                    self._needs_rebuild = True
                    logger.debug("Removed %s '%s'", label, getattr(obj, "name", ""))
                    return True
        logger.debug("%s '%s' was not registered", label, getattr(obj, "name", ""))
        return False

    def register_flux_volume(self, volume: FluxVolume) -> bool:
        return self._add(self._flux_volumes, volume, "flux volume")

    def remove_flux_volume(self, volume: FluxVolume) -> bool:
        return self._remove(self._flux_volumes, volume, "flux volume")

    def register_light(self, light: Light) -> bool:
        for issue in light.parameter_issues():
            logger.warning("Light '%s': %s", light.name, issue)
        return self._add(self._lights, light, "light")

    def remove_light(self, light: Light) -> bool:
        return self._remove(self._lights, light, "light")

    def register_box(self, box: OccluderBox) -> bool:
        return self._add(self._boxes, box, "occluder box")

    def remove_box(self, box: OccluderBox) -> bool:
        return self._remove(self._boxes, box, "occluder box")

    def clear(self) -> None:
        """Forget every registered object (the objects themselves are untouched)."""
        with self._lock:
            self._flux_volumes.clear()
            self._lights.clear()
            self._boxes.clear()
            self._index = None
            self._needs_rebuild = True
        logger.info("Engine cleared")

    # --- Calculation ------------------------------------------------------

    async def calculate(self, tick_id: int | None = None) -> bool:
        """Recompute the flux of every volume, cooperatively.

        Parameters
        ----------
        tick_id : int, optional
            Monotonically increasing frame/tick counter of the caller.

        Returns
        -------
        bool
            True if this call ran at least one pass; False if it was dropped
            or coalesced into the pass already in flight.
        """
        with self._lock:
            decision = self._scheduler.request(tick_id)
        if decision is not ScheduleDecision.START:
            return False

        current_tick = tick_id
        while True:
            try:
                # Single suspension point per pass; cancellation here must
                # release the scheduler too.
                await asyncio.sleep(0)
                self.run_pass(current_tick)
            except BaseException:
                with self._lock:
                    self._scheduler.abort()
                raise

            with self._lock:
                next_tick = self._scheduler.finish()
            if next_tick is None:
                return True

            logger.debug("Trailing re-run for tick %d", next_tick)
            current_tick = next_tick

    def run_pass(self, tick_id: int | None = None) -> FluxResult:
        """Run one complete pass synchronously (no scheduling)."""
        wall_start = time.perf_counter()

        with self._lock:
            volumes = tuple(self._flux_volumes)
            lights = tuple(self._lights)
            boxes = tuple(self._boxes)
            self._needs_rebuild = False

        index = self.build_index(volumes, boxes)
        self._index = index

        flux: dict[str, float] = {}
        sample_counts: dict[str, int] = {}
        for i, volume in enumerate(volumes):
            value, count = self._compute_volume_flux(volume, lights, index)
            volume.record_flux(value)
            key = volume.name or f"volume_{i}"
            if key in flux:
                base, n = key, i
                key = f"{base}#{n}"
                while key in flux:
                    n += 1
                    key = f"{base}#{n}"
            flux[key] = value
            sample_counts[key] = count

        elapsed = time.perf_counter() - wall_start
        result = FluxResult(
            tick_id=tick_id,
            flux=flux,
            sample_counts=sample_counts,
            stats=self._compute_stats(np.array(list(flux.values()), dtype=np.float64)),
            level_counts=self._count_levels(flux.values()),
            index_stats=index.stats(),
            elapsed_s=elapsed,
        )
        self._pass_count += 1
        self._last_result = result

        logger.info(
            "Pass %d (tick=%s): %d volumes, %d lights, %d boxes, "
            "mean flux=%.2f, %.1f ms",
            self._pass_count,
            tick_id,
            len(volumes),
            len(lights),
            len(boxes),
            result.stats["mean_flux"],
            elapsed * 1e3,
        )
        return result

    def build_index(
        self,
        volumes: tuple[FluxVolume, ...],
        boxes: tuple[OccluderBox, ...],
    ) -> SpatialIndex:
        """Build a fresh spatial index over occluders and flux volumes."""
        entries: list[IndexEntry] = []
        for box in boxes:
            try:
                entries.append(IndexEntry.for_occluder(box))
            except DegenerateTransformError as exc:
                logger.warning("Skipping occluder '%s': %s", box.name, exc)
        for volume in volumes:
            try:
                entries.append(IndexEntry.for_volume(volume))
            except DegenerateTransformError as exc:
                logger.warning("Skipping flux volume '%s' as occluder: %s", volume.name, exc)

        root = self.scene_extent
        for entry in entries:
            root = root.union(entry.bounds)
        if np.any(root.min < self.scene_extent.min) or np.any(root.max > self.scene_extent.max):
            logger.debug("Index root grown beyond scene extent to %s", root)

        index = SpatialIndex(
            root,
            max_depth=self.max_depth,
            max_objects_per_leaf=self.max_objects_per_leaf,
            mode=self.index_mode,
        )
        for entry in entries:
            index.insert(entry)

        logger.debug("Spatial index rebuilt: %s", index.stats())
        return index

    def _compute_volume_flux(
        self,
        volume: FluxVolume,
        lights: tuple[Light, ...],
        index: SpatialIndex,
    ) -> tuple[float, int]:
        """Mean light contribution over the sample points of one volume."""
        try:
            points, normals = volume.get_sampling_points()
        except DegenerateTransformError as exc:
            count = len(volume.template)
            logger.warning(
                "Flux volume '%s' has a degenerate transform (%s); "
                "%d sample points contribute 0",
                volume.name, exc, count,
            )
            return 0.0, count

        count = points.shape[0]
        if count == 0:
            return 0.0, 0

        total = 0.0
        for point, normal in zip(points, normals):
            for light in lights:
                try:
                    total += light_contribution(
                        light,
                        point,
                        normal,
                        index=index,
                        ignore=volume,
                        attenuation_coefficient=self.attenuation_coefficient,
                        luminance_weights=self.luminance_weights,
                    )
                except DegenerateTransformError as exc:
                    logger.debug(
                        "Light '%s' skipped for a sample of '%s': %s",
                        light.name, volume.name, exc,
                    )

        return total / count, count

    def _count_levels(self, values) -> dict[str, int]:
        counts = {level.value: 0 for level in FluxLevel}
        for value in values:
            level = classify_flux(value, self.low_threshold, self.high_threshold)
            counts[level.value] += 1
        return counts

    @staticmethod
    def _compute_stats(flux: np.ndarray) -> dict[str, float]:
        """Compute summary statistics for a pass."""
        if flux.size == 0:
            return {"mean_flux": 0.0, "min_flux": 0.0, "max_flux": 0.0}
        return {
            "mean_flux": float(flux.mean()),
            "min_flux": float(flux.min()),
            "max_flux": float(flux.max()),
        }
