"""Tests for the flux simulation engine.

Covers registration, full passes against hand-computed values, recovery
from degenerate geometry, determinism, and the cooperative scheduling of
``calculate()`` (non-re-entrance and trailing-edge coalescing).
"""

from __future__ import annotations

import asyncio
import logging

import numpy as np
import pytest

from core_engine.constants import default_config
from core_engine.flux_volume import FluxLevel, FluxVolume, SampleTemplate
from core_engine.geometry import AABB
from core_engine.illumination import FluxSimulationEngine
from core_engine.lights import Light
from core_engine.occluder import OccluderBox
from core_engine.scheduler import SchedulerState
from core_engine.spatial_index import IndexMode
from core_engine.transform import Transform

TOP_PROBE = SampleTemplate(
    "top_probe", np.array([[0.5, 1.0, 0.5]]), np.array([[0.0, 1.0, 0.0]])
)
EMPTY_TEMPLATE = SampleTemplate("empty", np.zeros((0, 3)), np.zeros((0, 3)))


# ===================================================================
# FIXTURES
# ===================================================================


def probe_volume(name: str, at=(0.0, 0.0, 0.0)) -> FluxVolume:
    """Unit volume with a single upward sample at world point ``at``."""
    corner = np.asarray(at, dtype=np.float64) - np.array([0.5, 1.0, 0.5])
    return FluxVolume(name=name, transform=Transform(position=corner), template=TOP_PROBE)


@pytest.fixture
def engine() -> FluxSimulationEngine:
    return FluxSimulationEngine()


@pytest.fixture
def worked_light() -> Light:
    return Light.point("bulb", position=(0.0, 5.0, 0.0), intensity=1000.0, max_distance=10.0, decay=2.0)


@pytest.fixture
def greenhouse_engine(engine: FluxSimulationEngine) -> FluxSimulationEngine:
    """Three canopies, a sun and two lamps."""
    for i, x in enumerate((-12.0, 0.0, 12.0)):
        engine.register_flux_volume(
            FluxVolume.plant_canopy(f"plant_{i}", Transform(position=(x, 0.0, 0.0)))
        )
    engine.register_light(Light.directional("sun", intensity=30.0, rotation=(0.4, 0.0, 0.2)))
    engine.register_light(
        Light.spot("lamp_a", position=(-6.0, 20.0, 0.0), intensity=80.0,
                   max_distance=40.0, cone_half_angle=np.radians(45.0))
    )
    engine.register_light(
        Light.point("lamp_b", position=(6.0, 15.0, 2.0), intensity=40.0, max_distance=30.0)
    )
    engine.register_box(OccluderBox("post", Transform(position=(20.0, 0.0, -1.0)), size=(1.0, 30.0, 1.0)))
    return engine


# ===================================================================
# REGISTRATION
# ===================================================================


class TestRegistration:
    """Object bookkeeping."""

    def test_duplicate_registration_ignored(self, engine: FluxSimulationEngine) -> None:
        volume = FluxVolume("a")
        assert engine.register_flux_volume(volume)
        assert not engine.register_flux_volume(volume)
        assert len(engine.flux_volumes) == 1

    def test_remove(self, engine: FluxSimulationEngine) -> None:
        light = Light.point("l")
        box = OccluderBox("b")
        volume = FluxVolume("v")
        engine.register_light(light)
        engine.register_box(box)
        engine.register_flux_volume(volume)
        assert engine.remove_light(light)
        assert engine.remove_box(box)
        assert engine.remove_flux_volume(volume)
        assert not engine.remove_light(light), "Second removal is a no-op"
        assert engine.lights == () and engine.boxes == () and engine.flux_volumes == ()

    def test_registration_marks_rebuild(self, engine: FluxSimulationEngine) -> None:
        engine.run_pass()
        assert not engine.needs_rebuild
        engine.register_box(OccluderBox("b"))
        assert engine.needs_rebuild

    def test_invalid_light_warns(self, engine: FluxSimulationEngine, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="core_engine.illumination"):
            engine.register_light(Light.point("bad", intensity=-1.0))
        assert "bad" in caplog.text

    def test_clear(self, greenhouse_engine: FluxSimulationEngine) -> None:
        greenhouse_engine.clear()
        assert greenhouse_engine.flux_volumes == ()
        assert greenhouse_engine.lights == ()
        assert greenhouse_engine.boxes == ()


# ===================================================================
# PASSES
# ===================================================================


class TestPass:
    """Single synchronous passes."""

    def test_worked_example(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        volume = probe_volume("probe")
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)
        result = engine.run_pass(tick_id=1)
        assert volume.flux_value == pytest.approx(250.0)
        assert result.flux["probe"] == pytest.approx(250.0)
        assert result.sample_counts["probe"] == 1
        assert result.tick_id == 1
        assert engine.last_result is result

    def test_flux_is_mean_over_samples(self, engine: FluxSimulationEngine) -> None:
        sun = Light.directional("sun", intensity=10.0)
        volume = FluxVolume("cube", Transform(position=(0.0, 0.0, 0.0)))
        engine.register_flux_volume(volume)
        engine.register_light(sun)
        engine.run_pass()
        # Only samples whose normal has an upward component see an overhead sun.
        up_count = int(np.sum(volume.template.normals[:, 1] > 0.5))
        expected = 10.0 * up_count / len(volume.template)
        assert volume.flux_value == pytest.approx(expected)

    def test_no_lights_gives_zero(self, engine: FluxSimulationEngine) -> None:
        volume = FluxVolume("dark")
        engine.register_flux_volume(volume)
        volume.record_flux(99.0)
        engine.run_pass()
        assert volume.flux_value == 0.0

    def test_empty_template_gives_zero(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        volume = FluxVolume("empty", template=EMPTY_TEMPLATE)
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)
        result = engine.run_pass()
        assert volume.flux_value == 0.0
        assert result.sample_counts["empty"] == 0

    def test_occluder_blocks_and_removal_restores(
        self, engine: FluxSimulationEngine, worked_light: Light
    ) -> None:
        volume = probe_volume("probe")
        shelf = OccluderBox("shelf", Transform(position=(-1.0, 2.0, -1.0)), size=(2.0, 0.5, 2.0))
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)
        engine.register_box(shelf)
        engine.run_pass()
        assert volume.flux_value == 0.0

        engine.remove_box(shelf)
        engine.run_pass()
        assert volume.flux_value == pytest.approx(250.0)

    def test_volume_above_shades_volume_below(self, engine: FluxSimulationEngine) -> None:
        lamp = Light.point("lamp", position=(0.0, 20.0, 0.0), intensity=100.0)
        lower = probe_volume("lower", at=(0.0, 0.0, 0.0))
        upper = FluxVolume("upper", Transform(position=(-1.0, 5.0, -1.0), scale=2.0))
        engine.register_light(lamp)
        engine.register_flux_volume(lower)
        engine.register_flux_volume(upper)
        engine.run_pass()
        assert lower.flux_value == pytest.approx(100.0 * np.exp(-0.2 * 2.0))

    def test_moving_volume_changes_flux(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        volume = probe_volume("probe")
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)
        engine.run_pass()
        before = volume.flux_value
        volume.transform.position[1] += 2.5
        engine.run_pass()
        assert volume.flux_value != pytest.approx(before)
        # distance 2.5 → (1 - 0.25)² · 1000
        assert volume.flux_value == pytest.approx(562.5)

    def test_objects_outside_scene_extent(self, worked_light: Light) -> None:
        engine = FluxSimulationEngine(scene_extent=AABB(np.full(3, -1.0), np.full(3, 1.0)))
        offset = np.array([500.0, 0.0, 500.0])
        volume = probe_volume("far", at=offset)
        light = Light.point("bulb", position=offset + [0.0, 5.0, 0.0], intensity=1000.0,
                            max_distance=10.0, decay=2.0)
        shelf = OccluderBox("shelf", Transform(position=offset + [-1.0, 2.0, -1.0]), size=(2.0, 0.5, 2.0))
        engine.register_flux_volume(volume)
        engine.register_light(light)
        engine.register_box(shelf)
        engine.run_pass()
        assert volume.flux_value == 0.0, "Index root grows to include far objects"

    def test_degenerate_volume_recovers(
        self, engine: FluxSimulationEngine, worked_light: Light, caplog
    ) -> None:
        flat = FluxVolume("flat", Transform(position=(10.0, 0.0, 10.0), scale=(1.0, 0.0, 1.0)))
        good = probe_volume("good")
        engine.register_flux_volume(flat)
        engine.register_flux_volume(good)
        engine.register_light(worked_light)
        with caplog.at_level(logging.WARNING):
            result = engine.run_pass()
        assert flat.flux_value == 0.0
        assert good.flux_value == pytest.approx(250.0)
        assert result.sample_counts["flat"] == len(flat.template)
        assert "flat" in caplog.text

    def test_nan_transform_recovers(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        broken = FluxVolume("broken", Transform(position=(np.nan, 0.0, 0.0)))
        good = probe_volume("good")
        engine.register_flux_volume(broken)
        engine.register_flux_volume(good)
        engine.register_light(worked_light)
        engine.run_pass()
        assert broken.flux_value == 0.0
        assert good.flux_value == pytest.approx(250.0)

    def test_idempotent(self, greenhouse_engine: FluxSimulationEngine) -> None:
        first = dict(greenhouse_engine.run_pass().flux)
        second = dict(greenhouse_engine.run_pass().flux)
        assert first == second
        assert all(v > 0.0 for v in first.values())

    def test_quadtree_matches_octree(self, greenhouse_engine: FluxSimulationEngine) -> None:
        octree = greenhouse_engine.run_pass().flux
        greenhouse_engine.index_mode = IndexMode.QUADTREE
        quadtree = greenhouse_engine.run_pass().flux
        for name, value in octree.items():
            assert quadtree[name] == pytest.approx(value)

    def test_result_statistics(self, greenhouse_engine: FluxSimulationEngine) -> None:
        result = greenhouse_engine.run_pass()
        values = result.flux_array()
        assert result.stats["mean_flux"] == pytest.approx(values.mean())
        assert result.stats["min_flux"] == pytest.approx(values.min())
        assert result.stats["max_flux"] == pytest.approx(values.max())
        assert sum(result.level_counts.values()) == 3
        assert set(result.level_counts) == {level.value for level in FluxLevel}
        assert result.index_stats["entries"] == 4

    def test_duplicate_names_keep_every_volume(self, engine: FluxSimulationEngine) -> None:
        for name in ("a", "a#2", "a", ""):
            engine.register_flux_volume(FluxVolume(name))
        result = engine.run_pass()
        assert len(result.flux) == 4
        assert len(result.sample_counts) == 4
        assert sum(result.level_counts.values()) == 4
        assert set(result.flux) == {"a", "a#2", "a#3", "volume_3"}

    def test_from_config(self) -> None:
        engine = FluxSimulationEngine.from_config(default_config())
        assert engine.attenuation_coefficient == pytest.approx(0.2)
        assert engine.index_mode is IndexMode.OCTREE
        assert np.allclose(engine.scene_extent.max, 1000.0)


# ===================================================================
# SCHEDULING
# ===================================================================


class TestCalculate:
    """Cooperative ``calculate()`` coroutine."""

    def test_single_call_runs_pass(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        volume = probe_volume("probe")
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)
        assert asyncio.run(engine.calculate(1)) is True
        assert engine.pass_count == 1
        assert volume.flux_value == pytest.approx(250.0)
        assert not engine.is_calculating

    def test_burst_coalesces_into_one_rerun(self, greenhouse_engine: FluxSimulationEngine) -> None:
        async def burst():
            return await asyncio.gather(*(greenhouse_engine.calculate(t) for t in range(1, 6)))

        started = asyncio.run(burst())
        assert started == [True, False, False, False, False]
        assert greenhouse_engine.pass_count == 2, "One pass plus exactly one trailing re-run"
        assert greenhouse_engine.last_result.tick_id == 5

    def test_stale_ticks_are_dropped(self, greenhouse_engine: FluxSimulationEngine) -> None:
        async def burst():
            return await asyncio.gather(
                greenhouse_engine.calculate(5),
                greenhouse_engine.calculate(5),
                greenhouse_engine.calculate(3),
                greenhouse_engine.calculate(None),
            )

        asyncio.run(burst())
        assert greenhouse_engine.pass_count == 1

    def test_busy_while_suspended(self, greenhouse_engine: FluxSimulationEngine) -> None:
        async def scenario():
            task = asyncio.ensure_future(greenhouse_engine.calculate(1))
            await asyncio.sleep(0)
            busy = greenhouse_engine.is_calculating
            await task
            return busy, greenhouse_engine.is_calculating

        busy, after = asyncio.run(scenario())
        assert busy is True
        assert after is False

    def test_sequential_calls_each_run(self, greenhouse_engine: FluxSimulationEngine) -> None:
        async def sequence():
            for tick in range(3):
                await greenhouse_engine.calculate(tick)

        asyncio.run(sequence())
        assert greenhouse_engine.pass_count == 3

    def test_failure_releases_scheduler(self, engine: FluxSimulationEngine, monkeypatch) -> None:
        def boom(tick_id=None):
            raise RuntimeError("pass failed")

        monkeypatch.setattr(engine, "run_pass", boom)
        with pytest.raises(RuntimeError):
            asyncio.run(engine.calculate(1))
        assert not engine.is_calculating

    def test_cancel_at_yield_releases_scheduler(self, engine: FluxSimulationEngine, worked_light: Light) -> None:
        volume = probe_volume("probe")
        engine.register_flux_volume(volume)
        engine.register_light(worked_light)

        async def scenario():
            task = asyncio.ensure_future(engine.calculate(1))
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            busy = engine.is_calculating
            ran = await engine.calculate(2)
            return busy, ran

        busy, ran = asyncio.run(scenario())
        assert busy is False, "Cancelled calculation must not leave the engine busy"
        assert ran is True
        assert engine.pass_count == 1
        assert volume.flux_value == pytest.approx(250.0)

    def test_cancel_with_pending_rerun(self, greenhouse_engine: FluxSimulationEngine) -> None:
        async def scenario():
            first = asyncio.ensure_future(greenhouse_engine.calculate(1))
            second = asyncio.ensure_future(greenhouse_engine.calculate(2))
            await asyncio.sleep(0)
            pending = greenhouse_engine.scheduler.state
            first.cancel()
            with pytest.raises(asyncio.CancelledError):
                await first
            coalesced = await second
            return pending, coalesced, await greenhouse_engine.calculate(3)

        pending, coalesced, ran = asyncio.run(scenario())
        assert pending is SchedulerState.RUNNING_WITH_PENDING_RERUN
        assert coalesced is False
        assert ran is True
        assert greenhouse_engine.pass_count == 1
        assert greenhouse_engine.last_result.tick_id == 3
