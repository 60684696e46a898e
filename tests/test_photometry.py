"""Tests for the photometric model and light descriptors.

Includes the analytical reference cases: the 250-unit point light example,
hard occlusion, the inclusive range and cone cut-offs, Beer–Lambert
attenuation through flux volumes, and directional-light invariance.
"""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.flux_volume import FluxVolume
from core_engine.geometry import AABB
from core_engine.lights import Light, LightKind
from core_engine.occluder import OccluderBox
from core_engine.photometry import (
    LUMINANCE_WEIGHTS,
    light_contribution,
    luminance,
    range_attenuation,
)
from core_engine.spatial_index import SpatialIndex
from core_engine.transform import Transform

UP = np.array([0.0, 1.0, 0.0])
ORIGIN = np.zeros(3)


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def empty_index() -> SpatialIndex:
    return SpatialIndex(AABB(np.full(3, -100.0), np.full(3, 100.0)))


@pytest.fixture
def worked_light() -> Light:
    """Point light at (0, 5, 0), I=1000, range 10, decay 2, white."""
    return Light.point("bulb", position=(0.0, 5.0, 0.0), intensity=1000.0, max_distance=10.0, decay=2.0)


def spot_at_angle(angle_deg: float) -> tuple[Light, np.ndarray]:
    """Downward spot at (0, 10, 0) and a floor point ``angle_deg`` off-axis."""
    light = Light.spot("spot", position=(0.0, 10.0, 0.0), intensity=10.0, cone_half_angle=np.radians(30.0))
    theta = np.radians(angle_deg)
    d = 5.0
    point = np.array([d * np.sin(theta), 10.0 - d * np.cos(theta), 0.0])
    return light, point


# ===================================================================
# BASIC TERMS
# ===================================================================


class TestTerms:
    """Luminance and distance falloff."""

    def test_white_luminance_is_one(self) -> None:
        assert luminance(np.ones(3)) == pytest.approx(1.0)

    def test_luminance_weights(self) -> None:
        assert luminance(np.array([1.0, 0.0, 0.0])) == pytest.approx(0.299)
        assert luminance(np.array([0.0, 1.0, 0.0])) == pytest.approx(0.587)
        assert luminance(np.array([0.0, 0.0, 1.0])) == pytest.approx(0.114)
        assert LUMINANCE_WEIGHTS.sum() == pytest.approx(1.0)

    def test_range_attenuation(self) -> None:
        assert range_attenuation(5.0, 10.0, 2.0) == pytest.approx(0.25)
        assert range_attenuation(5.0, 10.0, 1.0) == pytest.approx(0.5)
        assert range_attenuation(10.0, 10.0, 1.0) == 0.0
        assert range_attenuation(50.0, 10.0, 1.0) == 0.0

    def test_no_falloff_without_decay_or_range(self) -> None:
        assert range_attenuation(5.0, 10.0, 0.0) == 1.0
        assert range_attenuation(500.0, 0.0, 2.0) == 1.0


# ===================================================================
# REFERENCE CASES
# ===================================================================


class TestReferenceCases:
    """Hand-computed contributions."""

    def test_worked_example(self, worked_light: Light, empty_index: SpatialIndex) -> None:
        c = light_contribution(worked_light, ORIGIN, UP, index=empty_index)
        assert c == pytest.approx(250.0)

    def test_worked_example_without_index(self, worked_light: Light) -> None:
        assert light_contribution(worked_light, ORIGIN, UP) == pytest.approx(250.0)

    def test_occluder_between_blocks(self, worked_light: Light, empty_index: SpatialIndex) -> None:
        empty_index.insert_occluder(
            OccluderBox("shelf", Transform(position=(-1.0, 2.0, -1.0)), size=(2.0, 1.0, 2.0))
        )
        assert light_contribution(worked_light, ORIGIN, UP, index=empty_index) == 0.0

    def test_occluder_beside_ray_does_not_block(
        self, worked_light: Light, empty_index: SpatialIndex
    ) -> None:
        empty_index.insert_occluder(
            OccluderBox("shelf", Transform(position=(3.0, 2.0, 3.0)), size=(2.0, 1.0, 2.0))
        )
        assert light_contribution(worked_light, ORIGIN, UP, index=empty_index) == pytest.approx(250.0)

    def test_distance_cutoff(self) -> None:
        light = Light.point("bulb", position=(0.0, 10.0001, 0.0), intensity=100.0, max_distance=10.0, decay=0.0)
        assert light_contribution(light, ORIGIN, UP) == 0.0

    def test_distance_cutoff_inclusive(self) -> None:
        light = Light.point("bulb", position=(0.0, 10.0, 0.0), intensity=100.0, max_distance=10.0, decay=0.0)
        assert light_contribution(light, ORIGIN, UP) == pytest.approx(100.0)

    def test_cone_cutoff_outside(self) -> None:
        light, point = spot_at_angle(31.0)
        assert light_contribution(light, point, UP) == 0.0

    def test_cone_cutoff_inside(self) -> None:
        light, point = spot_at_angle(29.0)
        assert light_contribution(light, point, UP) > 0.0

    def test_directional_invariance(self, empty_index: SpatialIndex) -> None:
        sun = Light.directional("sun", intensity=7.0, rotation=(0.3, 0.0, 0.1))
        near = light_contribution(sun, ORIGIN, UP, index=empty_index)
        far = light_contribution(sun, np.array([1e5, -3e4, 2e5]), UP)
        assert near > 0.0
        assert far == pytest.approx(near)

    def test_directional_uses_cosine(self) -> None:
        sun = Light.directional("sun", intensity=10.0, rotation=(np.radians(60.0), 0.0, 0.0))
        assert light_contribution(sun, ORIGIN, UP) == pytest.approx(5.0)


# ===================================================================
# ATTENUATION THROUGH FLUX VOLUMES
# ===================================================================


class TestTranslucency:
    """Beer–Lambert attenuation through other flux volumes."""

    @pytest.fixture
    def canopy_above(self, empty_index: SpatialIndex) -> tuple[SpatialIndex, FluxVolume]:
        volume = FluxVolume("above", Transform(position=(-1.0, 4.0, -1.0), scale=2.0))
        empty_index.insert_volume(volume)
        return empty_index, volume

    def test_path_attenuates(self, canopy_above) -> None:
        index, _ = canopy_above
        light = Light.point("bulb", position=(0.0, 10.0, 0.0), intensity=100.0)
        c = light_contribution(light, ORIGIN, UP, index=index)
        assert c == pytest.approx(100.0 * np.exp(-0.2 * 2.0))

    def test_custom_coefficient(self, canopy_above) -> None:
        index, _ = canopy_above
        light = Light.point("bulb", position=(0.0, 10.0, 0.0), intensity=100.0)
        c = light_contribution(light, ORIGIN, UP, index=index, attenuation_coefficient=1.0)
        assert c == pytest.approx(100.0 * np.exp(-2.0))

    def test_ignored_volume_is_transparent(self, canopy_above) -> None:
        index, volume = canopy_above
        light = Light.point("bulb", position=(0.0, 10.0, 0.0), intensity=100.0)
        c = light_contribution(light, ORIGIN, UP, index=index, ignore=volume)
        assert c == pytest.approx(100.0)


# ===================================================================
# DEGENERATE INPUT
# ===================================================================


class TestDegenerate:
    """Inputs that contribute nothing instead of failing."""

    def test_back_facing(self, worked_light: Light) -> None:
        assert light_contribution(worked_light, ORIGIN, -UP) == 0.0

    def test_negative_intensity_clamped(self) -> None:
        light = Light.point("bad", position=(0.0, 5.0, 0.0), intensity=-50.0)
        assert light_contribution(light, ORIGIN, UP) == 0.0
        assert light.parameter_issues()

    def test_black_light(self) -> None:
        light = Light.point("black", position=(0.0, 5.0, 0.0), color=(0.0, 0.0, 0.0), intensity=50.0)
        assert light_contribution(light, ORIGIN, UP) == 0.0

    def test_color_clamped(self) -> None:
        light = Light.point("hot", position=(0.0, 5.0, 0.0), color=(2.0, 2.0, 2.0), intensity=10.0)
        assert light_contribution(light, ORIGIN, UP) == pytest.approx(10.0)

    def test_coincident_point(self) -> None:
        light = Light.point("bulb", position=(0.0, 0.0, 0.0), intensity=10.0)
        assert light_contribution(light, ORIGIN, UP) == 0.0

    def test_nan_sample_point(self, worked_light: Light) -> None:
        assert light_contribution(worked_light, np.array([np.nan, 0.0, 0.0]), UP) == 0.0

    def test_nan_intensity(self) -> None:
        light = Light.point("nan", position=(0.0, 5.0, 0.0), intensity=float("nan"))
        assert light_contribution(light, ORIGIN, UP) == 0.0

    def test_wide_cone_clamped_to_hemisphere(self) -> None:
        light = Light.spot("wide", position=(0.0, 10.0, 0.0), cone_half_angle=np.radians(120.0))
        assert light.effective_cone_half_angle == pytest.approx(np.pi / 2)
        assert light.parameter_issues()


class TestLightDescriptors:
    """Orientation of the three light kinds."""

    def test_directional_points_toward_light(self) -> None:
        assert np.allclose(Light.directional().world_direction, [0.0, 1.0, 0.0])

    def test_spot_shines_down(self) -> None:
        assert np.allclose(Light.spot().world_direction, [0.0, -1.0, 0.0])

    def test_kind_from_string(self) -> None:
        assert Light(kind="point").kind is LightKind.POINT

    def test_valid_light_has_no_issues(self, worked_light: Light) -> None:
        assert worked_light.parameter_issues() == []
