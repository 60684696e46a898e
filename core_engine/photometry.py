"""Photometric model — direct, single-bounce diffuse contribution of a light.

For a sample point ``P`` with unit normal ``N`` the contribution of one
light is::

    C = L(color) · I · max(N · ω, 0) · A

where ``ω`` is the unit direction from ``P`` toward the light, ``L`` the
perceptual luminance of the light colour and ``A`` the product of:

- the windowed distance falloff ``clamp(1 − d / d_max, 0, 1) ** decay``
  (point and spot lights with a finite range and positive decay);
- the Beer–Lambert transmittance ``exp(−κ · ℓ)`` through the path length
  ``ℓ`` the occlusion ray spends inside other flux volumes.

A ray that touches an occluder box contributes nothing. The point/spot
range cut-off and the spot cone cut-off are hard, inclusive-inside edges:
a point at exactly ``d_max`` or exactly on the cone is still lit.

Notes
-----
This is a deliberately cheap heuristic: no inverse-square law, no
multi-bounce light, no penumbra. It must stay cheap enough to run on every
frame for a few dozen volumes and a dozen lights.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.geometry import Ray
from core_engine.lights import Light, LightKind
from core_engine.spatial_index import SpatialIndex

logger = logging.getLogger(__name__)

LUMINANCE_WEIGHTS = np.array([0.299, 0.587, 0.114])
DEFAULT_ATTENUATION_COEFFICIENT: float = 0.2

_COINCIDENT_EPSILON: float = 1e-12


def luminance(color: np.ndarray, weights: np.ndarray = LUMINANCE_WEIGHTS) -> float:
    """Perceptual brightness of an RGB colour (Rec. 601 weights)."""
    return float(np.dot(np.asarray(color, dtype=np.float64), weights))


def range_attenuation(distance: float, max_distance: float, decay: float) -> float:
    """Windowed distance falloff of a point/spot light.

    Parameters
    ----------
    distance : float
        Distance from the light to the sample point.
    max_distance : float
        Light range; 0 (or negative) means unbounded and disables falloff.
    decay : float
        Falloff exponent; 0 disables falloff.

    Returns
    -------
    float
        Attenuation factor in [0, 1].
    """
    if decay <= 0.0 or max_distance <= 0.0:
        return 1.0
    return float(np.clip(1.0 - distance / max_distance, 0.0, 1.0) ** decay)


def light_contribution(
    light: Light,
    point: np.ndarray,
    normal: np.ndarray,
    index: SpatialIndex | None = None,
    ignore: object | None = None,
    attenuation_coefficient: float = DEFAULT_ATTENUATION_COEFFICIENT,
    luminance_weights: np.ndarray = LUMINANCE_WEIGHTS,
) -> float:
    """Diffuse contribution of one light at one sample point.

    Parameters
    ----------
    light : Light
        Light descriptor.
    point : np.ndarray
        World-space sample position. Shape: (3,).
    normal : np.ndarray
        World-space unit normal. Shape: (3,).
    index : SpatialIndex, optional
        Occlusion structure; ``None`` disables occlusion.
    ignore : object, optional
        Object excluded from the occlusion query (the sampled volume).
    attenuation_coefficient : float
        Beer–Lambert coefficient κ per unit path length.
    luminance_weights : np.ndarray
        RGB weights used for the colour luminance.

    Returns
    -------
    float
        Non-negative contribution; 0.0 for any degenerate input.
    """
    point = np.asarray(point, dtype=np.float64)
    normal = np.asarray(normal, dtype=np.float64)
    if not (np.all(np.isfinite(point)) and np.all(np.isfinite(normal))):
        return 0.0

    attenuation = 1.0

    if light.kind is LightKind.DIRECTIONAL:
        light_dir = light.world_direction
    else:
        to_light = light.world_position - point
        distance = float(np.linalg.norm(to_light))
        if distance < _COINCIDENT_EPSILON:
            return 0.0
        light_dir = to_light / distance

        if light.max_distance > 0.0 and distance > light.max_distance:
            return 0.0

        attenuation = range_attenuation(distance, light.max_distance, light.effective_decay)

        if light.kind is LightKind.SPOT:
            angle_cos = float(np.dot(-light_dir, light.world_direction))
            if angle_cos < np.cos(light.effective_cone_half_angle):
                return 0.0

    if index is not None:
        occlusion = index.intersect_ray(Ray(point, light_dir), ignore=ignore)
        if occlusion.hard_occluded:
            return 0.0
        if occlusion.total_length > 0.0:
            attenuation *= np.exp(-attenuation_coefficient * occlusion.total_length)

    diffuse = max(float(np.dot(normal, light_dir)), 0.0)
    lum = luminance(light.effective_color, luminance_weights)

    contribution = lum * light.effective_intensity * diffuse * attenuation
    if not np.isfinite(contribution):
        return 0.0
    return float(contribution)
