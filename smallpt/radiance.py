"""
Monte Carlo radiance estimator.

Implements path tracing with:
- Russian roulette termination after the fifth bounce
- Material-driven branching (Mix and shallow glass hits spawn two paths)
- An explicit work stack instead of recursion, so long paths and deeply
  nested Mix materials never grow the Python call stack
"""

from __future__ import annotations
import random
from typing import List, Optional, Sequence, Tuple

from .vec3 import Color
from .ray import Ray
from .shapes import Sphere, intersect

# Paths deeper than this are subject to Russian roulette
ROULETTE_DEPTH = 5


def russian_roulette(color: Color, depth: int, rng: random.Random) -> Optional[Color]:
    """Probabilistically end a path, rescaling survivors to stay unbiased.

    Args:
        color: Path throughput multiplied by the surface albedo
        depth: Number of scattering events so far
        rng: Random generator owned by the calling worker

    Returns:
        The (possibly rescaled) throughput, or None if the path ends
    """
    if depth <= ROULETTE_DEPTH:
        return color

    p = color.max_component()
    if rng.random() >= p:
        return None
    return color / p


def radiance(scene: Sequence[Sphere], ray: Ray, depth: int = 0,
             rng: Optional[random.Random] = None) -> Color:
    """Estimate the radiance arriving along a ray.

    Args:
        scene: Spheres to trace against
        ray: The ray to trace (unit direction)
        depth: Scattering events already accumulated by this ray
        rng: Random generator owned by the caller; a fresh one if omitted

    Returns:
        Non-negative per-channel radiance
    """
    if rng is None:
        rng = random.Random()

    result = Color(0.0, 0.0, 0.0)
    work: List[Tuple[Color, Ray, int]] = [(Color(1.0, 1.0, 1.0), ray, depth)]

    while work:
        throughput, ray, depth = work.pop()

        hit = intersect(scene, ray)
        if hit is None:
            continue

        depth += 1
        result = result + throughput * hit.emission

        color = russian_roulette(throughput * hit.albedo, depth, rng)
        if color is None:
            continue

        for scattered in hit.material.scatter(depth, rng, hit.point, ray.direction, hit.normal):
            work.append((color * scattered.weight, scattered.scattered_ray, depth))

    return result
