"""
Reflection models for sphere surfaces.

Implements a closed set of materials:
- Diffuse (ideal Lambertian, cosine-weighted sampling)
- Specular (perfect mirror)
- Refractive (glass, Fresnel split via Schlick's approximation)
- Mix (linear blend of two materials)

Each material turns one incoming ray into zero or more weighted
continuation rays. The weights are multiplied into the path throughput by
the radiance estimator, so importance-sampled terms that cancel are
simply weight 1.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List
import math
import random

from .vec3 import Vec3
from .ray import Ray

# Refractive indices for air and glass
NC = 1.0
NT = 1.5


@dataclass
class ScatterResult:
    """A continuation ray and the weight applied to its contribution."""
    weight: float
    scattered_ray: Ray


class Material(ABC):
    """Abstract base class for materials."""

    @abstractmethod
    def scatter(self, depth: int, rng: random.Random, point: Vec3,
                direction: Vec3, normal: Vec3) -> List[ScatterResult]:
        """Sample continuation rays for a hit.

        Args:
            depth: Number of scattering events so far (1 at the first hit)
            rng: Random generator owned by the calling worker
            point: Point of intersection
            direction: Unit direction of the incoming ray
            normal: Outward surface normal at the hit point

        Returns:
            Zero or more weighted continuation rays
        """
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON representation used on the wire."""
        pass

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Material):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(repr(self.to_dict()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _oriented(normal: Vec3, direction: Vec3) -> Vec3:
    """Flip the normal so it faces against the incoming direction."""
    return normal if normal.dot(direction) < 0.0 else -normal


class Diffuse(Material):
    """Ideal diffuse reflector."""

    def scatter(self, depth, rng, point, direction, normal):
        nl = _oriented(normal, direction)

        r1 = 2.0 * math.pi * rng.random()
        r2 = rng.random()
        r2s = math.sqrt(r2)

        # Orthonormal basis around the oriented normal
        w = nl
        axis = Vec3(0.0, 1.0, 0.0) if abs(w.x) > 0.1 else Vec3(1.0, 0.0, 0.0)
        u = axis.cross(w).normalize()
        v = w.cross(u)

        d = (u * (math.cos(r1) * r2s)
             + v * (math.sin(r1) * r2s)
             + w * math.sqrt(1.0 - r2)).normalize()
        return [ScatterResult(1.0, Ray(point, d))]

    def to_dict(self):
        return {'type': 'diffuse'}


class Specular(Material):
    """Perfect mirror."""

    def scatter(self, depth, rng, point, direction, normal):
        return [ScatterResult(1.0, Ray(point, direction.reflect(normal)))]

    def to_dict(self):
        return {'type': 'specular'}


class Refractive(Material):
    """Dielectric (glass) with indices NC outside and NT inside.

    The first two bounces split into both a reflected and a transmitted
    branch; deeper bounces pick one of them, favouring reflection in
    proportion to the Fresnel term.
    """

    def scatter(self, depth, rng, point, direction, normal):
        refl_ray = Ray(point, direction.reflect(normal))
        nl = _oriented(normal, direction)

        into = normal.dot(nl) > 0.0
        nnt = NC / NT if into else NT / NC
        ddn = direction.dot(nl)
        cos2t = 1.0 - nnt * nnt * (1.0 - ddn * ddn)

        # Total internal reflection
        if cos2t < 0.0:
            return [ScatterResult(1.0, refl_ray)]

        sign = 1.0 if into else -1.0
        tdir = (direction * nnt - normal * (sign * (ddn * nnt + math.sqrt(cos2t)))).normalize()
        trans_ray = Ray(point, tdir)

        re, tr = self.fresnel(ddn, tdir, normal, into)

        if depth > 2:
            p = 0.25 + 0.5 * re
            if rng.random() < p:
                return [ScatterResult(re / p, refl_ray)]
            return [ScatterResult(tr / (1.0 - p), trans_ray)]

        return [ScatterResult(re, refl_ray), ScatterResult(tr, trans_ray)]

    @staticmethod
    def fresnel(ddn: float, tdir: Vec3, normal: Vec3, into: bool) -> tuple[float, float]:
        """Schlick's approximation; returns (reflectance, transmittance)."""
        a = NT - NC
        b = NT + NC
        r0 = a * a / (b * b)
        c = 1.0 - (-ddn if into else tdir.dot(normal))
        re = r0 + (1.0 - r0) * c ** 5
        return re, 1.0 - re

    def to_dict(self):
        return {'type': 'refractive'}


class Mix(Material):
    """Linear blend: `first` weighted by 1 - weight, `second` by weight."""

    def __init__(self, weight: float, first: Material, second: Material):
        """Create a mixed material.

        Args:
            weight: Share of the second material, in [0, 1]
            first: Material receiving 1 - weight
            second: Material receiving weight
        """
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"Mix weight must be in [0, 1], got {weight}")
        self.weight = weight
        self.first = first
        self.second = second

    def scatter(self, depth, rng, point, direction, normal):
        results = []
        for share, material in ((1.0 - self.weight, self.first), (self.weight, self.second)):
            for result in material.scatter(depth, rng, point, direction, normal):
                results.append(ScatterResult(share * result.weight, result.scattered_ray))
        return results

    def to_dict(self):
        return {
            'type': 'mix',
            'weight': self.weight,
            'first': self.first.to_dict(),
            'second': self.second.to_dict()
        }

    def __repr__(self) -> str:
        return f"Mix({self.weight}, {self.first!r}, {self.second!r})"


def material_from_dict(config: Dict[str, Any]) -> Material:
    """Create a material from its JSON representation.

    Raises:
        ValueError: If the material type is unknown or fields are missing
    """
    if not isinstance(config, dict):
        raise ValueError(f"Material must be a JSON object, got {config!r}")
    mat_type = config.get('type')

    if mat_type == 'diffuse':
        return Diffuse()
    elif mat_type == 'specular':
        return Specular()
    elif mat_type == 'refractive':
        return Refractive()
    elif mat_type == 'mix':
        try:
            return Mix(
                float(config['weight']),
                material_from_dict(config['first']),
                material_from_dict(config['second'])
            )
        except KeyError as e:
            raise ValueError(f"Mix material missing field {e}") from e
    raise ValueError(f"Unknown material type: {mat_type!r}")
