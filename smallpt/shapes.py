"""
Sphere geometry and scene intersection.

Spheres are the only primitive. A scene is an ordered sequence of spheres
that workers share read-only for the duration of a render.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
import math

from .vec3 import Vec3, Point3, Color
from .ray import Ray
from .materials import Material, Diffuse, material_from_dict

# Minimum hit distance, keeps scattered rays from re-hitting their origin
EPSILON = 1e-4


@dataclass
class HitRecord:
    """Stores information about a ray-sphere intersection.

    Attributes:
        t: The ray parameter at intersection
        point: The intersection point in world space
        normal: The outward surface normal at the intersection
        emission: Radiance emitted by the surface
        albedo: Surface color
        material: The material at the hit point
    """
    t: float
    point: Point3
    normal: Vec3
    emission: Color
    albedo: Color
    material: Material


class Sphere:
    """A sphere with emission, color and material."""

    __slots__ = ('radius', 'center', 'emission', 'color', 'material')

    def __init__(
        self,
        radius: float,
        center: Point3,
        emission: Optional[Color] = None,
        color: Optional[Color] = None,
        material: Optional[Material] = None
    ):
        """Create a sphere.

        Args:
            radius: Radius of the sphere (must be positive)
            center: Center point of the sphere
            emission: Emitted radiance (defaults to black)
            color: Albedo, each component in [0, 1] (defaults to black)
            material: Reflection model (defaults to Diffuse)
        """
        if radius <= 0:
            raise ValueError(f"Sphere radius must be positive, got {radius}")
        self.radius = float(radius)
        self.center = center
        self.emission = emission if emission is not None else Color(0, 0, 0)
        self.color = color if color is not None else Color(0, 0, 0)
        self.material = material if material is not None else Diffuse()

    def intersect(self, ray: Ray) -> Optional[float]:
        """Return the nearest ray parameter beyond EPSILON, or None.

        Solves |o + t*d - p|^2 = r^2 for a unit direction d, using
        b = (p - o).d and det = b^2 - (p - o).(p - o) + r^2.
        """
        op = self.center - ray.origin
        b = op.dot(ray.direction)
        det = b * b - op.dot(op) + self.radius * self.radius
        if det < 0:
            return None

        det = math.sqrt(det)
        t = b - det
        if t > EPSILON:
            return t
        t = b + det
        if t > EPSILON:
            return t
        return None

    def hit(self, ray: Ray) -> Optional[HitRecord]:
        """Test ray-sphere intersection and build a hit record."""
        t = self.intersect(ray)
        if t is None:
            return None
        return self._record(ray, t)

    def _record(self, ray: Ray, t: float) -> HitRecord:
        point = ray.at(t)
        normal = (point - self.center).normalize()
        return HitRecord(
            t=t,
            point=point,
            normal=normal,
            emission=self.emission,
            albedo=self.color,
            material=self.material
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'radius': self.radius,
            'center': self.center.to_list(),
            'emission': self.emission.to_list(),
            'color': self.color.to_list(),
            'material': self.material.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Sphere:
        try:
            return cls(
                radius=float(data['radius']),
                center=Point3.from_array(data['center']),
                emission=Color.from_array(data.get('emission', (0, 0, 0))),
                color=Color.from_array(data.get('color', (0, 0, 0))),
                material=material_from_dict(data.get('material', {'type': 'diffuse'}))
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed sphere: {e}") from e

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sphere):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Sphere(radius={self.radius}, center={self.center}, material={self.material!r})"


def intersect(scene: Sequence[Sphere], ray: Ray) -> Optional[HitRecord]:
    """Find the closest hit along the ray.

    Ties keep the first sphere in scene order.
    """
    closest_t = math.inf
    closest = None
    for sphere in scene:
        t = sphere.intersect(ray)
        if t is not None and t < closest_t:
            closest_t = t
            closest = sphere

    if closest is None:
        return None
    return closest._record(ray, closest_t)
