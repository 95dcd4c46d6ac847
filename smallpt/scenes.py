"""
Built-in scenes.

The Cornell box is built from huge spheres acting as walls, with a mirror
ball, a glass ball and a large emitter poking through the ceiling.
"""

from __future__ import annotations
from typing import List

from .vec3 import Vec3, Point3, Color
from .ray import Ray
from .shapes import Sphere
from .materials import Diffuse, Specular, Refractive, Mix


def create_cornell_box() -> List[Sphere]:
    """Create the classic smallpt Cornell box."""
    diffuse = Diffuse()
    black = Color(0, 0, 0)
    white = Color(0.75, 0.75, 0.75)

    return [
        Sphere(1e5, Point3(1e5 + 1, 40.8, 81.6), black, Color(0.75, 0.25, 0.25), diffuse),   # Left
        Sphere(1e5, Point3(-1e5 + 99, 40.8, 81.6), black, Color(0.25, 0.25, 0.75), diffuse),  # Right
        Sphere(1e5, Point3(50, 40.8, 1e5), black, white, diffuse),                            # Back
        Sphere(1e5, Point3(50, 40.8, -1e5 + 170), black, black, diffuse),                     # Front
        Sphere(1e5, Point3(50, 1e5, 81.6), black, white, diffuse),                            # Bottom
        Sphere(1e5, Point3(50, -1e5 + 81.6, 81.6), black, white, diffuse),                    # Top
        Sphere(16.5, Point3(27, 16.5, 47), black, Color(0.999, 0.999, 0.999), Specular()),    # Mirror
        Sphere(16.5, Point3(73, 16.5, 78), black, Color(0.999, 0.999, 0.999), Refractive()),  # Glass
        Sphere(600, Point3(50, 681.6 - 0.27, 81.6), Color(12, 12, 12), black, diffuse),       # Light
    ]


def create_mixed_box() -> List[Sphere]:
    """Cornell box with a half-glossy ball in place of the mirror."""
    scene = create_cornell_box()
    scene[6] = Sphere(16.5, Point3(27, 16.5, 47), Color(0, 0, 0), Color(0.9, 0.7, 0.3),
                      Mix(0.5, Diffuse(), Specular()))
    return scene


def default_camera() -> Ray:
    """Eye position and direction matching the Cornell box."""
    return Ray(Point3(50, 52, 295.6), Vec3(0, -0.042612, -1).normalize())


SCENES = {
    'cornell': create_cornell_box,
    'mixed': create_mixed_box,
}
