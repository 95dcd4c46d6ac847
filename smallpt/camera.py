"""
Camera module for generating primary rays.

The rig reproduces the classic smallpt camera exactly, so renders stay
pixel-comparable with historical reference images:
- fixed sensor half-extent of 0.5135
- horizontal axis scaled by the aspect ratio
- ray origins pushed 140 units forward from the eye
- 2x2 sub-pixel grid with tent-filtered jitter
"""

from __future__ import annotations
import math
import random
from .vec3 import Vec3
from .ray import Ray

SENSOR_SCALE = 0.5135
# Distance from the eye to the front of the scene
RAY_OFFSET = 140.0


def tent_sample(rng: random.Random) -> float:
    """Draw an offset in [-1, 1) from a tent (triangle) distribution."""
    r = 2.0 * rng.random()
    if r < 1.0:
        return math.sqrt(r) - 1.0
    return 1.0 - math.sqrt(2.0 - r)


class Camera:
    """Pinhole camera looking along `eye.direction`."""

    def __init__(self, eye: Ray, width: int, height: int):
        """Create a camera.

        Args:
            eye: Camera position and unit viewing direction
            width: Image width in pixels
            height: Image height in pixels
        """
        self.eye = eye
        self.width = width
        self.height = height
        self.cx = Vec3(width * SENSOR_SCALE / height, 0.0, 0.0)
        self.cy = self.cx.cross(eye.direction).normalize() * SENSOR_SCALE

    def get_ray(self, x: int, y: int, sx: int, sy: int, rng: random.Random) -> Ray:
        """Generate a jittered ray through one sub-pixel cell.

        Args:
            x: Pixel column, 0 at the left
            y: Pixel row, 0 at the top
            sx: Sub-pixel column (0 or 1)
            sy: Sub-pixel row (0 or 1)
            rng: Random generator owned by the calling worker

        Returns:
            A ray from the camera through the jittered sub-pixel
        """
        dx = tent_sample(rng)
        dy = tent_sample(rng)
        row = self.height - y - 1

        d = (self.cx * (((sx + 0.5 + dx) / 2.0 + x) / self.width - 0.5)
             + self.cy * (((sy + 0.5 + dy) / 2.0 + row) / self.height - 0.5)
             + self.eye.direction)

        return Ray(self.eye.origin + d * RAY_OFFSET, d.normalize())

    def __repr__(self) -> str:
        return f"Camera(eye={self.eye}, size={self.width}x{self.height})"
