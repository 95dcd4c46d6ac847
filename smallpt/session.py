"""
Render job descriptions shared between the coordinator and agents.

A Session is one full render; a Rectangle is one tile of it and a Task
is a tile handed to a remote agent together with the URL its result
should be posted to. All three round-trip through JSON.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, Sequence, Tuple

from .vec3 import Vec3
from .ray import Ray
from .shapes import Sphere


@dataclass(frozen=True)
class Rectangle:
    """A tile of the image, in pixels."""
    left: int
    top: int
    width: int
    height: int

    def __post_init__(self):
        if min(self.left, self.top, self.width, self.height) < 0:
            raise ValueError(f"Rectangle fields must be non-negative: {self}")

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def buffer_size(self) -> int:
        """Length in bytes of this tile's RGB+pad pixel buffer."""
        return self.area * 4

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Rectangle:
        try:
            return cls(int(data['left']), int(data['top']), int(data['width']), int(data['height']))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed tile: {e}") from e


class Session:
    """Everything a worker needs to render any tile of an image."""

    def __init__(self, width: int, height: int, samples: int, camera: Ray, scene: Sequence[Sphere]):
        """Create a session.

        Args:
            width: Image width in pixels
            height: Image height in pixels
            samples: Number of progressive passes (4 rays per pixel each)
            camera: Eye position and unit viewing direction
            scene: Spheres to render; copied into an immutable tuple
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {width}x{height}")
        if samples < 1:
            raise ValueError(f"Need at least one sample pass, got {samples}")
        self.width = width
        self.height = height
        self.samples = samples
        self.camera = camera
        self.scene: Tuple[Sphere, ...] = tuple(scene)

    def contains(self, tile: Rectangle) -> bool:
        """Check that a tile lies inside the image."""
        return tile.left + tile.width <= self.width and tile.top + tile.height <= self.height

    def to_dict(self) -> Dict[str, Any]:
        return {
            'width': self.width,
            'height': self.height,
            'samples': self.samples,
            'camera': {
                'origin': self.camera.origin.to_list(),
                'direction': self.camera.direction.to_list()
            },
            'scene': [sphere.to_dict() for sphere in self.scene]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Session:
        try:
            camera = data['camera']
            return cls(
                width=int(data['width']),
                height=int(data['height']),
                samples=int(data['samples']),
                camera=Ray(Vec3.from_array(camera['origin']), Vec3.from_array(camera['direction'])),
                scene=[Sphere.from_dict(s) for s in data['scene']]
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed session: {e}") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> Session:
        return cls.from_dict(json.loads(text))

    def __repr__(self) -> str:
        return (f"Session({self.width}x{self.height}, samples={self.samples}, "
                f"spheres={len(self.scene)})")


@dataclass(frozen=True)
class Task:
    """A tile to render remotely and where to post the result."""
    tile: Rectangle
    callback: str

    def to_dict(self) -> Dict[str, Any]:
        return {'tile': self.tile.to_dict(), 'callback': self.callback}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Task:
        try:
            return cls(Rectangle.from_dict(data['tile']), str(data['callback']))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed task: {e}") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> Task:
        return cls.from_dict(json.loads(text))
