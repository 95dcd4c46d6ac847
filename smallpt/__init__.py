"""
smallpt - A distributed Python path tracer

Renders scenes of spheres with Monte Carlo global illumination:
- Diffuse, mirror, glass and mixed materials
- Russian roulette path termination
- Multi-threaded, center-out tile rendering with progressive refinement
- Optional offloading of tiles to remote render agents over HTTP
"""

__version__ = "0.1.0"

from .vec3 import Vec3, Point3, Color
from .ray import Ray
from .materials import Material, Diffuse, Specular, Refractive, Mix, ScatterResult, material_from_dict
from .shapes import Sphere, HitRecord, intersect
from .radiance import radiance, russian_roulette
from .camera import Camera
from .session import Rectangle, Session, Task
from .scheduler import WorkItem, WorkQueue, generate_tiles, partition_tiles
from .worker import WorkerPool, render_tile, encode_pixels, decode_pixels
from .distribution import (
    SmallptError, AgentError, UnknownSessionError, CorruptResultError,
    Registry, RemoteAgent, ResponseServer, compress, decompress
)
from .renderer import Renderer, RenderSettings, get_platform_info
from .scenes import SCENES, create_cornell_box, default_camera
from .agent import Agent, run_agent
