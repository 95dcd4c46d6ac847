"""
Render workers.

A worker renders one tile at a time: every pass adds four jittered rays
per pixel to a running average, and after each pass the current average
is gamma encoded and handed to the tile's callback. Later passes refine
earlier ones, so consumers can display tiles progressively.
"""

from __future__ import annotations
import logging
import os
import random
import threading
from typing import Callable, List, Optional

import numpy as np

from .vec3 import Color
from .camera import Camera
from .radiance import radiance
from .scheduler import TileCallback, WorkItem, WorkQueue
from .session import Rectangle, Session

logger = logging.getLogger(__name__)

GAMMA = 2.2


def encode_pixels(values: np.ndarray) -> bytes:
    """Convert linear radiance to an 8-bit RGB+pad buffer.

    Args:
        values: Array of shape (height, width, 3)

    Returns:
        Row-major bytes, 4 per pixel, the fourth always 0
    """
    corrected = np.power(np.clip(values, 0.0, 1.0), 1.0 / GAMMA)
    ldr = (corrected * 255.0 + 0.5).astype(np.uint8)

    height, width = values.shape[:2]
    buffer = np.zeros((height, width, 4), dtype=np.uint8)
    buffer[:, :, :3] = ldr
    return buffer.tobytes()


def decode_pixels(buffer: bytes, width: int, height: int) -> np.ndarray:
    """View an RGB+pad buffer as a (height, width, 3) uint8 array."""
    pixels = np.frombuffer(buffer, dtype=np.uint8)
    if pixels.size != width * height * 4:
        raise ValueError(f"Expected {width * height * 4} bytes for a {width}x{height} tile, "
                         f"got {pixels.size}")
    return pixels.reshape(height, width, 4)[:, :, :3]


def row_seed(y: int, sample: int) -> int:
    """Seed for one image row in one pass.

    Built from y**3 so rows draw independent sequences; the pass index
    lives in the high bits so every pass adds new samples.
    """
    return (sample << 48) + y ** 3


def render_tile(
    rng: random.Random,
    session: Session,
    tile: Rectangle,
    callback: TileCallback,
    should_stop: Optional[Callable[[], bool]] = None
) -> int:
    """Render a tile progressively.

    Args:
        rng: Random generator owned by the calling worker; reseeded per row
        session: The render job
        tile: Region of the image to render
        callback: Receives the encoded buffer and pass count after each pass
        should_stop: Checked between passes; returning True abandons the tile

    Returns:
        Number of passes completed
    """
    camera = Camera(session.camera, session.width, session.height)
    scene = session.scene
    acc = np.zeros((tile.height, tile.width, 3), dtype=np.float64)

    for sample in range(session.samples):
        if should_stop is not None and should_stop():
            logger.debug("Abandoning tile %s after %d passes", tile, sample)
            return sample

        for j in range(tile.height):
            y = tile.top + j
            rng.seed(row_seed(y, sample))
            row = acc[j]

            for i in range(tile.width):
                x = tile.left + i
                pixel = Color(0, 0, 0)
                for sy in range(2):
                    for sx in range(2):
                        ray = camera.get_ray(x, y, sx, sy, rng)
                        pixel = pixel + radiance(scene, ray, 0, rng)
                row[i] += (pixel.x, pixel.y, pixel.z)

        callback(encode_pixels(acc * (0.25 / (sample + 1))), sample + 1)

    return session.samples


class WorkerPool:
    """A fixed set of threads rendering items pulled from a WorkQueue."""

    def __init__(self, queue: WorkQueue[WorkItem], num_threads: int = 0, name: str = 'smallpt-worker'):
        """Create a worker pool.

        Args:
            queue: Source of work; cancelling it stops the pool
            num_threads: Number of threads (0 = one per CPU core)
            name: Thread name prefix
        """
        self.queue = queue
        self.num_threads = num_threads if num_threads > 0 else (os.cpu_count() or 4)
        self.name = name
        self._threads: List[threading.Thread] = []

    def start(self) -> WorkerPool:
        """Start the worker threads."""
        for index in range(self.num_threads):
            thread = threading.Thread(
                target=self._run,
                name=f"{self.name}-{index}",
                daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.debug("Started %d workers", self.num_threads)
        return self

    def _run(self) -> None:
        rng = random.Random()
        for item in self.queue:
            try:
                render_tile(rng, item.session, item.tile, item.callback,
                            lambda: self.queue.cancelled)
            except Exception:
                logger.exception("Worker failed while rendering tile %s", item.tile)
                raise

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every worker to exit."""
        for thread in self._threads:
            thread.join(timeout)

    @property
    def alive(self) -> int:
        return sum(1 for thread in self._threads if thread.is_alive())
