"""
Renderer module - coordinates a whole render.

Implements:
- Center-out tile scheduling over a local worker pool
- Optional offloading of tiles to remote agents
- Progressive delivery of tiles to a display sink
- PNG output
"""

from __future__ import annotations
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .ray import Ray
from .shapes import Sphere
from .session import Rectangle, Session, Task
from .scheduler import WorkItem, WorkQueue, generate_tiles, partition_tiles, tile_priority
from .worker import WorkerPool, decode_pixels
from .distribution import AgentError, Registry, RemoteAgent, ResponseServer

logger = logging.getLogger(__name__)

# Receives every delivered tile buffer, progressive passes included
TileSink = Callable[[Rectangle, bytes], None]


@dataclass
class RenderSettings:
    """Configuration for the renderer."""
    width: int = 1024
    height: int = 768
    samples: int = 1
    num_threads: int = 0  # 0 = auto-detect
    tile_size: int = 32
    agents: List[str] = field(default_factory=list)
    callback_host: str = 'localhost'
    callback_port: int = 4001
    bind_host: str = '0.0.0.0'
    agent_timeout: float = 10.0
    remote_timeout: Optional[float] = None  # None = wait for remote tiles forever

    def __post_init__(self):
        if self.num_threads == 0:
            self.num_threads = os.cpu_count() or 4


class _Completion:
    """Tracks which tiles still owe their final pass."""

    def __init__(self, tiles: Iterable[Rectangle]):
        self.condition = threading.Condition()
        self.pending: Set[Rectangle] = set(tiles)
        self.total = len(self.pending)
        self.aborted = False

    def complete(self, tile: Rectangle) -> Tuple[int, int]:
        with self.condition:
            self.pending.discard(tile)
            self.condition.notify_all()
            return self.total - len(self.pending), self.total

    def abort(self) -> None:
        with self.condition:
            self.aborted = True
            self.condition.notify_all()

    def wait(self, tiles: Optional[Set[Rectangle]] = None, timeout: Optional[float] = None) -> bool:
        """Wait until the given tiles (default: all) are done; False on timeout or abort."""
        def done():
            if tiles is None:
                return not self.pending
            return not (self.pending & tiles)

        with self.condition:
            self.condition.wait_for(lambda: self.aborted or done(), timeout)
            return done() and not self.aborted


class Renderer:
    """Distributed progressive path tracer."""

    def __init__(self, settings: RenderSettings = None):
        """Create a renderer with the given settings.

        Args:
            settings: Render configuration (uses defaults if None)
        """
        self.settings = settings if settings else RenderSettings()
        self._progress_callback: Optional[Callable[[float], None]] = None
        self._queue: Optional[WorkQueue[WorkItem]] = None
        self._completion: Optional[_Completion] = None

    def set_progress_callback(self, callback: Callable[[float], None]) -> None:
        """Set a callback function for progress updates.

        Args:
            callback: Function that takes progress as float (0.0 to 1.0)
        """
        self._progress_callback = callback

    def render(self, scene: Sequence[Sphere], camera: Ray, on_tile: Optional[TileSink] = None) -> np.ndarray:
        """Render the scene and return the image as a numpy array.

        Args:
            scene: Spheres to render
            camera: Eye position and unit viewing direction
            on_tile: Optional sink receiving every tile buffer as it arrives,
                in no particular order

        Returns:
            Gamma-encoded image as uint8 array of shape (height, width, 3)
        """
        settings = self.settings
        session = Session(settings.width, settings.height, settings.samples, camera, scene)
        image = np.zeros((settings.height, settings.width, 3), dtype=np.uint8)

        tiles = generate_tiles(settings.width, settings.height, settings.tile_size)
        completion = _Completion(tiles)
        self._completion = completion

        def deliver(tile: Rectangle, pixels: bytes, passes: int) -> None:
            with completion.condition:
                image[tile.top:tile.top + tile.height, tile.left:tile.left + tile.width] = \
                    decode_pixels(pixels, tile.width, tile.height)
            if on_tile is not None:
                on_tile(tile, pixels)
            if passes >= session.samples:
                done, total = completion.complete(tile)
                if self._progress_callback:
                    self._progress_callback(done / total)

        queue: WorkQueue[WorkItem] = WorkQueue()
        self._queue = queue
        pool = WorkerPool(queue, settings.num_threads)

        server = None
        local_tiles = tiles
        try:
            if settings.agents:
                registry = Registry()
                server = ResponseServer(registry, settings.bind_host, settings.callback_port,
                                        settings.callback_host).start()
                local_tiles = self._dispatch_remote(session, tiles, registry, server, deliver)

            queue.extend(WorkItem(session, tile, partial(deliver, tile)) for tile in local_tiles)
            queue.close()
            pool.start()

            local = set(local_tiles)
            while not completion.wait(local, timeout=0.5):
                if completion.aborted:
                    break
                if pool.alive == 0 and not completion.wait(local, timeout=0):
                    raise RuntimeError("All render workers exited with tiles outstanding")
            if not completion.wait(timeout=settings.remote_timeout):
                if not completion.aborted:
                    logger.warning("%d remote tiles never arrived", len(completion.pending))
        finally:
            queue.cancel()
            if server is not None:
                server.shutdown()

        pool.join()
        return image

    def _dispatch_remote(
        self,
        session: Session,
        tiles: List[Rectangle],
        registry: Registry,
        server: ResponseServer,
        deliver: Callable[[Rectangle, bytes, int], None]
    ) -> List[Rectangle]:
        """Hand a share of the tiles to each reachable agent.

        Returns:
            The tiles left for the local workers, in priority order
        """
        settings = self.settings
        agents = []
        for url in settings.agents:
            agent = RemoteAgent(url, settings.agent_timeout)
            try:
                remote_id = agent.open_session(session)
            except AgentError as e:
                logger.error("Skipping agent %s: %s", url, e)
                continue
            logger.info("Sending tasks to %s (session %s)", agent.url, remote_id)
            agents.append((agent, remote_id))

        if not agents:
            return tiles

        session_id = registry.create_session(session)
        shares = partition_tiles(tiles, len(agents) + 1)
        local = list(shares[0])

        def receive(tile: Rectangle, pixels: bytes) -> None:
            if len(pixels) != tile.buffer_size:
                logger.error("Discarding %d-byte result for %s, expected %d bytes",
                             len(pixels), tile, tile.buffer_size)
                return
            deliver(tile, pixels, session.samples)

        def submit_all(agent: RemoteAgent, remote_id: str, assigned: List[Rectangle]) -> List[Rectangle]:
            for index, tile in enumerate(assigned):
                task_id = registry.submit_task(session_id, tile, partial(receive, tile))
                try:
                    agent.submit(remote_id, Task(tile, server.callback_url(task_id)))
                except AgentError as e:
                    registry.discard(task_id)
                    logger.error("Agent %s failed, rendering its %d remaining tiles locally: %s",
                                 agent.url, len(assigned) - index, e)
                    return assigned[index:]
            return []

        with ThreadPoolExecutor(max_workers=len(agents)) as executor:
            futures = [
                executor.submit(submit_all, agent, remote_id, assigned)
                for (agent, remote_id), assigned in zip(agents, shares[1:])
            ]
            for future in futures:
                local.extend(future.result())

        local.sort(key=lambda tile: tile_priority(tile, session.width, session.height))
        return local

    def cancel(self) -> None:
        """Stop an in-progress render; tiles not yet finished are abandoned."""
        if self._queue is not None:
            self._queue.cancel()
        if self._completion is not None:
            self._completion.abort()

    def save_image(self, image: np.ndarray, filename: str) -> None:
        """Save image to file.

        Args:
            image: uint8 image array of shape (height, width, 3)
            filename: Output filename (extension determines format)
        """
        from PIL import Image as PILImage

        pil_image = PILImage.fromarray(image)
        pil_image.save(filename)


def get_platform_info() -> dict:
    """Get information about the current platform.

    Returns:
        Dictionary with platform details
    """
    import platform

    return {
        'system': platform.system(),
        'machine': platform.machine(),
        'python_version': platform.python_version(),
        'cpu_count': os.cpu_count(),
    }
