"""
Tile scheduling.

Splits the image into tiles ordered from the center outward and hands
them to worker threads through a cancellable blocking queue.
"""

from __future__ import annotations
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Generic, Iterable, Iterator, List, Optional, TypeVar

from .session import Rectangle, Session

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Receives a tile's pixel buffer and the number of passes it contains
TileCallback = Callable[[bytes, int], None]


@dataclass
class WorkItem:
    """One tile of one session, plus where its pixels should go."""
    session: Session
    tile: Rectangle
    callback: TileCallback


def tile_priority(tile: Rectangle, width: int, height: int) -> tuple[int, int, int]:
    """Sort key: squared distance from the image center, then top, then left."""
    dx = tile.left + tile.width // 2 - width // 2
    dy = tile.top + tile.height // 2 - height // 2
    return (dx * dx + dy * dy, tile.top, tile.left)


def generate_tiles(width: int, height: int, tile_size: int = 32) -> List[Rectangle]:
    """Generate tiles covering the image, nearest to the center first.

    Args:
        width: Image width
        height: Image height
        tile_size: Edge length of a full tile; edge tiles are clipped

    Returns:
        Tiles in render priority order
    """
    if tile_size <= 0:
        raise ValueError(f"tile_size must be positive, got {tile_size}")

    tiles = []
    for y in range(0, height, tile_size):
        for x in range(0, width, tile_size):
            tiles.append(Rectangle(x, y, min(tile_size, width - x), min(tile_size, height - y)))

    tiles.sort(key=lambda tile: tile_priority(tile, width, height))
    return tiles


def partition_tiles(tiles: List[Rectangle], shares: int) -> List[List[Rectangle]]:
    """Deal tiles round-robin into `shares` lists, keeping priority order.

    Share 0 receives the first tile, so with a single share every tile
    stays in one list.
    """
    if shares < 1:
        raise ValueError(f"Need at least one share, got {shares}")
    return [tiles[i::shares] for i in range(shares)]


class WorkQueue(Generic[T]):
    """A blocking multi-producer, multi-consumer queue that can be cancelled.

    `get` blocks until an item is available or the queue is cancelled.
    Cancelling wakes every waiting consumer at once; from then on `get`
    returns None immediately and undelivered items are dropped. Closing
    is the gentle variant: consumers drain what is left, then get None.
    """

    def __init__(self, items: Optional[Iterable[T]] = None):
        self._items: Deque[T] = deque(items or ())
        self._condition = threading.Condition()
        self._cancelled = False
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._condition:
            return len(self._items)

    def put(self, item: T) -> bool:
        """Add an item; returns False if the queue no longer accepts work."""
        with self._condition:
            if self._cancelled or self._closed:
                logger.debug("Dropping work item on %s queue",
                             'cancelled' if self._cancelled else 'closed')
                return False
            self._items.append(item)
            self._condition.notify()
            return True

    def extend(self, items: Iterable[T]) -> int:
        """Add several items in order; returns how many were accepted."""
        return sum(1 for item in items if self.put(item))

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Take the next item, blocking until one arrives.

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            The next item, or None if cancelled, closed and drained,
            or the timeout expired
        """
        with self._condition:
            self._condition.wait_for(
                lambda: self._cancelled or self._items or self._closed, timeout)
            if self._cancelled or not self._items:
                return None
            return self._items.popleft()

    def cancel(self) -> None:
        """Release every consumer and discard pending items."""
        with self._condition:
            self._cancelled = True
            dropped = len(self._items)
            self._items.clear()
            self._condition.notify_all()
        if dropped:
            logger.debug("Cancelled queue with %d pending items", dropped)

    def close(self) -> None:
        """Stop accepting items; consumers finish the backlog then stop."""
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item
