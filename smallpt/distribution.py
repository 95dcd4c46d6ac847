"""
Coordinator side of distributed rendering.

Implements:
- A thread-safe registry of sessions and pending remote tasks
- gzip compression of pixel buffers on the wire
- An HTTP client for remote render agents
- The HTTP endpoint agents post finished tiles back to

Remote tasks are resolved at most once: the first result for a task id
fires its callback and forgets it; duplicate or late results are ignored.
A task whose agent never answers simply stays pending.
"""

from __future__ import annotations

import gzip
import itertools
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, Optional

from .session import Rectangle, Session, Task

logger = logging.getLogger(__name__)

# Receives the decompressed pixel buffer of a remote tile
ResultCallback = Callable[[bytes], None]


class SmallptError(Exception):
    """Base class for errors raised by smallpt."""


class AgentError(SmallptError):
    """A remote agent was unreachable or answered with something unexpected."""


class UnknownSessionError(SmallptError, KeyError):
    """No session is registered under the given id."""


class CorruptResultError(SmallptError, ValueError):
    """A result body could not be decompressed."""


def compress(pixels: bytes) -> bytes:
    """Compress a pixel buffer for transport."""
    return gzip.compress(pixels)


def decompress(body: bytes) -> bytes:
    """Recover a pixel buffer from its transport encoding.

    Raises:
        CorruptResultError: If the body is not valid gzip data
    """
    try:
        return gzip.decompress(body)
    except (OSError, EOFError) as e:
        raise CorruptResultError(f"Corrupt compressed buffer: {e}") from e


@dataclass
class PendingTask:
    """A tile sent to an agent whose result has not arrived yet."""
    session_id: str
    tile: Rectangle
    callback: ResultCallback


class Registry:
    """Sessions and outstanding tasks, keyed by monotonically increasing ids.

    Guarded by its own lock, independent of any work queue, since request
    handler threads mutate it concurrently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._tasks: Dict[str, PendingTask] = {}
        self._session_ids = itertools.count()
        self._task_ids = itertools.count()

    def create_session(self, session: Session) -> str:
        """Register a session and return its id."""
        with self._lock:
            session_id = str(next(self._session_ids))
            self._sessions[session_id] = session
        logger.debug("Registered session %s: %r", session_id, session)
        return session_id

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            try:
                return self._sessions[session_id]
            except KeyError:
                raise UnknownSessionError(session_id) from None

    def submit_task(self, session_id: str, tile: Rectangle, callback: ResultCallback) -> str:
        """Record a pending tile and return the task id its result will carry.

        Raises:
            UnknownSessionError: If the session is not registered
            ValueError: If the tile lies outside the session's image
        """
        session = self.get_session(session_id)
        if not session.contains(tile):
            raise ValueError(f"Tile {tile} outside {session.width}x{session.height} image")

        with self._lock:
            task_id = str(next(self._task_ids))
            self._tasks[task_id] = PendingTask(session_id, tile, callback)
        return task_id

    def resolve(self, task_id: str, compressed: bytes) -> bool:
        """Deliver a task's result to its callback, at most once.

        Returns:
            True if the callback fired, False for unknown or resolved ids

        Raises:
            CorruptResultError: If the body cannot be decompressed; the task stays pending
        """
        with self._lock:
            known = task_id in self._tasks
        if not known:
            logger.debug("Ignoring result for unknown task %s", task_id)
            return False

        pixels = decompress(compressed)

        with self._lock:
            task = self._tasks.pop(task_id, None)
        if task is None:
            logger.debug("Task %s was resolved concurrently", task_id)
            return False

        task.callback(pixels)
        return True

    def discard(self, task_id: str) -> bool:
        """Forget a pending task without firing its callback."""
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def sessions(self) -> int:
        with self._lock:
            return len(self._sessions)


def _post(url: str, body: bytes, content_type: str, timeout: float) -> str:
    request = urllib.request.Request(
        url, data=body, headers={'Content-Type': content_type}, method='POST')
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.read().decode('utf-8')
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise AgentError(f"POST {url} failed: {e}") from e


def post_result(callback_url: str, pixels: bytes, timeout: float = 10.0) -> None:
    """Send a finished tile to the coordinator that asked for it."""
    _post(callback_url, compress(pixels), 'application/octet-stream', timeout)


class RemoteAgent:
    """Client for one remote render agent."""

    def __init__(self, url: str, timeout: float = 10.0):
        """Create an agent client.

        Args:
            url: Base URL of the agent, e.g. http://host:4000/
            timeout: Seconds to wait for each HTTP request
        """
        self.url = url.rstrip('/') + '/'
        self.timeout = timeout

    def open_session(self, session: Session) -> str:
        """Replicate a session on the agent and return the agent's id for it."""
        reply = _post(self.url + 'session', session.to_json().encode('utf-8'),
                      'application/json', self.timeout).strip()
        if not reply or len(reply) > 64 or not reply.isprintable():
            raise AgentError(f"{self.url} returned a malformed session id: {reply[:64]!r}")
        return reply

    def submit(self, session_id: str, task: Task) -> None:
        """Queue a tile on the agent; returns once the agent acknowledged it."""
        reply = _post(f"{self.url}session/{session_id}/task", task.to_json().encode('utf-8'),
                      'application/json', self.timeout).strip()
        if reply != 'OK':
            raise AgentError(f"{self.url} rejected task for {task.tile}: {reply[:64]!r}")

    def __repr__(self) -> str:
        return f"RemoteAgent({self.url!r})"


class ResponseHandler(BaseHTTPRequestHandler):
    """Accepts `POST /response/<task_id>` with a gzip pixel buffer."""

    server: _ResponseHTTPServer

    def do_POST(self):
        parts = self.path.strip('/').split('/')
        if len(parts) != 2 or parts[0] != 'response':
            self.send_error(404)
            return

        try:
            content_length = int(self.headers.get('Content-Length', 0))
        except ValueError:
            self.send_error(400, "Invalid Content-Length")
            return
        body = self.rfile.read(content_length)

        try:
            self.server.registry.resolve(parts[1], body)
        except CorruptResultError as e:
            logger.warning("Rejected result for task %s: %s", parts[1], e)
            self.send_error(400, str(e))
            return

        self._send_text('OK')

    def _send_text(self, text: str):
        response = text.encode('utf-8')
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.send_header('Content-Length', str(len(response)))
        self.end_headers()
        self.wfile.write(response)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class _ResponseHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, registry: Registry):
        self.registry = registry
        super().__init__(address, ResponseHandler)


class ResponseServer:
    """Background HTTP server receiving remote tile results."""

    def __init__(self, registry: Registry, host: str = '0.0.0.0', port: int = 4001,
                 advertise_host: str = 'localhost'):
        """Create a response server.

        Args:
            registry: Where pending tasks are looked up
            host: Interface to bind
            port: Port to bind (0 picks a free one)
            advertise_host: Host name agents should use in callback URLs
        """
        self.registry = registry
        self.host = host
        self.advertise_host = advertise_host
        self._requested_port = port
        self._httpd: Optional[_ResponseHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> ResponseServer:
        self._httpd = _ResponseHTTPServer((self.host, self._requested_port), self.registry)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name='smallpt-responses', daemon=True)
        self._thread.start()
        logger.info("Listening for tile results on port %d", self.port)
        return self

    @property
    def port(self) -> int:
        if self._httpd is None:
            return self._requested_port
        return self._httpd.server_address[1]

    def callback_url(self, task_id: str) -> str:
        return f"http://{self.advertise_host}:{self.port}/response/{task_id}"

    def shutdown(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        self._httpd = None
