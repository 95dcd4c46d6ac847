"""
smallpt render agent.

Serves render work to a remote coordinator over HTTP using only the
Python standard library for transport:

    POST /session                  JSON session  -> session id
    POST /session/<id>/task        JSON task     -> "OK"

Accepted tasks are rendered by a local worker pool; when a tile's last
pass is done its pixels are gzip-compressed and posted to the task's
callback URL.

Usage:
    python main.py serve --port 4000
"""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .distribution import AgentError, Registry, UnknownSessionError, post_result
from .scheduler import TileCallback, WorkItem, WorkQueue
from .session import Session, Task
from .worker import WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4000


class Agent:
    """Holds replicated sessions and renders their tasks."""

    def __init__(self, num_threads: int = 0, post_timeout: float = 10.0):
        """Create an agent.

        Args:
            num_threads: Worker threads (0 = one per CPU core)
            post_timeout: Seconds allowed for posting a result back
        """
        self.registry = Registry()
        self.queue: WorkQueue[WorkItem] = WorkQueue()
        self.pool = WorkerPool(self.queue, num_threads, name='smallpt-agent')
        self.post_timeout = post_timeout
        self.lock = threading.Lock()
        self.tasks_received = 0
        self.tasks_delivered = 0

    def start(self) -> Agent:
        self.pool.start()
        return self

    def create_session(self, payload: Any) -> str:
        """Register a session sent by a coordinator.

        Raises:
            ValueError: If the payload is not a valid session
        """
        if not isinstance(payload, dict):
            raise ValueError("Session payload must be a JSON object")
        session = Session.from_dict(payload)
        return self.registry.create_session(session)

    def submit_task(self, session_id: str, payload: Any) -> Task:
        """Queue a task for rendering.

        Raises:
            UnknownSessionError: If the session id was never issued
            ValueError: If the payload is malformed or the tile is out of bounds
        """
        session = self.registry.get_session(session_id)
        if not isinstance(payload, dict):
            raise ValueError("Task payload must be a JSON object")
        task = Task.from_dict(payload)
        if not session.contains(task.tile):
            raise ValueError(f"Tile {task.tile} outside {session.width}x{session.height} image")

        if not self.queue.put(WorkItem(session, task.tile, self._reply(session, task))):
            raise ValueError("Agent is shutting down")
        with self.lock:
            self.tasks_received += 1
        logger.debug("Queued %s for session %s", task.tile, session_id)
        return task

    def _reply(self, session: Session, task: Task) -> TileCallback:
        """Build the callback that ships a finished tile back."""
        def deliver(pixels: bytes, passes: int) -> None:
            if passes < session.samples:
                return
            try:
                post_result(task.callback, pixels, self.post_timeout)
            except AgentError as e:
                logger.error("Could not deliver %s: %s", task.tile, e)
                return
            with self.lock:
                self.tasks_delivered += 1

        return deliver

    def shutdown(self) -> None:
        """Stop the workers; queued tasks are dropped."""
        self.queue.cancel()

    def get_status(self) -> dict:
        with self.lock:
            return {
                'sessions': self.registry.sessions,
                'queued': len(self.queue),
                'received': self.tasks_received,
                'delivered': self.tasks_delivered,
                'workers': self.pool.num_threads,
            }


class AgentHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the agent API."""

    server: AgentServer

    def do_GET(self):
        if self.path.rstrip('/') == '/status':
            self._send_json(self.server.agent.get_status())
        else:
            self.send_error(404)

    def do_POST(self):
        parts = self.path.strip('/').split('/')

        try:
            payload = self._read_json()
        except ValueError as e:
            self.send_error(400, f"Malformed JSON: {e}")
            return

        try:
            if parts == ['session']:
                self._send_text(self.server.agent.create_session(payload))
            elif len(parts) == 3 and parts[0] == 'session' and parts[2] == 'task':
                self.server.agent.submit_task(parts[1], payload)
                self._send_text('OK')
            else:
                self.send_error(404)
        except UnknownSessionError as e:
            self.send_error(404, f"Unknown session {e}")
        except ValueError as e:
            self.send_error(400, str(e))

    def _read_json(self) -> Any:
        content_length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(content_length)
        return json.loads(body) if body else {}

    def _send_text(self, text: str):
        self._send(text.encode('utf-8'), 'text/plain')

    def _send_json(self, data: Any):
        self._send(json.dumps(data).encode('utf-8'), 'application/json')

    def _send(self, response: bytes, content_type: str):
        self.send_response(200)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(response)))
        self.end_headers()
        self.wfile.write(response)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class AgentServer(ThreadingHTTPServer):
    """Threaded HTTP server bound to one Agent."""

    daemon_threads = True

    def __init__(self, address, agent: Agent):
        self.agent = agent
        super().__init__(address, AgentHandler)

    def server_close(self):
        super().server_close()
        self.agent.shutdown()


def make_server(host: str = '0.0.0.0', port: int = DEFAULT_PORT, num_threads: int = 0) -> AgentServer:
    """Create an agent server with its workers already running."""
    agent = Agent(num_threads).start()
    return AgentServer((host, port), agent)


def run_agent(host: str = '0.0.0.0', port: int = DEFAULT_PORT, num_threads: int = 0) -> None:
    """Run an agent until interrupted."""
    server = make_server(host, port, num_threads)

    print(f"smallpt agent listening on http://{host}:{server.server_address[1]}")
    print(f"  Workers: {server.agent.pool.num_threads}")
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        server.server_close()
