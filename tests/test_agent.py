"""
Tests for the smallpt render agent.
"""

import json
import threading
import time
import urllib.error
import urllib.request
import pytest
import numpy as np

import smallpt
from smallpt.vec3 import Point3, Color
from smallpt.shapes import Sphere
from smallpt.session import Rectangle, Session, Task
from smallpt.scenes import default_camera
from smallpt.worker import encode_pixels
from smallpt.distribution import (
    AgentError, Registry, RemoteAgent, ResponseServer, UnknownSessionError
)
from smallpt.agent import Agent, make_server, run_agent


def glow_session(width=8, height=8, samples=1):
    room = Sphere(1e3, Point3(0, 0, 0), Color(0.25, 0.25, 0.25))
    return Session(width, height, samples, default_camera(), [room])


def wait_until(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def agent_server():
    server = make_server('127.0.0.1', 0, num_threads=2)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def responses():
    server = ResponseServer(Registry(), '127.0.0.1', 0, '127.0.0.1').start()
    yield server
    server.shutdown()


def agent_url(server):
    return f"http://127.0.0.1:{server.server_address[1]}/"


def post(url, body):
    request = urllib.request.Request(url, data=body, method='POST')
    with urllib.request.urlopen(request, timeout=5) as response:
        return response.read().decode('utf-8')


class TestAgent:
    """Tests for the Agent class without HTTP."""

    def test_create_session(self):
        agent = Agent(num_threads=1)
        session_id = agent.create_session(glow_session().to_dict())
        assert session_id == '0'
        assert agent.registry.get_session(session_id).width == 8

    def test_create_session_rejects_non_object(self):
        with pytest.raises(ValueError):
            Agent(num_threads=1).create_session([1, 2, 3])

    def test_create_session_rejects_bad_payload(self):
        with pytest.raises(ValueError):
            Agent(num_threads=1).create_session({'width': 4})

    def test_submit_unknown_session(self):
        agent = Agent(num_threads=1)
        task = Task(Rectangle(0, 0, 1, 1), "http://127.0.0.1:1/response/0")
        with pytest.raises(UnknownSessionError):
            agent.submit_task('7', task.to_dict())

    def test_submit_out_of_bounds(self):
        agent = Agent(num_threads=1)
        session_id = agent.create_session(glow_session(8, 8).to_dict())
        task = Task(Rectangle(4, 4, 8, 8), "http://127.0.0.1:1/response/0")
        with pytest.raises(ValueError):
            agent.submit_task(session_id, task.to_dict())
        assert len(agent.queue) == 0

    def test_submit_queues_work(self):
        agent = Agent(num_threads=1)
        session_id = agent.create_session(glow_session().to_dict())
        task = Task(Rectangle(0, 0, 2, 2), "http://127.0.0.1:1/response/0")

        assert agent.submit_task(session_id, task.to_dict()) == task
        assert len(agent.queue) == 1
        assert agent.get_status()['received'] == 1

    def test_submit_after_shutdown(self):
        agent = Agent(num_threads=1)
        session_id = agent.create_session(glow_session().to_dict())
        agent.shutdown()
        task = Task(Rectangle(0, 0, 2, 2), "http://127.0.0.1:1/response/0")
        with pytest.raises(ValueError):
            agent.submit_task(session_id, task.to_dict())

    def test_only_final_pass_is_posted(self, responses):
        agent = Agent(num_threads=1).start()
        session = glow_session(4, 4, samples=3)
        session_id = agent.create_session(session.to_dict())

        received = []
        registry_session = responses.registry.create_session(session)
        tile = Rectangle(0, 0, 4, 4)
        task_id = responses.registry.submit_task(registry_session, tile, received.append)
        agent.submit_task(session_id, Task(tile, responses.callback_url(task_id)).to_dict())

        assert wait_until(lambda: agent.get_status()['delivered'] == 1)
        agent.shutdown()
        assert len(received) == 1
        assert received[0] == encode_pixels(np.full((4, 4, 3), 0.25))

    def test_package_exports_agent(self):
        assert smallpt.run_agent is run_agent
        assert smallpt.Agent is Agent

    def test_undeliverable_result_is_logged(self, caplog):
        agent = Agent(num_threads=1, post_timeout=1.0).start()
        session_id = agent.create_session(glow_session(2, 2).to_dict())

        agent.submit_task(session_id, Task(Rectangle(0, 0, 2, 2),
                                           "http://127.0.0.1:1/response/0").to_dict())

        assert wait_until(lambda: "Could not deliver" in caplog.text)
        agent.shutdown()
        assert agent.get_status()['delivered'] == 0


class TestAgentServer:
    """Tests for the agent HTTP API."""

    def test_status(self, agent_server):
        with urllib.request.urlopen(agent_url(agent_server) + 'status', timeout=5) as response:
            status = json.loads(response.read())
        assert status['sessions'] == 0
        assert status['workers'] == 2
        assert set(status) == {'sessions', 'queued', 'received', 'delivered', 'workers'}

    def test_create_session(self, agent_server):
        reply = post(agent_url(agent_server) + 'session', glow_session().to_json().encode())
        assert reply == '0'

    def test_unknown_get_path(self, agent_server):
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            urllib.request.urlopen(agent_url(agent_server) + 'nothing', timeout=5)
        assert exc_info.value.code == 404

    def test_unknown_post_path(self, agent_server):
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + 'render', b"{}")
        assert exc_info.value.code == 404

    def test_malformed_json(self, agent_server):
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + 'session', b"{oops")
        assert exc_info.value.code == 400

    def test_invalid_session(self, agent_server):
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + 'session', json.dumps({'width': 2}).encode())
        assert exc_info.value.code == 400

    def test_material_not_an_object(self, agent_server):
        data = glow_session().to_dict()
        data['scene'][0]['material'] = 'diffuse'
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + 'session', json.dumps(data).encode())
        assert exc_info.value.code == 400

    def test_task_for_unknown_session(self, agent_server):
        task = Task(Rectangle(0, 0, 1, 1), "http://127.0.0.1:1/response/0")
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + 'session/5/task', task.to_json().encode())
        assert exc_info.value.code == 404

    def test_task_out_of_bounds(self, agent_server):
        session_id = post(agent_url(agent_server) + 'session', glow_session(8, 8).to_json().encode())
        task = Task(Rectangle(0, 0, 16, 16), "http://127.0.0.1:1/response/0")
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            post(agent_url(agent_server) + f'session/{session_id}/task', task.to_json().encode())
        assert exc_info.value.code == 400

    def test_remote_agent_client(self, agent_server):
        client = RemoteAgent(agent_url(agent_server), timeout=5)
        session_id = client.open_session(glow_session())
        client.submit(session_id, Task(Rectangle(0, 0, 1, 1), "http://127.0.0.1:1/response/0"))

        with pytest.raises(AgentError):
            client.submit('99', Task(Rectangle(0, 0, 1, 1), "http://127.0.0.1:1/response/0"))

    def test_end_to_end(self, agent_server, responses):
        session = glow_session(8, 8, samples=2)
        client = RemoteAgent(agent_url(agent_server), timeout=5)
        remote_id = client.open_session(session)
        local_id = responses.registry.create_session(session)

        results = {}
        lock = threading.Lock()

        def receive(tile, pixels):
            with lock:
                results[tile] = pixels

        tiles = [Rectangle(0, 0, 4, 8), Rectangle(4, 0, 4, 8)]
        for tile in tiles:
            task_id = responses.registry.submit_task(
                local_id, tile, lambda pixels, tile=tile: receive(tile, pixels))
            client.submit(remote_id, Task(tile, responses.callback_url(task_id)))

        assert wait_until(lambda: len(results) == 2)
        expected = encode_pixels(np.full((8, 4, 3), 0.25))
        for tile in tiles:
            assert results[tile] == expected
        assert responses.registry.pending == 0
