import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from cardduel.app import create_app
from cardduel.connections import ConnectionDirectory
from cardduel.registry import RoomRegistry
from cardduel.room_logic import MessageRouter
from cardduel.sweeper import ExpirySweeper



class TestConfig:
    HOST = '127.0.0.1'
    PORT = 8080
    LOG_LEVEL = 'DEBUG'
    LOG_FILE = None
    ROOM_MAX_AGE_SEC = 3600
    # Keep the background sweep out of the way; tests call sweep() directly.
    SWEEP_INTERVAL_SEC = 3600
    CORS_ALLOW_ORIGINS = ['*']


class FakeClock:
    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeWebSocket:
    """Stands in for a server-side starlette WebSocket."""

    def __init__(self):
        self.sent = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        # Round-trip through JSON so tests see exactly what goes on the wire.
        self.sent.append(json.loads(json.dumps(data)))

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def types(self):
        return [m['type'] for m in self.sent]

    def last(self):
        return self.sent[-1] if self.sent else None


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def registry(clock):
    return RoomRegistry(clock=clock)


@pytest.fixture()
def connections():
    return ConnectionDirectory()


@pytest.fixture()
def message_router(registry, connections):
    return MessageRouter(registry, connections)


@pytest.fixture()
def sweeper(registry, connections):
    return ExpirySweeper(registry, connections, interval=0.01)


@pytest.fixture()
def make_connection(connections):
    def _make():
        return connections.register(FakeWebSocket())
    return _make


@pytest.fixture()
def send(message_router):
    async def _send(connection, payload):
        raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        await message_router.handle(connection, raw)
    return _send


@pytest.fixture()
def app():
    return create_app(TestConfig)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
