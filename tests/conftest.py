"""
Pytest configuration and fixtures for meshrelay tests.
"""

import json
import random
import time
import uuid

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app import app
from registry import RoomRegistry, get_registry


class FakeConnection:
    """Stands in for connection.Connection: records envelopes instead of writing to a socket."""

    def __init__(self, connection_id=None, fail_deliver=False):
        self.id = connection_id or str(uuid.uuid4())
        self.room_id = None
        self.received = []
        self.closed = False
        self.close_reason = None
        self.fail_deliver = fail_deliver

    @property
    def is_open(self):
        return not self.closed

    def deliver(self, text):
        if self.fail_deliver:
            raise RuntimeError("transport broken")
        if self.closed:
            return False
        self.received.append(json.loads(text))
        return True

    def send_envelope(self, envelope):
        return self.deliver(json.dumps(envelope.model_dump()))

    async def close(self, code=1000, reason=None):
        self.closed = True
        self.close_reason = reason


class SequenceRandom(random.Random):
    """Random whose randint replays a fixed sequence, repeating the last value."""

    def __init__(self, values):
        super().__init__(0)
        self._values = list(values)

    def randint(self, a, b):
        if len(self._values) > 1:
            return self._values.pop(0)
        return self._values[0]


@pytest.fixture
def make_connection():
    def _make(**kwargs):
        return FakeConnection(**kwargs)
    return _make


@pytest_asyncio.fixture
async def make_registry():
    """Build registries on the test's event loop and cancel their timers afterwards."""
    registries = []

    def _make(timeout_seconds=30.0, **kwargs):
        kwargs.setdefault("rng", random.Random(1234))
        registry = RoomRegistry(timeout_seconds=timeout_seconds, **kwargs)
        registries.append(registry)
        return registry

    yield _make

    for registry in registries:
        await registry.shutdown()


@pytest_asyncio.fixture
async def registry(make_registry):
    return make_registry()


@pytest.fixture
def app_registry():
    return RoomRegistry(timeout_seconds=30.0)


@pytest.fixture
def client(app_registry):
    """
    Create a test client whose endpoints share a fresh registry.
    """
    app.dependency_overrides[get_registry] = lambda: app_registry

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def wait_for(predicate, timeout=2.0, interval=0.02):
    """Poll ``predicate`` until it is truthy or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
