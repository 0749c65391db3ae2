import asyncio
import json
import logging

import pytest
from pydantic import BaseModel

from app.exceptions import EngineTransportError
from app.models.session import BridgeConfiguration


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeEngine:
    """Stands in for RealtimeEngineClient; events are pushed by the test."""

    def __init__(self, config=None, tools=None, fail_with=None):
        self.config = config
        self.tools = tools or []
        self.fail_with = fail_with
        self.sent = []
        self.is_open = False
        self.closed = False
        self._events = asyncio.Queue()

    async def connect(self):
        if self.fail_with is not None:
            raise self.fail_with
        self.is_open = True
        return {"type": "session.created"}

    async def send(self, event):
        if not self.is_open:
            raise EngineTransportError("Realtime engine connection is not open")
        if isinstance(event, BaseModel):
            event = json.loads(event.model_dump_json())
        self.sent.append(event)

    async def events(self):
        while True:
            item = await self._events.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, item):
        """Queue an engine event; None ends the stream, an exception is raised from it."""
        self._events.put_nowait(item)

    async def ping(self, timeout):
        return self.is_open

    async def close(self):
        self.is_open = False
        self.closed = True

    def sent_of_type(self, event_type):
        return [event for event in self.sent if event.get("type") == event_type]


class FakeEngineFactory:
    """Builds FakeEngines; ``outcomes`` lists the handshake error (or None) per engine."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.engines = []

    def __call__(self, config, tools):
        index = len(self.engines)
        fail_with = self.outcomes[index] if index < len(self.outcomes) else None
        engine = FakeEngine(config, tools, fail_with=fail_with)
        self.engines.append(engine)
        return engine

    @property
    def current(self):
        return self.engines[-1]


class FakeTelephony:
    """Records frames sent to the caller; frames from the caller are pushed by the test."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send_text(self, data):
        self.sent.append(json.loads(data))

    async def receive_text(self):
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code=1000):
        self.closed = True

    def push(self, frame):
        if not isinstance(frame, (str, Exception)):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)


async def eventually(predicate, timeout=1.0):
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def bridge_config():
    return BridgeConfiguration(
        api_key="test-api-key",
        connection_timeout=1.0,
        max_reconnect_attempts=3,
        reconnect_delay=0.0,
        health_check_interval=60.0,
        tool_call_timeout=1.0,
        language="en",
    )


@pytest.fixture
def make_engine_factory():
    return FakeEngineFactory


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def telephony():
    return FakeTelephony()


@pytest.fixture
def wait_until():
    return eventually
