"""
Unit tests for the OpenAI Realtime API client.

These tests verify the RealtimeEngineClient: session negotiation on connect,
mapping of handshake failures to typed errors, sending, and the event stream.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosedError, InvalidStatus
from websockets.frames import Close
from websockets.http11 import Response
from websockets.protocol import State

from app.bot.realtime_api import RealtimeEngineClient, build_session_update
from app.bot.tools import end_call_tool
from app.exceptions import AuthenticationError, EngineTransportError, HandshakeTimeoutError
from app.models.session import BridgeConfiguration


class FakeSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self, incoming=(), error=None):
        self.state = State.OPEN
        self.sent = []
        self._incoming = list(incoming)
        self._error = error

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        if self._incoming:
            return self._incoming.pop(0)
        await asyncio.sleep(3600)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while self._incoming:
            yield self._incoming.pop(0)
        if self._error is not None:
            raise self._error

    async def ping(self):
        pong = asyncio.get_running_loop().create_future()
        pong.set_result(0.001)
        return pong

    async def close(self):
        self.state = State.CLOSED


@pytest.fixture
def config():
    return BridgeConfiguration(api_key="test-api-key", connection_timeout=0.2, language="en")


@pytest.fixture
def client(config):
    return RealtimeEngineClient(config, [end_call_tool().declaration()])


def session_created():
    return json.dumps({"type": "session.created", "session": {"id": "sess_1"}})


@pytest.mark.asyncio
async def test_connect_negotiates_session(client, config):
    socket = FakeSocket([session_created()])

    with patch("websockets.connect", new=AsyncMock(return_value=socket)) as mock_connect:
        ack = await client.connect()

    assert ack["type"] == "session.created"
    assert client.is_open
    assert mock_connect.await_args.args[0] == f"{config.realtime_url}?model={config.model}"
    headers = mock_connect.await_args.kwargs["additional_headers"]
    assert headers["Authorization"] == "Bearer test-api-key"
    assert headers["OpenAI-Beta"] == "realtime=v1"

    update = socket.sent[0]
    assert update["type"] == "session.update"
    assert update["session"]["input_audio_format"] == "g711_ulaw"
    assert update["session"]["output_audio_format"] == "g711_ulaw"
    assert update["session"]["turn_detection"]["type"] == "server_vad"
    assert [tool["name"] for tool in update["session"]["tools"]] == ["end_call"]


@pytest.mark.asyncio
async def test_connect_skips_events_before_ack(client):
    socket = FakeSocket(["not json", json.dumps({"type": "rate_limits.updated"}), session_created()])

    with patch("websockets.connect", new=AsyncMock(return_value=socket)):
        ack = await client.connect()

    assert ack["type"] == "session.created"


@pytest.mark.asyncio
async def test_connect_times_out_without_ack(client):
    socket = FakeSocket()

    with patch("websockets.connect", new=AsyncMock(return_value=socket)):
        with pytest.raises(HandshakeTimeoutError):
            await client.connect()

    assert not client.is_open
    assert socket.state is State.CLOSED


@pytest.mark.asyncio
async def test_connect_rejected_credentials_by_status(client):
    error = InvalidStatus(Response(401, "Unauthorized", Headers()))

    with patch("websockets.connect", new=AsyncMock(side_effect=error)):
        with pytest.raises(AuthenticationError):
            await client.connect()


@pytest.mark.asyncio
async def test_connect_rejected_credentials_by_error_event(client):
    error_event = json.dumps({"type": "error", "error": {"code": "invalid_api_key", "message": "Incorrect API key"}})
    socket = FakeSocket([error_event])

    with patch("websockets.connect", new=AsyncMock(return_value=socket)):
        with pytest.raises(AuthenticationError, match="Incorrect API key"):
            await client.connect()

    assert socket.state is State.CLOSED


@pytest.mark.asyncio
async def test_connect_server_error_status(client):
    error = InvalidStatus(Response(503, "Service Unavailable", Headers()))

    with patch("websockets.connect", new=AsyncMock(side_effect=error)):
        with pytest.raises(EngineTransportError):
            await client.connect()


@pytest.mark.asyncio
async def test_connect_network_failure(client):
    with patch("websockets.connect", new=AsyncMock(side_effect=ConnectionRefusedError("refused"))):
        with pytest.raises(EngineTransportError):
            await client.connect()


@pytest.mark.asyncio
async def test_send_requires_open_connection(client):
    with pytest.raises(EngineTransportError):
        await client.send({"type": "response.create"})


@pytest.mark.asyncio
async def test_events_yield_decoded_messages(client):
    client.ws = FakeSocket([json.dumps({"type": "response.audio.delta", "delta": "AAAA"}), b"\x00\x01", "{bad"])

    events = [event async for event in client.events()]

    assert events == [{"type": "response.audio.delta", "delta": "AAAA"}]


@pytest.mark.asyncio
async def test_events_raise_on_abnormal_close(client):
    client.ws = FakeSocket(error=ConnectionClosedError(Close(1011, "internal error"), None))

    with pytest.raises(EngineTransportError):
        async for _ in client.events():
            pass


@pytest.mark.asyncio
async def test_events_quiet_after_local_close(client):
    client.ws = FakeSocket(error=ConnectionClosedError(Close(1006, ""), None))
    client._closing = True

    events = [event async for event in client.events()]

    assert events == []


@pytest.mark.asyncio
async def test_ping_and_close(client):
    client.ws = FakeSocket()

    assert await client.ping(timeout=1)

    await client.close()
    await client.close()
    assert not client.is_open
    assert not await client.ping(timeout=1)


def test_build_session_update_uses_custom_instructions():
    config = BridgeConfiguration(api_key="k", instructions="Be brief.", voice="verse")
    update = build_session_update(config, [])
    assert update.session.instructions == "Be brief."
    assert update.session.voice == "verse"
    assert update.session.tools == []
