"""
Client for the OpenAI Realtime API over WebSocket.

The client owns a single engine connection: it opens the socket, negotiates the
session (instructions, voice, audio formats, voice-activity detection and the
tool catalog), and exposes the decoded event stream. Reconnection policy lives
in the audio bridge; this client reports failures as typed exceptions.
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import websockets
from pydantic import BaseModel
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidStatus,
    WebSocketException,
)
from websockets.protocol import State

from app.config.constants import (
    ENGINE_ERROR,
    ENGINE_SESSION_CREATED,
    ENGINE_SESSION_UPDATED,
    LOGGER_NAME,
)
from app.exceptions import AuthenticationError, EngineTransportError, HandshakeTimeoutError
from app.models.openai_schemas import (
    FunctionDeclaration,
    SessionConfig,
    SessionUpdateEvent,
    TurnDetection,
    parse_error_event,
)
from app.models.session import BridgeConfiguration

logger = logging.getLogger(LOGGER_NAME)

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_MAX_QUEUE = 32  # Small queue to prevent buffering
WS_PING_INTERVAL = 5
WS_PING_TIMEOUT = 10
SEND_TIMEOUT = 5.0

AUTH_FAILURE_STATUSES = (401, 403)
AUTH_FAILURE_CODES = ("invalid_api_key", "authentication_error", "unauthorized")


def build_session_update(config: BridgeConfiguration, tools: List[FunctionDeclaration]) -> SessionUpdateEvent:
    """Build the ``session.update`` message for a bridge configuration."""
    return SessionUpdateEvent(
        session=SessionConfig(
            instructions=config.resolved_instructions,
            voice=config.voice,
            input_audio_format=config.audio_format,
            output_audio_format=config.audio_format,
            turn_detection=TurnDetection(
                threshold=config.vad_threshold,
                prefix_padding_ms=config.vad_prefix_padding_ms,
                silence_duration_ms=config.vad_silence_duration_ms,
            ),
            tools=tools,
        )
    )


class RealtimeEngineClient:
    """
    Client to connect to the OpenAI Realtime API over WebSocket for streaming speech-to-speech.
    """

    def __init__(self, config: BridgeConfiguration, tools: Optional[List[FunctionDeclaration]] = None):
        self.config = config
        self.tools = tools or []
        self.ws = None
        self._closing = False

    @property
    def url(self) -> str:
        return f"{self.config.realtime_url}?model={self.config.model}"

    @property
    def is_open(self) -> bool:
        return self.ws is not None and self.ws.state is State.OPEN

    async def connect(self) -> Dict[str, Any]:
        """
        Open the engine connection and negotiate the session.

        The whole handshake (socket upgrade, ``session.update``, acknowledgment)
        is bounded by the configured connection timeout.

        Returns:
            The acknowledging ``session.created``/``session.updated`` event

        Raises:
            HandshakeTimeoutError: No acknowledgment within the timeout
            AuthenticationError: The engine rejected the credentials
            EngineTransportError: Any other connection failure
        """
        self._closing = False
        start = time.monotonic()
        try:
            ack = await asyncio.wait_for(self._handshake(), timeout=self.config.connection_timeout)
        except asyncio.TimeoutError:
            await self._abort()
            raise HandshakeTimeoutError(
                f"No session acknowledgment within {self.config.connection_timeout}s"
            )
        except InvalidStatus as e:
            await self._abort()
            status = e.response.status_code
            if status in AUTH_FAILURE_STATUSES:
                raise AuthenticationError(f"Realtime engine rejected credentials (HTTP {status})") from e
            raise EngineTransportError(f"Realtime engine refused connection (HTTP {status})") from e
        except (AuthenticationError, EngineTransportError):
            await self._abort()
            raise
        except (OSError, WebSocketException) as e:
            await self._abort()
            raise EngineTransportError(f"Failed to connect to realtime engine: {e}") from e

        logger.debug(f"Realtime handshake completed in {time.monotonic() - start:.2f}s")
        return ack

    async def _handshake(self) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        logger.info(f"Connecting to OpenAI Realtime API with model: {self.config.model}")
        self.ws = await websockets.connect(
            self.url,
            max_size=WS_MAX_SIZE,
            max_queue=WS_MAX_QUEUE,
            ping_interval=WS_PING_INTERVAL,
            ping_timeout=WS_PING_TIMEOUT,
            compression=None,  # Disable compression for lower latency
            additional_headers=headers,
        )
        await self.send(build_session_update(self.config, self.tools))

        while True:
            try:
                message = await self.ws.recv()
            except ConnectionClosed as e:
                raise EngineTransportError(f"Engine closed during handshake: {e}") from e
            data = self._decode(message)
            if data is None:
                continue
            event_type = data.get("type")
            if event_type in (ENGINE_SESSION_CREATED, ENGINE_SESSION_UPDATED):
                logger.info(f"Realtime session acknowledged ({event_type})")
                return data
            if event_type == ENGINE_ERROR:
                error = parse_error_event(data)
                code = error.code or error.type
                if code in AUTH_FAILURE_CODES:
                    raise AuthenticationError(error.message or "Invalid API key")
                raise EngineTransportError(f"Engine error during handshake: {error.message or code}")
            logger.debug(f"Ignoring {event_type} before session acknowledgment")

    @staticmethod
    def _decode(message: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        if isinstance(message, bytes):
            logger.debug(f"Ignoring binary engine frame of size {len(message)} bytes")
            return None
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Received invalid JSON from engine: {message[:100]}...")
            return None
        return data if isinstance(data, dict) else None

    async def send(self, event: Union[BaseModel, Dict[str, Any]]) -> None:
        """
        Send one client event to the engine.

        Raises:
            EngineTransportError: The connection is not open or the send failed
        """
        if not self.is_open:
            raise EngineTransportError("Realtime engine connection is not open")
        payload = event.model_dump_json() if isinstance(event, BaseModel) else json.dumps(event)
        try:
            await asyncio.wait_for(self.ws.send(payload), timeout=SEND_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise EngineTransportError("Timeout while sending to realtime engine") from e
        except ConnectionClosed as e:
            raise EngineTransportError(f"Connection closed while sending: {e}") from e

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded server events until the connection closes.

        A normal closure ends the iteration. An abnormal closure raises
        ``EngineTransportError``. Undecodable frames are skipped.
        """
        if self.ws is None:
            raise EngineTransportError("Realtime engine connection is not open")
        try:
            async for message in self.ws:
                data = self._decode(message)
                if data is not None:
                    yield data
        except ConnectionClosedOK:
            logger.info("Realtime engine connection closed normally")
        except ConnectionClosedError as e:
            if self._closing:
                return
            raise EngineTransportError(f"Realtime engine connection lost: {e}") from e

    async def ping(self, timeout: float) -> bool:
        """Send a ping and report whether the pong arrived in time."""
        if not self.is_open:
            return False
        try:
            pong_waiter = await self.ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=timeout)
            return True
        except (asyncio.TimeoutError, ConnectionClosed) as e:
            logger.warning(f"Ping failed: {e!r}, connection appears to be dead")
            return False

    async def _abort(self) -> None:
        if self.ws is not None:
            try:
                await self.ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing half-open engine socket: {e}")
            self.ws = None

    async def close(self) -> None:
        """Close the WebSocket connection. Safe to call more than once."""
        self._closing = True
        if self.ws is not None:
            logger.debug("Closing realtime engine connection")
            await self._abort()
