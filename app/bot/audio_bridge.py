"""
Bridge between a telephony media stream and the OpenAI Realtime API.

One ``AudioBridge`` serves one call. It owns the engine connection and the
attached telephony socket, translates frames in both directions, runs the
periodic health check, and reconnects the engine side with linear backoff.

State machine::

    CONNECTING --handshake ok--> ACTIVE
    CONNECTING --handshake failed, attempts left--> CONNECTING (retry)
    ACTIVE --transport error / unhealthy--> DEGRADED --reconnected--> ACTIVE
    DEGRADED --attempts exhausted--> CLOSED
    any --disconnect() / peer closed--> CLOSED

``disconnect()`` is the single teardown path. It can be called from any state,
any number of times, and from any of the bridge's own tasks.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from fastapi import WebSocketDisconnect
from pydantic import BaseModel

from app.bot.realtime_api import RealtimeEngineClient
from app.bot.tools import ToolCallDispatcher, ToolContext, ToolRegistry
from app.config.constants import (
    ENGINE_AUDIO_DELTA,
    ENGINE_ERROR,
    ENGINE_FUNCTION_CALL_DONE,
    ENGINE_SESSION_CREATED,
    ENGINE_SESSION_UPDATED,
    ENGINE_SPEECH_STARTED,
    ENGINE_TRANSCRIPTION_COMPLETED,
    LOGGER_NAME,
    TRACK_INBOUND,
)
from app.exceptions import (
    AlreadyAttachedError,
    BridgeError,
    EngineTransportError,
    HealthCheckFailedError,
)
from app.models.media_stream_schemas import (
    ClearMessage,
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    OutgoingMediaMessage,
    OutgoingMediaPayload,
    StartMessage,
    StopMessage,
    parse_media_stream_message,
)
from app.models.openai_schemas import (
    ConversationItemCreateEvent,
    FunctionDeclaration,
    InputAudioBufferAppendEvent,
    InputTextContent,
    MessageItem,
    MessageRole,
    ResponseCreateEvent,
    parse_error_event,
)
from app.models.session import (
    BridgeConfiguration,
    BridgeNotification,
    BridgeStatus,
    CallSession,
    SessionState,
)
from app.services.session_registry import CallSessionRegistry

logger = logging.getLogger(LOGGER_NAME)

NOTIFICATION_QUEUE_SIZE = 100

GREETING_PROMPTS = {
    "de": "Ein Anrufer ist gerade verbunden worden. Begrüße ihn freundlich und frage, wie du helfen kannst.",
    "en": "A caller just connected. Greet them warmly and ask how you can help them today.",
}


class TelephonyTransport(Protocol):
    """The subset of a server-side WebSocket the bridge relies on."""

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str: ...

    async def close(self, code: int = 1000) -> None: ...


EngineFactory = Callable[[BridgeConfiguration, List[FunctionDeclaration]], RealtimeEngineClient]


def telephony_to_engine(message: MediaMessage) -> Optional[InputAudioBufferAppendEvent]:
    """Re-wrap an inbound telephony media frame as an engine audio-append message."""
    if message.media.track != TRACK_INBOUND:
        return None
    return InputAudioBufferAppendEvent(audio=message.media.payload)


def engine_to_telephony(event: Dict[str, Any], stream_sid: str) -> Optional[OutgoingMediaMessage]:
    """Re-wrap an engine audio delta as a telephony media frame."""
    delta = event.get("delta")
    if event.get("type") != ENGINE_AUDIO_DELTA or not delta:
        return None
    return OutgoingMediaMessage(streamSid=stream_sid, media=OutgoingMediaPayload(payload=delta))


class AudioBridge:
    """
    Relays audio and events between one call's telephony stream and the realtime engine.

    Attributes:
        session: The call's lifecycle state, owned exclusively by this bridge
        config: Immutable configuration fixed at creation
        dispatcher: Runs function calls requested by the engine
    """

    def __init__(
        self,
        call_id: str,
        room_id: str,
        config: BridgeConfiguration,
        registry: CallSessionRegistry,
        tools: ToolRegistry,
        engine_factory: EngineFactory = RealtimeEngineClient,
    ):
        self.session = CallSession(call_id=call_id, room_id=room_id)
        self.config = config
        self.registry = registry
        self.tools = tools
        self.engine: Optional[RealtimeEngineClient] = None
        self.telephony: Optional[TelephonyTransport] = None
        self.dispatcher = ToolCallDispatcher(
            tools,
            self._send_to_engine,
            ToolContext(
                call_id=call_id,
                room_id=room_id,
                language=config.language,
                end_call=self.schedule_hangup,
            ),
            timeout=config.tool_call_timeout,
        )
        self._engine_factory = engine_factory
        self._audio_buffer: Deque[str] = deque(maxlen=config.audio_buffer_frames)
        self._subscribers: List[asyncio.Queue] = []
        self._engine_task: Optional[asyncio.Task] = None
        self._telephony_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._hangup_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._disconnecting = False
        self._greeted = False
        logger.info(f"AudioBridge initialized for call {call_id} in room {room_id}")

    @property
    def call_id(self) -> str:
        return self.session.call_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    def _set_state(self, state: SessionState) -> None:
        if self.session.state != state:
            logger.info(f"Call {self.call_id}: {self.session.state.value} -> {state.value}")
            self.session.state = state

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        """Return a new queue that receives this bridge's notifications."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=NOTIFICATION_QUEUE_SIZE)
        self._subscribers.append(queue)
        return queue

    def _publish(self, kind: str, **data: Any) -> None:
        notification = BridgeNotification(kind=kind, call_id=self.call_id, data=data)
        for queue in self._subscribers:
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                logger.debug(f"Notification queue full, dropping {kind} for call {self.call_id}")

    # ------------------------------------------------------------------
    # Engine side
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Connect to the realtime engine and negotiate the session.

        Failed handshakes are retried with linear backoff. When the attempt
        budget is spent the bridge closes and the last error is raised.

        Raises:
            HandshakeTimeoutError: The engine never acknowledged the session
            AuthenticationError: The engine rejected the credentials
            BridgeError: The bridge is already closed, or the connection failed
        """
        if self._disconnecting:
            raise BridgeError(f"Bridge for call {self.call_id} is closed")

        logger.info(f"Starting AudioBridge connection for call {self.call_id}")
        self._set_state(SessionState.CONNECTING)
        try:
            await self._open_engine()
        except BridgeError as e:
            logger.error(f"Realtime handshake failed for call {self.call_id}: {e}")
            self._publish("error", error=str(e))
            error = await self._recover(e)
            if error is not None:
                raise error

    async def _open_engine(self) -> None:
        await self._close_engine()
        engine = self._engine_factory(self.config, self.tools.declarations())
        self.engine = engine
        await engine.connect()

        self.session.reconnect_attempts = 0
        self.session.last_health_check_at = time.monotonic()
        self._set_state(SessionState.ACTIVE)
        self._engine_task = asyncio.create_task(self._pump_engine(engine))
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._monitor_health())
        logger.info(f"AudioBridge connected for call {self.call_id}")
        self._publish("connected")

        await self._flush_audio_buffer()
        if self.session.stream_sid:
            await self._greet()

    async def _recover(self, error: BridgeError) -> Optional[BridgeError]:
        """
        Reconnect with linear backoff.

        Returns:
            None once reconnected, or the last error after the bridge closed
        """
        while not self._disconnecting:
            self.session.reconnect_attempts += 1
            attempt = self.session.reconnect_attempts
            if attempt >= self.config.max_reconnect_attempts:
                logger.error(
                    f"Max reconnection attempts ({self.config.max_reconnect_attempts}) reached for call {self.call_id}"
                )
                await self.disconnect(f"reconnect attempts exhausted: {error}")
                return error

            if self.state != SessionState.CONNECTING:
                self._set_state(SessionState.DEGRADED)
            delay = self.config.reconnect_delay * attempt
            logger.info(
                f"Reconnecting call {self.call_id} "
                f"(attempt {attempt}/{self.config.max_reconnect_attempts}) in {delay}s"
            )
            await asyncio.sleep(delay)
            if self._disconnecting:
                break
            try:
                await self._open_engine()
                self._publish("reconnected", attempt=attempt)
                return None
            except BridgeError as e:
                logger.warning(f"Reconnection attempt {attempt} failed for call {self.call_id}: {e}")
                error = e
        return error

    def _handle_transport_error(self, error: BridgeError) -> None:
        """Route an engine failure into the reconnect path."""
        if self._disconnecting:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.error(f"Engine connection error for call {self.call_id}: {error}")
        self._publish("error", error=str(error))
        self._set_state(SessionState.DEGRADED)
        self._publish("degraded", reason=str(error))
        self._reconnect_task = asyncio.create_task(self._reconnect(error))

    async def _reconnect(self, error: BridgeError) -> None:
        await self._close_engine()
        await self._recover(error)

    async def _close_engine(self) -> None:
        await self._cancel(self._engine_task)
        self._engine_task = None
        if self.engine is not None:
            await self.engine.close()
            self.engine = None

    async def _pump_engine(self, engine: RealtimeEngineClient) -> None:
        try:
            async for event in engine.events():
                self.session.last_health_check_at = time.monotonic()
                await self._handle_engine_event(event)
        except BridgeError as e:
            self._handle_transport_error(e)
            return
        if not self._disconnecting and engine is self.engine:
            await self.disconnect("engine closed the connection")

    async def _handle_engine_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")

        if event_type == ENGINE_AUDIO_DELTA:
            message = engine_to_telephony(event, self.session.stream_sid or self.call_id)
            if message is not None:
                await self._send_to_telephony(message)

        elif event_type == ENGINE_TRANSCRIPTION_COMPLETED:
            transcript = event.get("transcript", "")
            logger.info(f"Transcript for call {self.call_id}: {transcript}")
            self._publish("transcript", transcript=transcript)

        elif event_type == ENGINE_FUNCTION_CALL_DONE:
            if self.dispatcher.dispatch(event) is not None:
                self._publish("function_called", name=event.get("name"), arguments=event.get("arguments"))

        elif event_type == ENGINE_SPEECH_STARTED:
            # Caller barged in: drop audio still queued for playback
            if self.telephony is not None and self.session.stream_sid:
                await self._send_to_telephony(ClearMessage(streamSid=self.session.stream_sid))

        elif event_type in (ENGINE_SESSION_CREATED, ENGINE_SESSION_UPDATED):
            logger.info(f"Realtime session event {event_type} for call {self.call_id}")

        elif event_type == ENGINE_ERROR:
            error = parse_error_event(event)
            logger.error(f"Realtime engine error for call {self.call_id}: {error.code or error.type}: {error.message}")
            self._publish("error", error=error.message or "engine error", code=error.code)

        else:
            logger.debug(f"Realtime engine event {event_type} for call {self.call_id}")

    async def _send_to_engine(self, event: BaseModel) -> None:
        engine = self.engine
        if engine is None:
            raise EngineTransportError("Realtime engine is not connected")
        await engine.send(event)

    async def _greet(self) -> None:
        if self._greeted or self.state != SessionState.ACTIVE:
            return
        self._greeted = True
        prompt = GREETING_PROMPTS.get(self.config.language, GREETING_PROMPTS["de"])
        try:
            await self._send_to_engine(
                ConversationItemCreateEvent(
                    item=MessageItem(role=MessageRole.USER, content=[InputTextContent(text=prompt)])
                )
            )
            await self._send_to_engine(ResponseCreateEvent())
        except BridgeError as e:
            logger.warning(f"Could not request greeting for call {self.call_id}: {e}")

    # ------------------------------------------------------------------
    # Telephony side
    # ------------------------------------------------------------------

    def attach_telephony_peer(self, transport: TelephonyTransport) -> None:
        """
        Bind the call's media-stream socket and start relaying its frames.

        Raises:
            AlreadyAttachedError: A telephony peer was attached before
            BridgeError: The bridge is already closed
        """
        if self.telephony is not None:
            raise AlreadyAttachedError(f"Telephony peer already attached for call {self.call_id}")
        if self._disconnecting:
            raise BridgeError(f"Bridge for call {self.call_id} is closed")
        self.telephony = transport
        self._telephony_task = asyncio.create_task(self._pump_telephony(transport))
        logger.info(f"Telephony stream attached for call {self.call_id}")

    async def _pump_telephony(self, transport: TelephonyTransport) -> None:
        try:
            while not self._disconnecting:
                raw = await transport.receive_text()
                await self.handle_telephony_frame(raw)
        except (WebSocketDisconnect, RuntimeError) as e:
            if self._disconnecting:
                return
            logger.warning(f"Telephony stream dropped for call {self.call_id}: {e!r}")
            self._set_state(SessionState.DEGRADED)
            self._publish("degraded", reason="telephony peer dropped")
            await self.disconnect("telephony peer disconnected")

    async def handle_telephony_frame(self, raw: str) -> None:
        """Process one text frame from the telephony stream."""
        message = parse_media_stream_message(raw)
        if message is None:
            return

        if isinstance(message, MediaMessage):
            append = telephony_to_engine(message)
            if append is not None:
                await self._forward_audio(append)

        elif isinstance(message, StartMessage):
            self.session.stream_sid = message.start.streamSid
            logger.info(f"Media stream {message.start.streamSid} started for call {self.call_id}")
            await self._greet()

        elif isinstance(message, StopMessage):
            logger.info(f"Media stream stopped for call {self.call_id}")
            await self.disconnect("telephony stream stopped")

        elif isinstance(message, ConnectedMessage):
            logger.debug(f"Media stream connected for call {self.call_id}")

        elif isinstance(message, MarkMessage):
            logger.debug(f"Playback mark for call {self.call_id}: {message.mark}")

    async def _forward_audio(self, append: InputAudioBufferAppendEvent) -> None:
        engine = self.engine
        # Keep arrival order: while anything is buffered, new audio queues behind it
        if self._audio_buffer or self.state != SessionState.ACTIVE or engine is None or not engine.is_open:
            self._audio_buffer.append(append.audio)
            return
        try:
            await engine.send(append)
        except BridgeError as e:
            self._audio_buffer.append(append.audio)
            self._handle_transport_error(e)

    async def _flush_audio_buffer(self) -> None:
        if self._audio_buffer:
            logger.debug(f"Flushing {len(self._audio_buffer)} buffered frame(s) for call {self.call_id}")
        while self._audio_buffer and self.engine is not None:
            audio = self._audio_buffer.popleft()
            try:
                await self.engine.send(InputAudioBufferAppendEvent(audio=audio))
            except BridgeError as e:
                self._audio_buffer.appendleft(audio)
                self._handle_transport_error(e)
                return

    async def _send_to_telephony(self, message: BaseModel) -> None:
        transport = self.telephony
        if transport is None:
            return
        try:
            await transport.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(f"Error forwarding audio to telephony for call {self.call_id}: {e!r}")

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------

    def check_health(self) -> bool:
        """Engine is open and a health signal was seen within the window."""
        engine = self.engine
        recent = time.monotonic() - self.session.last_health_check_at < self.config.health_window
        return self.state == SessionState.ACTIVE and engine is not None and engine.is_open and recent

    async def _monitor_health(self) -> None:
        interval = self.config.health_check_interval
        while not self._disconnecting:
            await asyncio.sleep(interval)
            if self.state != SessionState.ACTIVE:
                continue
            engine = self.engine
            if engine is not None and await engine.ping(timeout=interval):
                self.session.last_health_check_at = time.monotonic()
            healthy = self.check_health()
            self._publish("health_check", status="healthy" if healthy else "unhealthy")
            if not healthy:
                logger.warning(f"Health check failed for call {self.call_id}")
                self._handle_transport_error(HealthCheckFailedError("Health check failed"))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def schedule_hangup(self, delay: float) -> None:
        """Disconnect the call after ``delay`` seconds."""
        if self._disconnecting or (self._hangup_task is not None and not self._hangup_task.done()):
            return
        self._hangup_task = asyncio.create_task(self._hangup_after(delay))

    async def _hangup_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.disconnect("call ended by assistant")

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def disconnect(self, reason: str = "disconnect requested") -> None:
        """
        Tear the bridge down: stop timers and tasks, close both transports,
        drop buffered audio and deregister the call. Idempotent.
        """
        if self._disconnecting:
            return
        self._disconnecting = True
        logger.info(f"Disconnecting AudioBridge for call {self.call_id}: {reason}")

        for task in (self._health_task, self._reconnect_task, self._hangup_task, self._telephony_task):
            await self._cancel(task)
        await self.dispatcher.cancel_all()
        await self._close_engine()

        if self.telephony is not None:
            try:
                await self.telephony.close()
            except (RuntimeError, OSError) as e:
                logger.debug(f"Telephony stream already closed for call {self.call_id}: {e!r}")

        self._audio_buffer.clear()
        self._set_state(SessionState.CLOSED)
        if self.registry.lookup(self.call_id) is self:
            self.registry.remove(self.call_id)
        self._publish("disconnected", reason=reason)
        self._closed.set()
        logger.info(f"AudioBridge disconnected for call {self.call_id}")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def status(self) -> BridgeStatus:
        engine = self.engine
        return BridgeStatus(
            call_id=self.call_id,
            room_id=self.session.room_id,
            state=self.state,
            reconnect_attempts=self.session.reconnect_attempts,
            seconds_since_health_check=round(time.monotonic() - self.session.last_health_check_at, 3),
            engine_ready=engine is not None and engine.is_open,
            telephony_ready=self.telephony is not None and not self._disconnecting,
            pending_tool_calls=list(self.dispatcher.pending),
            uptime_seconds=round(time.time() - self.session.created_at, 3),
        )
