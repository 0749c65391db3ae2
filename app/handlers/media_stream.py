"""
Server side of the telephony media-stream WebSocket.

The call-control document returned for a realtime call points the provider at
this socket with ``room`` and ``callSid`` query parameters. For each connection
the handler:
- Accepts the socket and validates the parameters
- Creates and registers an ``AudioBridge`` for the call
- Connects the bridge to the realtime engine and attaches the socket
- Holds the connection open until the bridge closes, then deletes the room

A failure at any step is contained to this one call.
"""

import asyncio
import logging
from typing import Callable, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.bot.audio_bridge import AudioBridge, EngineFactory
from app.bot.realtime_api import RealtimeEngineClient
from app.bot.tools import ToolRegistry
from app.config.constants import LOGGER_NAME
from app.exceptions import BridgeError, DuplicateSessionError
from app.models.session import BridgeConfiguration
from app.services.room_service import RoomService
from app.services.session_registry import CallSessionRegistry

logger = logging.getLogger(LOGGER_NAME)

# Policy violation: the socket was opened without the parameters we require
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011


class MediaStreamHandler:
    """
    Runs one audio bridge per media-stream connection.

    Args:
        registry: Where live bridges are registered by call identifier
        tools: Tool catalog declared to the realtime engine
        config_factory: Produces the bridge configuration for a new call
        engine_factory: Builds the realtime engine client for a bridge
        room_service: Deletes the call's room once the bridge has closed
    """

    def __init__(
        self,
        registry: CallSessionRegistry,
        tools: ToolRegistry,
        config_factory: Callable[[], BridgeConfiguration],
        engine_factory: EngineFactory = RealtimeEngineClient,
        room_service: Optional[RoomService] = None,
    ):
        self.registry = registry
        self.tools = tools
        self.config_factory = config_factory
        self.engine_factory = engine_factory
        self.room_service = room_service

    async def handle_websocket(self, websocket: WebSocket, room: Optional[str], call_sid: Optional[str]) -> None:
        """Handle a media-stream WebSocket for the lifetime of its call."""
        await websocket.accept()
        logger.info(f"Media stream connection for call {call_sid} in room {room}")

        if not room or not call_sid:
            logger.error("Media stream opened without room or callSid parameter")
            await self._close(websocket, CLOSE_POLICY_VIOLATION)
            return

        bridge = AudioBridge(
            call_id=call_sid,
            room_id=room,
            config=self.config_factory(),
            registry=self.registry,
            tools=self.tools,
            engine_factory=self.engine_factory,
        )
        try:
            self.registry.register(call_sid, bridge)
        except DuplicateSessionError as e:
            logger.error(f"Rejecting media stream: {e}")
            await self._close(websocket, CLOSE_POLICY_VIOLATION)
            return

        notifications = bridge.subscribe()
        observer = asyncio.create_task(self._log_notifications(notifications))
        try:
            await bridge.connect()
            bridge.attach_telephony_peer(websocket)
            await bridge.wait_closed()
        except BridgeError as e:
            logger.error(f"Failed to bridge call {call_sid} to the realtime engine: {e}")
            await bridge.disconnect(f"setup failed: {e}")
            await self._close(websocket, CLOSE_INTERNAL_ERROR)
        finally:
            observer.cancel()
            await self._release_room(bridge.session.room_id)
            logger.info(f"Media stream handler finished for call {call_sid}")

    async def _release_room(self, room: str) -> None:
        if self.room_service is None:
            return
        try:
            await self.room_service.delete_room(room)
        except Exception as e:
            logger.error(f"Error deleting room {room}: {type(e).__name__}: {e}", exc_info=True)

    @staticmethod
    async def _log_notifications(notifications: asyncio.Queue) -> None:
        while True:
            notification = await notifications.get()
            logger.debug(
                f"Bridge notification for call {notification.call_id}: "
                f"{notification.kind} {notification.data}"
            )
            if notification.kind == "disconnected":
                return

    @staticmethod
    async def _close(websocket: WebSocket, code: int) -> None:
        if websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await websocket.close(code=code)
        except RuntimeError as e:
            logger.debug(f"Media stream already closed: {e}")
