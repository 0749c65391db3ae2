"""
LiveKit room service.

Every realtime call gets a named room, created before the call-control
document is returned and deleted once the call ends. The room carries the
call's metadata so other participants can identify it.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from livekit import api

from app.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

# Rooms nobody joins are reclaimed by the server after this many seconds
ROOM_EMPTY_TIMEOUT = 300


class RoomService:
    """Thin wrapper around the LiveKit room API."""

    def __init__(self, url: str, api_key: str, api_secret: str):
        self.url = url
        self._api_key = api_key
        self._api_secret = api_secret
        self._client: Optional[api.LiveKitAPI] = None

    @property
    def client(self) -> api.LiveKitAPI:
        # Created lazily: the client needs a running event loop
        if self._client is None:
            self._client = api.LiveKitAPI(self.url, self._api_key, self._api_secret)
        return self._client

    async def create_room(
        self,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        empty_timeout: int = ROOM_EMPTY_TIMEOUT,
    ) -> None:
        """
        Create a room for a call.

        Raises:
            api.TwirpError: The server rejected the request
        """
        await self.client.room.create_room(
            api.CreateRoomRequest(
                name=name,
                empty_timeout=empty_timeout,
                metadata=json.dumps(metadata or {}),
            )
        )
        logger.info(f"LiveKit room created: {name}")

    async def delete_room(self, name: str) -> bool:
        """Delete a room. Returns False when the server refused, e.g. the room is already gone."""
        try:
            await self.client.room.delete_room(api.DeleteRoomRequest(room=name))
        except api.TwirpError as e:
            logger.warning(f"Could not delete LiveKit room {name}: {e.message}")
            return False
        logger.info(f"LiveKit room deleted: {name}")
        return True

    async def list_participants(self, name: str) -> List[str]:
        """Identities of the participants currently in a room."""
        response = await self.client.room.list_participants(api.ListParticipantsRequest(room=name))
        return [participant.identity for participant in response.participants]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
