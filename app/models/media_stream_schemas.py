"""
Pydantic models for the telephony media-stream WebSocket protocol.

Each frame is a JSON envelope with an ``event`` discriminator (``connected``,
``start``, ``media``, ``stop``, ``mark``). Inbound ``media`` frames carry a
base64-encoded audio chunk and a track label. This module validates inbound
frames and builds the outbound ``media`` and ``clear`` frames.
"""

import base64
import binascii
import json
import logging
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from app.config.constants import (
    LOGGER_NAME,
    TELEPHONY_EVENT_CLEAR,
    TELEPHONY_EVENT_MEDIA,
    TRACK_INBOUND,
    TRACK_OUTBOUND,
)

logger = logging.getLogger(LOGGER_NAME)


class ConnectedMessage(BaseModel):
    """Model for the ``connected`` frame sent once the socket is open."""

    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class StartMetadata(BaseModel):
    """Stream metadata delivered with the ``start`` frame."""

    streamSid: str = Field(..., description="Media stream identifier")
    callSid: Optional[str] = Field(None, description="Call identifier")
    accountSid: Optional[str] = None
    tracks: List[str] = Field(default_factory=list)
    customParameters: Dict[str, str] = Field(default_factory=dict)
    mediaFormat: Optional[Dict[str, Union[str, int]]] = None


class StartMessage(BaseModel):
    """Model for the ``start`` frame."""

    event: Literal["start"]
    sequenceNumber: Optional[str] = None
    streamSid: Optional[str] = None
    start: StartMetadata


class MediaPayload(BaseModel):
    """Audio payload of a ``media`` frame."""

    payload: str = Field(..., description="Base64-encoded audio data")
    track: str = Field(TRACK_INBOUND, description="Track label (inbound/outbound)")
    chunk: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is non-empty base64."""
        if not v:
            raise ValueError("Audio payload cannot be empty")
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("Invalid base64 encoded audio data")
        return v

    @field_validator("track")
    def validate_track(cls, v):
        if v not in (TRACK_INBOUND, TRACK_OUTBOUND):
            logger.warning(f"Unknown media track label: {v}")
        return v


class MediaMessage(BaseModel):
    """Model for the ``media`` frame."""

    event: Literal["media"]
    sequenceNumber: Optional[str] = None
    streamSid: Optional[str] = None
    media: MediaPayload


class StopMessage(BaseModel):
    """Model for the ``stop`` frame."""

    event: Literal["stop"]
    sequenceNumber: Optional[str] = None
    streamSid: Optional[str] = None
    stop: Optional[Dict[str, str]] = None


class MarkMessage(BaseModel):
    """Model for the ``mark`` frame acknowledging played audio."""

    event: Literal["mark"]
    streamSid: Optional[str] = None
    mark: Optional[Dict[str, str]] = None


IncomingMediaStreamMessage = Annotated[
    Union[ConnectedMessage, StartMessage, MediaMessage, StopMessage, MarkMessage],
    Field(discriminator="event"),
]

_incoming_adapter = TypeAdapter(IncomingMediaStreamMessage)


class OutgoingMediaPayload(BaseModel):
    payload: str


class OutgoingMediaMessage(BaseModel):
    """Model for ``media`` frames sent back to the telephony side."""

    event: Literal["media"] = TELEPHONY_EVENT_MEDIA
    streamSid: str
    media: OutgoingMediaPayload


class ClearMessage(BaseModel):
    """Model for the ``clear`` frame that flushes queued playback."""

    event: Literal["clear"] = TELEPHONY_EVENT_CLEAR
    streamSid: str


def parse_media_stream_message(raw: str):
    """
    Decode and validate one inbound media-stream frame.

    Args:
        raw: The text frame as received from the telephony transport

    Returns:
        The typed message, or None when the frame is malformed or of an unknown
        event type. Malformed frames are dropped, never raised.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Dropping undecodable media-stream frame: {str(raw)[:100]}")
        return None

    try:
        return _incoming_adapter.validate_python(data)
    except ValidationError as e:
        event = data.get("event") if isinstance(data, dict) else None
        logger.warning(f"Dropping invalid media-stream frame (event={event}): {e.error_count()} error(s)")
        return None
