"""
Runtime models for realtime call sessions.

This module holds the per-call state tracked by an audio bridge, the immutable
configuration a bridge is created with, and the small records the bridge uses
to correlate tool calls and publish notifications.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    DEFAULT_LANGUAGE,
    DEFAULT_REALTIME_MODEL,
    DEFAULT_REALTIME_URL,
    DEFAULT_VOICE,
)
from app.config.settings import AppSettings


class SessionState(str, Enum):
    """Connection state of a bridged call."""
    CONNECTING = "connecting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    CLOSED = "closed"


DEFAULT_INSTRUCTIONS = {
    "de": (
        "Du bist ein hilfreicher Assistent, der telefonisch erreichbar ist. "
        "Halte deine Antworten prägnant und gesprächig, da sie dem Anrufer vorgesprochen werden. "
        "Denke daran, dass dies ein Telefongespräch ist. Du kannst auch Wetterinformationen "
        "für jeden Ort bereitstellen, wenn danach gefragt wird. Antworte immer auf Deutsch."
    ),
    "en": (
        "You are a helpful assistant accessible by phone. Keep your answers concise and "
        "conversational, since they are spoken to the caller. You can also provide weather "
        "information for any location when asked. Always answer in English."
    ),
}


class BridgeConfiguration(BaseModel):
    """Parameters fixed when a call session is created. Never mutated afterwards."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., repr=False)
    model: str = DEFAULT_REALTIME_MODEL
    realtime_url: str = DEFAULT_REALTIME_URL
    connection_timeout: float = Field(default=10.0, gt=0)
    max_reconnect_attempts: int = Field(default=3, ge=1)
    reconnect_delay: float = Field(default=1.0, ge=0)
    health_check_interval: float = Field(default=10.0, gt=0)
    audio_buffer_frames: int = Field(default=1024, ge=1)
    tool_call_timeout: float = Field(default=8.0, gt=0)
    language: str = DEFAULT_LANGUAGE
    voice: str = DEFAULT_VOICE
    audio_format: str = AUDIO_FORMAT_G711_ULAW
    instructions: Optional[str] = None
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500

    @property
    def resolved_instructions(self) -> str:
        if self.instructions:
            return self.instructions
        return DEFAULT_INSTRUCTIONS.get(self.language, DEFAULT_INSTRUCTIONS["de"])

    @property
    def health_window(self) -> float:
        """Time without a health signal after which the engine counts as silent."""
        return self.health_check_interval * 3

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "BridgeConfiguration":
        return cls(
            api_key=settings.openai_api_key or "",
            model=settings.realtime_model,
            realtime_url=settings.realtime_url,
            connection_timeout=settings.connection_timeout,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
            health_check_interval=settings.health_check_interval,
            audio_buffer_frames=settings.audio_buffer_frames,
            tool_call_timeout=settings.tool_call_timeout,
            language=settings.language,
        )


@dataclass
class CallSession:
    """One phone call's realtime bridging lifecycle."""

    call_id: str
    room_id: str
    state: SessionState = SessionState.CONNECTING
    reconnect_attempts: int = 0
    last_health_check_at: float = field(default_factory=time.monotonic)
    stream_sid: Optional[str] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class PendingToolCall:
    """An in-flight function call awaiting its result."""

    correlation_id: str
    call_id: str
    tool_name: str
    arguments: str
    started_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class BridgeNotification:
    """Fire-and-forget notification published by a bridge to its subscribers."""

    kind: str
    call_id: str
    data: Dict[str, Any] = field(default_factory=dict)


class BridgeStatus(BaseModel):
    """Point-in-time snapshot of a bridge, served by the status endpoint."""

    call_id: str
    room_id: str
    state: SessionState
    reconnect_attempts: int
    seconds_since_health_check: float
    engine_ready: bool
    telephony_ready: bool
    pending_tool_calls: List[str] = Field(default_factory=list)
    uptime_seconds: float
