"""
Pydantic models for OpenAI message structures.

This module provides type-safe models for the messages exchanged with the OpenAI
Realtime API (session negotiation, audio append, function-call output) and the
conversation turns kept by the turn-based fallback path.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from app.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    DEFAULT_VOICE,
    ENGINE_CONVERSATION_ITEM_CREATE,
    ENGINE_INPUT_AUDIO_APPEND,
    ENGINE_RESPONSE_CREATE,
    ENGINE_SESSION_UPDATE,
)


class MessageRole(str, Enum):
    """Role of a participant in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """One entry of a call's turn-based conversation history."""
    role: MessageRole
    content: str


class TurnDetection(BaseModel):
    """Server-side voice activity detection thresholds."""
    type: Literal["server_vad"] = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500


class InputAudioTranscription(BaseModel):
    model: str = "whisper-1"


class FunctionDeclaration(BaseModel):
    """A tool the engine may call, as declared in the session."""
    type: Literal["function"] = "function"
    name: str
    description: str
    parameters: Dict[str, Any]


class SessionConfig(BaseModel):
    """Session parameters negotiated with ``session.update``."""
    modalities: List[str] = Field(default_factory=lambda: ["text", "audio"])
    instructions: str
    voice: str = DEFAULT_VOICE
    input_audio_format: str = AUDIO_FORMAT_G711_ULAW
    output_audio_format: str = AUDIO_FORMAT_G711_ULAW
    input_audio_transcription: InputAudioTranscription = Field(default_factory=InputAudioTranscription)
    turn_detection: TurnDetection = Field(default_factory=TurnDetection)
    tools: List[FunctionDeclaration] = Field(default_factory=list)
    tool_choice: str = "auto"


class SessionUpdateEvent(BaseModel):
    type: Literal["session.update"] = ENGINE_SESSION_UPDATE
    session: SessionConfig


class InputAudioBufferAppendEvent(BaseModel):
    """Audio from the caller, appended to the engine's input buffer."""
    type: Literal["input_audio_buffer.append"] = ENGINE_INPUT_AUDIO_APPEND
    audio: str


class FunctionCallOutputItem(BaseModel):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    output: str


class InputTextContent(BaseModel):
    type: Literal["input_text"] = "input_text"
    text: str


class MessageItem(BaseModel):
    type: Literal["message"] = "message"
    role: MessageRole
    content: List[InputTextContent]


class ConversationItemCreateEvent(BaseModel):
    type: Literal["conversation.item.create"] = ENGINE_CONVERSATION_ITEM_CREATE
    item: Union[FunctionCallOutputItem, MessageItem]


class ResponseCreateEvent(BaseModel):
    type: Literal["response.create"] = ENGINE_RESPONSE_CREATE


class FunctionCallArgumentsDone(BaseModel):
    """Function call request emitted mid-stream by the engine."""
    type: Literal["response.function_call_arguments.done"]
    name: str
    arguments: str = "{}"
    call_id: Optional[str] = None
    item_id: Optional[str] = None
    response_id: Optional[str] = None


class RealtimeErrorDetail(BaseModel):
    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class RealtimeErrorEvent(BaseModel):
    """Error event from the realtime engine."""
    type: Literal["error"]
    error: RealtimeErrorDetail = Field(default_factory=RealtimeErrorDetail)


def parse_error_event(event: Dict[str, Any]) -> RealtimeErrorDetail:
    """Details of an engine ``error`` event; missing or malformed details come back empty."""
    try:
        return RealtimeErrorEvent.model_validate(event).error
    except ValidationError:
        return RealtimeErrorDetail()
