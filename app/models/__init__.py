"""
Models module for data structures and state in the call bridge.

Key components:
- media_stream_schemas: Pydantic models for the telephony media-stream protocol
  (connected, start, media, stop, mark inbound; media and clear outbound).
- openai_schemas: Type-safe models for the OpenAI Realtime API messages and the
  fallback conversation turns.
- session: Per-call session state, bridge configuration and status snapshots.

Usage examples:
```python
from app.models.media_stream_schemas import MediaMessage, parse_media_stream_message

message = parse_media_stream_message(raw_frame)
if isinstance(message, MediaMessage):
    audio = message.media.payload
```
"""

from app.models.media_stream_schemas import (
    ClearMessage,
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    OutgoingMediaMessage,
    StartMessage,
    StopMessage,
    parse_media_stream_message,
)
from app.models.session import (
    BridgeConfiguration,
    BridgeNotification,
    BridgeStatus,
    CallSession,
    SessionState,
)
