"""
Bot module bridging telephony media streams with the OpenAI Realtime API.

Key components:
- RealtimeEngineClient: Client for OpenAI's Realtime API over WebSockets. Opens
  the connection, negotiates the session and yields server events.
- AudioBridge: Per-call bridge relaying audio between the telephony stream and
  the engine, with health checks, reconnection and audio buffering.
- ToolCallDispatcher: Runs the engine's function calls concurrently and returns
  their output (or an apology) to the engine.

Usage examples:
```python
from app.bot import AudioBridge

bridge = AudioBridge(call_sid, room, config, registry, tools)
registry.register(call_sid, bridge)
await bridge.connect()
bridge.attach_telephony_peer(websocket)
await bridge.wait_closed()
```
"""

from app.bot.audio_bridge import AudioBridge
from app.bot.realtime_api import RealtimeEngineClient
from app.bot.tools import ToolCallDispatcher, ToolRegistry

__all__ = ["AudioBridge", "RealtimeEngineClient", "ToolCallDispatcher", "ToolRegistry"]
