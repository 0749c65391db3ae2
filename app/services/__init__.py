"""
Services module for call routing, session tracking and external integrations.

Key components:
- session_router: Deterministic percentage rollout between realtime and fallback.
- session_registry: Live audio bridges keyed by call identifier.
- conversation_loop: Turn-based fallback conversation with per-call history.
- completion: OpenAI chat completions backing the fallback path.
- weather_service: Cached, retried weather lookups used by the weather tool.
- room_service: LiveKit rooms created and deleted per realtime call.
- call_control: TwiML documents returned to the telephony provider.
"""

# Services module initialization
