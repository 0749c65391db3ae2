"""
Handlers for the telephony provider's requests.

Key components:
- voice_webhooks: Form-encoded call webhooks (incoming call, gathered speech,
  status callback) answered with call-control documents, plus the
  media-stream WebSocket route.
- media_stream: Runs one audio bridge per media-stream WebSocket connection.
"""
