"""
Realtime Call Bridge - Telephony to OpenAI Realtime API

This application answers phone calls with an AI voice agent. Each inbound call is
routed either to a realtime audio bridge, which streams the caller's audio to
OpenAI's Realtime API and plays the synthesized reply back, or to a turn-based
fallback that speaks through the telephony provider's own speech synthesis.

Architecture Overview:
- FastAPI server exposing the telephony webhooks and the media-stream WebSocket
- Percentage rollout deciding, per call, realtime versus fallback
- One audio bridge per realtime call, with health checks and reconnection
- Tool calls (weather lookup, ending the call) answered without blocking audio

Key Components:
- bot: The audio bridge, the realtime engine client and the tool dispatcher
- config: Application-wide constants, settings and logging setup
- handlers: Webhook routes and the media-stream WebSocket handler
- models: Media-stream and OpenAI message schemas, session state
- services: Rollout routing, session registry, fallback conversation, weather,
  LiveKit rooms and call-control documents

Getting Started:
1. Set up environment variables:
   - OPENAI_API_KEY: Your OpenAI API key
   - REALTIME_ENABLED: Enable the realtime path (default false)
   - REALTIME_PERCENTAGE: Share of calls to route realtime, 0-100 (default 0)
   - PUBLIC_BASE_URL: Public URL of this server, used in call-control documents
   - PORT / HOST / LOG_LEVEL: Server binding and logging

2. Start the server:
   ```bash
   python -m app.main
   ```

3. Point the phone number's voice webhook to
   https://your-server/twilio-webhook-realtime and its status callback to
   https://your-server/twilio-status-realtime
"""
