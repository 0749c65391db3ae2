"""
FastAPI server routing phone calls to the OpenAI Realtime API.

This module initializes and configures the FastAPI application that serves as
the webhook endpoint of the telephony provider. Each inbound call is routed
either to a realtime audio bridge (media stream <-> OpenAI Realtime) or to the
turn-based fallback conversation, according to the rollout settings.

On shutdown every live bridge is drained or dropped, depending on the
configured grace period.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from livekit import api

from app.config.constants import LOGGER_NAME
from app.config.logging_config import configure_logging
from app.config.settings import AppSettings, load_settings
from app.dependencies import CallServices, build_services
from app.handlers.voice_webhooks import router as voice_router

logger = logging.getLogger(LOGGER_NAME)

APP_NAME = "Realtime Call Bridge"
APP_DESCRIPTION = "Bridges telephony media streams to the OpenAI Realtime API with a turn-based fallback"
APP_VERSION = "1.0.0"


def create_app(settings: Optional[AppSettings] = None, services: Optional[CallServices] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        services: Pre-wired services, e.g. with test doubles injected
    """
    settings = settings or (services.settings if services else load_settings())
    configure_logging(settings.log_level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Realtime routing: {'enabled' if settings.realtime_enabled else 'disabled'}, "
            f"{settings.realtime_percentage}% rollout"
        )
        yield
        logger.info("Shutting down: closing active realtime sessions")
        await services.registry.shutdown(settings.shutdown_grace_seconds)
        if services.room_service is not None:
            await services.room_service.aclose()

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services
    app.include_router(voice_router)

    @app.get("/")
    async def root():
        """Basic information about the service and its endpoints."""
        return {
            "name": APP_NAME,
            "description": APP_DESCRIPTION,
            "version": APP_VERSION,
            "endpoints": {
                "/twilio-webhook-realtime": "Incoming call webhook (routes realtime or fallback)",
                "/twilio-webhook-fallback/gather": "Speech results for fallback calls",
                "/twilio-status-realtime": "Call status callback",
                "/media-stream-realtime": "Media stream WebSocket for realtime calls",
                "/realtime-status": "Routing configuration and active sessions",
                "/rooms/{room_name}/participants": "Participants of a call room",
                "/health": "Health check endpoint",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "openai_api_key_configured": bool(settings.openai_api_key),
            "livekit_configured": settings.livekit_configured,
            "active_sessions": len(services.registry),
            "fallback_conversations": len(services.conversation),
        }

    @app.get("/realtime-status")
    async def realtime_status():
        """Rollout configuration and a snapshot of every live bridge."""
        return {
            "realtime_enabled": settings.realtime_enabled,
            "realtime_percentage": settings.realtime_percentage,
            "max_reconnect_attempts": settings.max_reconnect_attempts,
            "connection_timeout": settings.connection_timeout,
            "active_sessions": len(services.registry),
            "sessions": [bridge.status().model_dump(mode="json") for bridge in services.registry.all()],
        }

    @app.get("/rooms/{room_name}/participants")
    async def room_participants(room_name: str):
        """Identities of the participants in a call's room."""
        if services.room_service is None:
            raise HTTPException(status_code=503, detail="Room service is not configured")
        try:
            participants = await services.room_service.list_participants(room_name)
        except api.TwirpError as e:
            logger.warning(f"Could not list participants of room {room_name}: {e.code}: {e.message}")
            if e.code == "not_found":
                raise HTTPException(status_code=404, detail=f"Room {room_name} not found")
            raise HTTPException(status_code=502, detail="Room service error")
        return {"room": room_name, "participants": participants}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    app_settings = app.state.services.settings
    logger.info(f"Starting server on http://{app_settings.host}:{app_settings.port}")
    uvicorn.run(
        app,
        host=app_settings.host,
        port=app_settings.port,
        websocket_ping_interval=5,  # Frequent pings to detect dead media streams
        websocket_max_size=16777216,  # 16MB - large enough for audio chunks
        websocket_ping_timeout=20,
        http="h11",
    )
