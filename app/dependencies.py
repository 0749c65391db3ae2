"""Service wiring and FastAPI dependencies."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request, WebSocket

from app.bot.audio_bridge import EngineFactory
from app.bot.realtime_api import RealtimeEngineClient
from app.bot.tools import ToolRegistry, build_default_registry
from app.config.settings import AppSettings
from app.handlers.media_stream import MediaStreamHandler
from app.models.session import BridgeConfiguration
from app.services.completion import CompletionProvider, OpenAICompletionProvider
from app.services.conversation_loop import FallbackConversationLoop
from app.services.room_service import RoomService
from app.services.session_registry import CallSessionRegistry
from app.services.weather_service import WeatherService


@dataclass
class CallServices:
    """Everything the HTTP and WebSocket endpoints share for the process lifetime."""

    settings: AppSettings
    registry: CallSessionRegistry
    tools: ToolRegistry
    conversation: FallbackConversationLoop
    media_streams: MediaStreamHandler
    room_service: Optional[RoomService] = None


def build_services(
    settings: AppSettings,
    completion: Optional[CompletionProvider] = None,
    engine_factory: EngineFactory = RealtimeEngineClient,
    room_service: Optional[RoomService] = None,
) -> CallServices:
    """Wire the services for one application instance."""
    registry = CallSessionRegistry()
    weather = WeatherService(
        enabled=settings.weather_enabled,
        timeout=settings.weather_timeout,
        cache_ttl=settings.weather_cache_ttl,
    )
    tools = build_default_registry(weather)
    conversation = FallbackConversationLoop(
        completion=completion or OpenAICompletionProvider(settings.openai_api_key, settings.completion_model),
        tools=tools,
        language=settings.language,
        max_turns=settings.fallback_max_turns,
    )
    if room_service is None and settings.livekit_configured:
        room_service = RoomService(settings.livekit_url, settings.livekit_api_key, settings.livekit_api_secret)
    media_streams = MediaStreamHandler(
        registry=registry,
        tools=tools,
        config_factory=lambda: BridgeConfiguration.from_settings(settings),
        engine_factory=engine_factory,
        room_service=room_service,
    )
    return CallServices(
        settings=settings,
        registry=registry,
        tools=tools,
        conversation=conversation,
        media_streams=media_streams,
        room_service=room_service,
    )


def get_services(request: Request) -> CallServices:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> CallServices:
    return websocket.app.state.services
