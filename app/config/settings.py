"""
Environment-driven settings for the call bridge service.

Settings are read once at startup from the process environment and an optional
``.env`` file, and kept in an immutable model. The bridge-specific subset is
projected into a ``BridgeConfiguration`` for each call.

Timeouts and cache lifetimes are configured in milliseconds, as in the
deployment environment; the ``*_ms`` fields hold the raw values and the
matching properties give seconds.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.constants import (
    DEFAULT_COMPLETION_MODEL,
    DEFAULT_LANGUAGE,
    DEFAULT_REALTIME_MODEL,
    DEFAULT_REALTIME_URL,
)

DEFAULT_PERCENTAGE = 0


class AppSettings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    realtime_model: str = Field(default=DEFAULT_REALTIME_MODEL, validation_alias="OPENAI_REALTIME_MODEL")
    realtime_url: str = Field(default=DEFAULT_REALTIME_URL, validation_alias="OPENAI_REALTIME_URL")
    completion_model: str = Field(default=DEFAULT_COMPLETION_MODEL, validation_alias="OPENAI_COMPLETION_MODEL")

    # Rollout
    realtime_enabled: bool = Field(default=False, validation_alias="REALTIME_ENABLED")
    realtime_percentage: int = Field(default=DEFAULT_PERCENTAGE, ge=0, le=100, validation_alias="REALTIME_PERCENTAGE")

    # Bridge behaviour
    connection_timeout_ms: int = Field(default=5000, gt=0, validation_alias="REALTIME_FALLBACK_TIMEOUT")
    max_reconnect_attempts: int = Field(default=2, ge=1, validation_alias="REALTIME_MAX_RETRIES")
    reconnect_delay: float = Field(default=1.0, ge=0, validation_alias="REALTIME_RECONNECT_DELAY")
    health_check_interval: float = Field(default=10.0, gt=0, validation_alias="REALTIME_HEALTH_INTERVAL")
    audio_buffer_frames: int = Field(default=1024, ge=1, validation_alias="REALTIME_AUDIO_BUFFER_FRAMES")
    tool_call_timeout: float = Field(default=8.0, gt=0, validation_alias="TOOL_CALL_TIMEOUT")

    # Conversation
    language: str = Field(default=DEFAULT_LANGUAGE, validation_alias="CALL_LANGUAGE")
    fallback_max_turns: int = Field(default=10, ge=1, validation_alias="FALLBACK_MAX_TURNS")

    # Public URL used in call-control documents
    public_base_url: Optional[str] = Field(default=None, validation_alias="PUBLIC_BASE_URL")

    # LiveKit room service
    livekit_url: Optional[str] = Field(default=None, validation_alias="LIVEKIT_URL")
    livekit_api_key: Optional[str] = Field(default=None, validation_alias="LIVEKIT_API_KEY")
    livekit_api_secret: Optional[str] = Field(default=None, validation_alias="LIVEKIT_API_SECRET")

    # Weather tool
    weather_enabled: bool = Field(default=True, validation_alias="WEATHER_ENABLED")
    weather_timeout_ms: int = Field(default=5000, gt=0, validation_alias="WEATHER_TIMEOUT")
    weather_cache_ttl_ms: int = Field(default=300000, ge=0, validation_alias="WEATHER_CACHE_TTL")

    # Process lifecycle
    shutdown_grace_seconds: float = Field(default=0.0, ge=0, validation_alias="SHUTDOWN_GRACE_SECONDS")

    # Server
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @field_validator("realtime_percentage", mode="before")
    @classmethod
    def clamp_percentage(cls, v):
        """Keep the rollout percentage inside [0, 100]; unreadable values mean the default."""
        try:
            percentage = int(v)
        except (TypeError, ValueError):
            return DEFAULT_PERCENTAGE
        return max(0, min(100, percentage))

    @field_validator(
        "openai_api_key", "public_base_url", "livekit_url", "livekit_api_key", "livekit_api_secret",
        mode="before",
    )
    @classmethod
    def empty_as_unset(cls, v):
        return v or None

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def connection_timeout(self) -> float:
        """Realtime handshake timeout in seconds."""
        return self.connection_timeout_ms / 1000

    @property
    def weather_timeout(self) -> float:
        return self.weather_timeout_ms / 1000

    @property
    def weather_cache_ttl(self) -> float:
        return self.weather_cache_ttl_ms / 1000

    @property
    def livekit_configured(self) -> bool:
        return bool(self.livekit_url and self.livekit_api_key and self.livekit_api_secret)


def load_settings(env_file: Optional[Path] = None) -> AppSettings:
    """
    Read settings from the environment, after the given ``.env`` file.

    Variables set in the process environment take precedence over the file.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)
