"""Tests for environment-driven settings and the per-call bridge configuration."""

import pytest
from pydantic import ValidationError

from app.config.settings import AppSettings, load_settings
from app.models.session import DEFAULT_INSTRUCTIONS, BridgeConfiguration

ENV_VARS = [
    "OPENAI_API_KEY",
    "REALTIME_ENABLED",
    "REALTIME_PERCENTAGE",
    "REALTIME_FALLBACK_TIMEOUT",
    "REALTIME_MAX_RETRIES",
    "CALL_LANGUAGE",
    "LIVEKIT_URL",
    "LIVEKIT_API_KEY",
    "LIVEKIT_API_SECRET",
    "WEATHER_TIMEOUT",
    "SHUTDOWN_GRACE_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = AppSettings()

    assert settings.openai_api_key is None
    assert not settings.realtime_enabled
    assert settings.realtime_percentage == 0
    assert settings.connection_timeout == 5.0
    assert settings.max_reconnect_attempts == 2
    assert settings.language == "de"
    assert settings.shutdown_grace_seconds == 0.0
    assert not settings.livekit_configured


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("REALTIME_ENABLED", "true")
    monkeypatch.setenv("REALTIME_PERCENTAGE", "25")
    monkeypatch.setenv("REALTIME_FALLBACK_TIMEOUT", "2500")
    monkeypatch.setenv("REALTIME_MAX_RETRIES", "4")
    monkeypatch.setenv("WEATHER_TIMEOUT", "3000")
    monkeypatch.setenv("LIVEKIT_URL", "wss://livekit.example.com")
    monkeypatch.setenv("LIVEKIT_API_KEY", "key")
    monkeypatch.setenv("LIVEKIT_API_SECRET", "secret")

    settings = AppSettings()

    assert settings.openai_api_key == "sk-test"
    assert settings.realtime_enabled
    assert settings.realtime_percentage == 25
    assert settings.connection_timeout == 2.5
    assert settings.max_reconnect_attempts == 4
    assert settings.weather_timeout == 3.0
    assert settings.livekit_configured


@pytest.mark.parametrize("raw, expected", [("150", 100), ("-5", 0), ("abc", 0)])
def test_percentage_is_clamped(monkeypatch, raw, expected):
    monkeypatch.setenv("REALTIME_PERCENTAGE", raw)
    assert AppSettings().realtime_percentage == expected


def test_ms_values_exposed_in_seconds():
    settings = AppSettings(connection_timeout_ms=1500, weather_timeout_ms=250, weather_cache_ttl_ms=60000)

    assert settings.connection_timeout == 1.5
    assert settings.weather_timeout == 0.25
    assert settings.weather_cache_ttl == 60.0


def test_keyword_arguments_override_environment(monkeypatch):
    monkeypatch.setenv("REALTIME_PERCENTAGE", "10")
    monkeypatch.setenv("CALL_LANGUAGE", "en")

    settings = AppSettings(realtime_percentage=75)

    assert settings.realtime_percentage == 75
    assert settings.language == "en"


def test_empty_strings_mean_unset(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("LIVEKIT_URL", "")

    settings = AppSettings()

    assert settings.openai_api_key is None
    assert settings.livekit_url is None


def test_invalid_retry_count_rejected(monkeypatch):
    monkeypatch.setenv("REALTIME_MAX_RETRIES", "0")
    with pytest.raises(ValidationError):
        AppSettings()


def test_settings_are_immutable():
    settings = AppSettings()
    with pytest.raises(ValidationError):
        settings.realtime_percentage = 50


def test_load_settings_reads_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("REALTIME_PERCENTAGE=40\nREALTIME_ENABLED=1\n")
    # Have monkeypatch restore both variables to unset after the test
    for name in ("REALTIME_PERCENTAGE", "REALTIME_ENABLED"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    settings = load_settings(env_file)

    assert settings.realtime_percentage == 40
    assert settings.realtime_enabled


def test_bridge_configuration_from_settings():
    settings = AppSettings(openai_api_key="sk-test", max_reconnect_attempts=5, language="en")

    config = BridgeConfiguration.from_settings(settings)

    assert config.api_key == "sk-test"
    assert config.max_reconnect_attempts == 5
    assert config.audio_format == "g711_ulaw"
    assert config.resolved_instructions == DEFAULT_INSTRUCTIONS["en"]
    assert config.health_window == config.health_check_interval * 3
    assert "sk-test" not in repr(config)


def test_bridge_configuration_is_immutable():
    config = BridgeConfiguration(api_key="sk-test")
    with pytest.raises(ValidationError):
        config.language = "en"


def test_bridge_configuration_validates_limits():
    with pytest.raises(ValidationError):
        BridgeConfiguration(api_key="sk-test", max_reconnect_attempts=0)
