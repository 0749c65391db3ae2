"""Tests for the weather service used by the get_weather tool."""

import httpx
import pytest

import app.services.weather_service as weather_module
from app.services.weather_service import WeatherReport, WeatherService

WTTR_RESPONSE = {
    "current_condition": [
        {
            "temp_C": "18",
            "humidity": "65",
            "windspeedKmph": "12",
            "weatherDesc": [{"value": "Sunny"}],
        }
    ],
    "nearest_area": [{"areaName": [{"value": "Munich"}]}],
}


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(weather_module, "RETRY_DELAY", 0)


def service_with(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WeatherService(client=client, **kwargs)


@pytest.mark.asyncio
async def test_get_weather_success():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=WTTR_RESPONSE)

    report = await service_with(handler).get_weather("München")

    assert report.success
    assert report.source == "api"
    assert report.data.location == "Munich"
    assert report.data.temperature == 18
    assert report.data.humidity == 65
    assert report.data.wind_speed == 12
    assert requests[0].url.params["format"] == "j1"


@pytest.mark.asyncio
async def test_get_weather_is_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=WTTR_RESPONSE)

    service = service_with(handler)
    await service.get_weather("Berlin")
    report = await service.get_weather("berlin")

    assert len(calls) == 1
    assert report.success
    assert report.source == "cache"


@pytest.mark.asyncio
async def test_expired_entries_pruned_on_store():
    service = service_with(lambda request: httpx.Response(200, json=WTTR_RESPONSE), cache_ttl=0)

    await service.get_weather("Berlin")
    await service.get_weather("Paris")
    await service.get_weather("Rome")

    assert list(service._cache) == ["rome"]


@pytest.mark.asyncio
async def test_get_weather_retries_then_falls_back():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    report = await service_with(handler).get_weather("Berlin")

    assert len(calls) == weather_module.MAX_RETRIES
    assert not report.success
    assert report.source == "fallback"


@pytest.mark.asyncio
async def test_get_weather_invalid_payload():
    report = await service_with(lambda request: httpx.Response(200, json={"unexpected": True})).get_weather("Berlin")
    assert not report.success


@pytest.mark.asyncio
async def test_get_weather_disabled():
    def handler(request):
        raise AssertionError("no request expected")

    report = await service_with(handler, enabled=False).get_weather("Berlin")
    assert not report.success
    assert report.error == "Weather service is disabled"


@pytest.mark.asyncio
async def test_get_weather_rejects_invalid_location():
    report = await WeatherService().get_weather("!")
    assert not report.success
    assert report.error == "Invalid location format"


def test_sanitize_location():
    assert WeatherService.sanitize_location("  Frankfurt am Main!  ") == "Frankfurt am Main"
    assert WeatherService.sanitize_location("<script>") == "script"
    assert WeatherService.sanitize_location("") is None
    assert WeatherService.sanitize_location(None) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("What's the weather in London?", True),
        ("Wie ist das Wetter in Berlin?", True),
        ("Is it going to rain tomorrow", True),
        ("I want to order a pizza", False),
        ("Call me at the Grader office", False),
    ],
)
def test_is_weather_query(text, expected):
    assert WeatherService.is_weather_query(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("What's the weather in London?", "London"),
        ("Wie ist das Wetter in Berlin?", "Berlin"),
        ("temperature for New York", "New York"),
        ("how cold is it", None),
    ],
)
def test_extract_location(text, expected):
    assert WeatherService.extract_location(text) == expected


def test_format_for_speech_german():
    report = WeatherService.parse_wttr_response(WTTR_RESPONSE, "München")
    speech = WeatherService.format_for_speech(report, "de")
    assert speech == (
        "In Munich sind es aktuell 18 Grad Celsius, sunny. Die Luftfeuchtigkeit liegt bei 65 Prozent."
    )


def test_format_for_speech_failure():
    speech = WeatherService.format_for_speech(WeatherReport(success=False, error="down"), "en")
    assert speech.startswith("I'm sorry")
