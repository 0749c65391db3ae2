"""Tests for the call-control documents returned to the telephony provider."""

import pytest

from app.config.constants import APOLOGY_MESSAGES, REPROMPT_MESSAGES
from app.services.call_control import (
    media_stream_url,
    render_apology,
    render_gather,
    render_goodbye,
    render_media_stream,
    to_websocket_url,
)


@pytest.mark.parametrize(
    "base_url, expected",
    [
        ("https://bridge.example.com", "wss://bridge.example.com"),
        ("http://localhost:8000/", "ws://localhost:8000"),
        ("wss://already.example.com", "wss://already.example.com"),
    ],
)
def test_to_websocket_url(base_url, expected):
    assert to_websocket_url(base_url) == expected


def test_media_stream_url():
    url = media_stream_url("https://bridge.example.com", "realtime-call-abc", "CA123")
    assert url == "wss://bridge.example.com/media-stream-realtime?room=realtime-call-abc&callSid=CA123"


def test_render_media_stream():
    xml = render_media_stream("wss://bridge.example.com/media-stream-realtime?room=r&callSid=CA1")
    assert "<Connect><Stream" in xml
    assert 'url="wss://bridge.example.com/media-stream-realtime?room=r&amp;callSid=CA1"' in xml


def test_render_gather_german():
    xml = render_gather("Hallo!", "https://bridge.example.com/twilio-webhook-fallback/gather", "de")
    assert "<Gather" in xml
    assert 'input="speech"' in xml
    assert 'action="https://bridge.example.com/twilio-webhook-fallback/gather"' in xml
    assert 'language="de-DE"' in xml
    assert 'voice="Polly.Marlene"' in xml
    assert "Hallo!" in xml
    assert "<Redirect" in xml


def test_render_gather_english_reprompt():
    xml = render_gather("Hi", "https://x/gather", "en")
    assert REPROMPT_MESSAGES["en"] in xml
    assert 'language="en-US"' in xml


def test_render_goodbye_hangs_up():
    xml = render_goodbye("Bye now", "en")
    assert "Bye now" in xml
    assert "<Hangup" in xml


def test_render_apology_unknown_language_uses_german():
    xml = render_apology("fr")
    assert APOLOGY_MESSAGES["de"] in xml
