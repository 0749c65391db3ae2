"""
Call-control documents returned to the telephony provider.

Realtime calls are told to open a media stream to this service; fallback calls
get speech synthesis plus a speech-gathering step that posts the transcript
back to the gather webhook.
"""

from urllib.parse import urlencode

from twilio.twiml.voice_response import Gather, VoiceResponse

from app.config.constants import (
    APOLOGY_MESSAGES,
    DEFAULT_LANGUAGE,
    REPROMPT_MESSAGES,
    SPEECH_LOCALES,
    SPEECH_VOICES,
    localized,
)


def _speech(language: str) -> dict:
    return {
        "voice": localized(SPEECH_VOICES, language),
        "language": localized(SPEECH_LOCALES, language),
    }


def to_websocket_url(base_url: str) -> str:
    """``https://host`` -> ``wss://host``; ``http://host`` -> ``ws://host``."""
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


def media_stream_url(base_url: str, room: str, call_sid: str) -> str:
    query = urlencode({"room": room, "callSid": call_sid})
    return f"{to_websocket_url(base_url)}/media-stream-realtime?{query}"


def render_media_stream(stream_url: str) -> str:
    """Connect the call's audio to a bidirectional media stream."""
    response = VoiceResponse()
    connect = response.connect()
    connect.stream(url=stream_url)
    return str(response)


def render_gather(text: str, action_url: str, language: str = DEFAULT_LANGUAGE) -> str:
    """
    Speak ``text`` and collect the caller's next utterance.

    If the caller stays silent, a re-prompt is spoken and the call is
    redirected to the gather action, which treats it as an empty utterance.
    """
    speech = _speech(language)
    response = VoiceResponse()
    gather = Gather(
        input="speech",
        action=action_url,
        method="POST",
        speech_timeout="auto",
        language=speech["language"],
    )
    gather.say(text, **speech)
    response.append(gather)
    response.say(localized(REPROMPT_MESSAGES, language), **speech)
    response.redirect(action_url, method="POST")
    return str(response)


def render_goodbye(text: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Speak ``text``, then hang up."""
    response = VoiceResponse()
    response.say(text, **_speech(language))
    response.hangup()
    return str(response)


def render_apology(language: str = DEFAULT_LANGUAGE) -> str:
    """The document returned when a webhook could not be served."""
    response = VoiceResponse()
    response.say(localized(APOLOGY_MESSAGES, language), **_speech(language))
    return str(response)
