"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for protocol names and default values so both sides
of the bridge agree on naming.
"""

# Logger name used throughout the application
LOGGER_NAME = "call_bridge"

# Default OpenAI models
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_COMPLETION_MODEL = "gpt-4o-mini"
DEFAULT_VOICE = "alloy"

# Telephony media streams carry 8kHz mu-law, which the engine accepts as-is
AUDIO_FORMAT_G711_ULAW = "g711_ulaw"

# Outbound telephony media-stream events
TELEPHONY_EVENT_MEDIA = "media"
TELEPHONY_EVENT_CLEAR = "clear"
TRACK_INBOUND = "inbound"
TRACK_OUTBOUND = "outbound"

# Realtime engine client events
ENGINE_SESSION_UPDATE = "session.update"
ENGINE_INPUT_AUDIO_APPEND = "input_audio_buffer.append"
ENGINE_CONVERSATION_ITEM_CREATE = "conversation.item.create"
ENGINE_RESPONSE_CREATE = "response.create"

# Realtime engine server events
ENGINE_SESSION_CREATED = "session.created"
ENGINE_SESSION_UPDATED = "session.updated"
ENGINE_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
ENGINE_AUDIO_DELTA = "response.audio.delta"
ENGINE_FUNCTION_CALL_DONE = "response.function_call_arguments.done"
ENGINE_SPEECH_STARTED = "input_audio_buffer.speech_started"
ENGINE_ERROR = "error"

# Call statuses after which a call's resources are released
TERMINAL_CALL_STATUSES = ("completed", "failed", "canceled", "busy", "no-answer")

# User-facing sentences, keyed by working language
APOLOGY_MESSAGES = {
    "de": "Es tut mir leid, dabei ist ein Fehler aufgetreten. Bitte versuchen Sie es später erneut.",
    "en": "I'm sorry, something went wrong. Please try again later.",
}
GOODBYE_MESSAGES = {
    "de": "Vielen Dank für Ihren Anruf. Auf Wiederhören!",
    "en": "Thank you for calling. Goodbye!",
}
GREETING_MESSAGES = {
    "de": "Hallo! Wie kann ich Ihnen heute helfen?",
    "en": "Hello! How can I help you today?",
}
REPROMPT_MESSAGES = {
    "de": "Entschuldigung, das habe ich nicht verstanden. Könnten Sie das wiederholen?",
    "en": "Sorry, I didn't catch that. Could you repeat?",
}

# Speech settings for rendered call-control documents
SPEECH_LOCALES = {"de": "de-DE", "en": "en-US"}
SPEECH_VOICES = {"de": "Polly.Marlene", "en": "Polly.Joanna-Neural"}

DEFAULT_LANGUAGE = "de"


def localized(messages: dict, language: str) -> str:
    """Pick the message for a language, falling back to the default language."""
    return messages.get(language) or messages[DEFAULT_LANGUAGE]
