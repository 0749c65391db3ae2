"""
Exception hierarchy for the call bridge.

Bridge failures are contained per call session; these types let callers tell
handshake problems apart from transport loss and from programming errors such
as double registration.
"""


class BridgeError(Exception):
    """Base class for all errors raised by the audio bridge."""


class HandshakeTimeoutError(BridgeError):
    """The realtime engine did not acknowledge the session in time."""


class AuthenticationError(BridgeError):
    """The realtime engine rejected the configured credentials."""


class EngineTransportError(BridgeError):
    """The realtime engine connection failed or closed unexpectedly."""


class HealthCheckFailedError(BridgeError):
    """The periodic health check found the engine connection unhealthy."""


class AlreadyAttachedError(BridgeError):
    """A telephony peer is already attached to this bridge."""


class DuplicateSessionError(Exception):
    """A session is already registered for this call identifier."""

    def __init__(self, call_id: str):
        super().__init__(f"A session is already registered for call {call_id}")
        self.call_id = call_id
