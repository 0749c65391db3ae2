"""
Registry of active realtime call sessions.

The registry maps a call identifier to the audio bridge serving that call. It is
injected wherever sessions are looked up, so tests can substitute their own
instance. All methods are synchronous and therefore atomic with respect to the
event loop; nothing is persisted, and a restarted process starts empty.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from app.config.constants import LOGGER_NAME
from app.exceptions import DuplicateSessionError

if TYPE_CHECKING:
    from app.bot.audio_bridge import AudioBridge

logger = logging.getLogger(LOGGER_NAME)


class CallSessionRegistry:
    """
    Tracks the audio bridge of every live realtime call.

    At most one bridge exists per call identifier. The registry only references
    bridges for lookup; each bridge owns its own state and removes itself when
    it closes.
    """

    def __init__(self):
        self._sessions: Dict[str, "AudioBridge"] = {}

    def register(self, call_id: str, bridge: "AudioBridge") -> None:
        """
        Register the bridge for a call.

        Raises:
            DuplicateSessionError: A bridge is already registered for this call
        """
        if call_id in self._sessions:
            raise DuplicateSessionError(call_id)
        self._sessions[call_id] = bridge
        logger.info(f"Registered realtime session for call {call_id} ({len(self._sessions)} active)")

    def lookup(self, call_id: Optional[str]) -> Optional["AudioBridge"]:
        """Return the bridge for a call, or None if there is none."""
        if call_id is None:
            return None
        return self._sessions.get(call_id)

    def remove(self, call_id: str) -> None:
        """Forget a call. Removing an unknown call is a no-op."""
        if self._sessions.pop(call_id, None) is not None:
            logger.info(f"Removed realtime session for call {call_id} ({len(self._sessions)} active)")

    def all(self) -> List["AudioBridge"]:
        return list(self._sessions.values())

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def shutdown(self, grace_seconds: float = 0.0) -> None:
        """
        Tear down every live session, e.g. when the process stops.

        Args:
            grace_seconds: How long to let calls finish on their own before
                disconnecting the rest. Zero drops them immediately.
        """
        bridges = self.all()
        if not bridges:
            return
        if grace_seconds > 0:
            logger.info(f"Draining {len(bridges)} realtime session(s) for up to {grace_seconds}s")
            waiters = [asyncio.ensure_future(bridge.wait_closed()) for bridge in bridges]
            _, pending = await asyncio.wait(waiters, timeout=grace_seconds)
            for waiter in pending:
                waiter.cancel()
        remaining = self.all()
        if remaining:
            logger.warning(f"Dropping {len(remaining)} in-flight realtime session(s) on shutdown")
        await asyncio.gather(
            *(bridge.disconnect("process shutdown") for bridge in remaining),
            return_exceptions=True,
        )
