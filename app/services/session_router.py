"""
Realtime rollout routing.

Decides per inbound call whether it is bridged to the realtime engine or served
by the turn-based fallback. The decision is a pure function of the call
identifier, the feature flag and the rollout percentage: the identifier is
hashed (MD5, first 32 bits) into one of 100 buckets, and buckets below the
percentage go realtime.

The hash is not salted, so changing the percentage can move a given call
identifier between paths; the rollout is directional, not sticky per call.
"""

import hashlib
import logging
from typing import Optional

from app.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

BUCKETS = 100


def rollout_bucket(call_id: str) -> int:
    """Map a call identifier onto a stable bucket in [0, 100)."""
    digest = hashlib.md5(call_id.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % BUCKETS


def should_use_realtime(call_id: Optional[str], enabled: bool, percentage: int) -> bool:
    """
    Decide whether a call should use the realtime bridge.

    Args:
        call_id: Provider-assigned call identifier; a missing identifier always
            falls back
        enabled: Realtime feature flag
        percentage: Rollout percentage in [0, 100]

    Returns:
        True for the realtime path, False for the fallback path
    """
    if not enabled:
        logger.info(f"Realtime disabled for call {call_id} - using fallback")
        return False
    if percentage <= 0:
        logger.info(f"Realtime percentage is 0 for call {call_id} - using fallback")
        return False
    if not call_id:
        logger.warning("Call without identifier - using fallback")
        return False

    use_realtime = rollout_bucket(call_id) < percentage
    logger.info(
        f"Realtime routing for call {call_id}: {'REALTIME' if use_realtime else 'FALLBACK'} "
        f"({percentage}% rollout)"
    )
    return use_realtime
