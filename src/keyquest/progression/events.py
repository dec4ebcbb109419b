"""Best-effort Redis pub/sub notifications for progression events."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

STREAK_CHANNEL = "pubsub:streak_update"
LEVEL_UP_CHANNEL = "pubsub:level_up"
COIN_BALANCE_CHANNEL = "pubsub:coin_balance"


async def publish_event(redis: object | None, channel: str, payload: dict[str, Any]) -> bool:
    """Publish a JSON payload. Returns False when Redis is absent or publishing failed."""
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
        return False
    return True
