"""
contractor_scheduling/services/events.py

Event emitter: pushes scheduling events to a Redis queue for the
notification consumers.

Queue:
- events:p2p - instant delivery (appointment notifications to specific users)

Emission is fire-and-forget: a Redis failure is logged and never reaches
the booking or lifecycle caller.
"""

import json
import logging
import time

from redis import Redis

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"


class EventEmitter:
    def __init__(self, redis: Redis | None):
        self.redis = redis

    def emit(self, event_type: str, payload: dict) -> None:
        """
        Emit a p2p event.

        Pushed to Redis list `events:p2p` for the consumer loop.
        """
        if self.redis is None:
            return

        event = {
            "type": event_type,
            **payload,
            "ts": int(time.time()),
        }
        try:
            self.redis.rpush(P2P_QUEUE, json.dumps(event, default=str))
            logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")
        except Exception as e:
            logger.error(f"Failed to emit event {event_type}: {e}")
