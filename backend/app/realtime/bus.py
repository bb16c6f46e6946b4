from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import redis

from app.utils.json import dumps
from app.utils.redis_cache import get_redis_client

logger = logging.getLogger(__name__)

# Feature gate to enable/disable the realtime bus without code changes.
_WS_BUS_ENABLED = os.getenv("WS_BUS_ENABLED", "0").lower() in {"1", "true", "yes"}


def bus_enabled() -> bool:
    return _WS_BUS_ENABLED


def publish_topic(topic: str, envelope: dict[str, Any] | str) -> None:
    """Publish an envelope to ws-topic:<topic> (JSON string or dict).

    Safe to call even when the bus is disabled; becomes a no-op.
    """
    if not bus_enabled():
        return
    if isinstance(envelope, str):
        data = envelope
    else:
        env = dict(envelope)
        env.setdefault("v", 1)
        env.setdefault("topic", topic)
        data = dumps(env)
    try:
        get_redis_client().publish(f"ws-topic:{topic}", data)
    except redis.exceptions.RedisError as exc:
        # Best effort only
        logger.debug("Realtime publish to %s failed: %s", topic, exc)


class Broadcaster(Protocol):
    def emit(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        ...


class RedisBroadcaster:
    """Push UI events to a user's topic on the Redis bus."""

    def emit(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        publish_topic(f"user:{int(user_id)}", {"type": event_name, "payload": payload})


class NullBroadcaster:
    def emit(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        return None
