import logging
import random
import uuid
from datetime import date
from typing import Optional

import redis
import os

from app.core.config import settings
from .json import dumps, loads

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


class _NullRedis:
    """No-op Redis client used when Redis is disabled or unavailable.

    Methods mirror the minimal surface used in this codebase so callers can
    proceed without needing try/except around get_redis_client().
    """

    def get(self, key: str):
        return None

    def set(self, key: str, value: str, nx: bool = False, ex: Optional[int] = None):
        # Without Redis every lock acquisition succeeds
        return True

    def setex(self, key: str, expire: int, value: str):
        return None

    def scan_iter(self, match: Optional[str] = None):
        return iter(())

    def delete(self, *keys: str):
        return 0

    def publish(self, channel: str, message: str):
        return 0

    def close(self):
        return None


def get_redis_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        url = (getattr(settings, "REDIS_URL", "") or "").strip()
        # Allow disabling via empty/none/disabled/false
        if not url or url.lower() in {"none", "disabled", "false", "0"}:
            _redis_client = _NullRedis()  # type: ignore[assignment]
            return _redis_client
        try:
            conn_to = float(os.getenv("REDIS_CONNECT_TIMEOUT", "0.5"))
            read_to = float(os.getenv("REDIS_SOCKET_TIMEOUT", "0.5"))
            _redis_client = redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=conn_to,
                socket_timeout=read_to,
            )
        except (ValueError, redis.exceptions.RedisError) as exc:
            logger.warning("Redis client unavailable, caching disabled: %s", exc)
            _redis_client = _NullRedis()  # type: ignore[assignment]
    return _redis_client


def set_redis_client(client) -> None:  # noqa: ANN001
    """Swap the process-wide client (tests inject fakeredis here)."""
    global _redis_client
    _redis_client = client


AVAILABILITY_KEY_PREFIX = "availability"
JOB_LOCK_KEY_PREFIX = "job-lock"


def _apply_jitter(expire: int) -> int:
    """Return a TTL with a small random jitter to prevent cache stampedes."""
    return expire + random.randint(0, max(1, expire // 10))


# ─── AVAILABILITY CACHE ───────────────────────────────────────────────────────
def _availability_key(provider_id: int, when: date, service_id: Optional[int] = None) -> str:
    svc = "*" if service_id is None else str(service_id)
    return f"{AVAILABILITY_KEY_PREFIX}:{provider_id}:{when.isoformat()}:{svc}"


def get_cached_availability(provider_id: int, service_id: int, when: date) -> list | None:
    client = get_redis_client()
    key = _availability_key(provider_id, when, service_id)
    try:
        data = client.get(key)
    except redis.exceptions.RedisError as exc:
        logger.warning("Redis unavailable: %s", exc)
        return None
    if not data:
        return None
    try:
        return loads(data)
    except ValueError as exc:
        logger.warning("Could not decode availability cache for key %s: %s", key, exc)
        return None


def cache_availability(
    data: list,
    provider_id: int,
    service_id: int,
    when: date,
    expire: int = 300,
) -> None:
    client = get_redis_client()
    key = _availability_key(provider_id, when, service_id)
    try:
        client.setex(key, _apply_jitter(expire), dumps(data))
    except redis.exceptions.RedisError as exc:
        logger.warning("Could not cache availability: %s", exc)


def invalidate_availability_cache(provider_id: int, when: date) -> int:
    """Drop every cached slot list for the provider on ``when``."""
    client = get_redis_client()
    deleted = 0
    try:
        for key in client.scan_iter(match=_availability_key(provider_id, when)):
            deleted += int(client.delete(key) or 0)
    except redis.exceptions.RedisError as exc:
        logger.warning("Could not clear availability cache: %s", exc)
    return deleted


# ─── JOB RUN LOCK ─────────────────────────────────────────────────────────────
def acquire_job_lock(name: str, ttl_seconds: int) -> Optional[str]:
    """Take the run lock for job ``name``. Returns a token, or None if held.

    When Redis itself errors the lock is treated as acquired so a cache
    outage does not stop reconciliation; status guards still prevent
    double transitions.
    """
    client = get_redis_client()
    token = uuid.uuid4().hex
    try:
        ok = client.set(f"{JOB_LOCK_KEY_PREFIX}:{name}", token, nx=True, ex=max(1, int(ttl_seconds)))
    except redis.exceptions.RedisError as exc:
        logger.warning("Job lock unavailable for %s: %s", name, exc)
        return token
    return token if ok else None


def release_job_lock(name: str, token: str) -> None:
    client = get_redis_client()
    key = f"{JOB_LOCK_KEY_PREFIX}:{name}"
    try:
        if client.get(key) == token:
            client.delete(key)
    except redis.exceptions.RedisError as exc:
        logger.warning("Could not release job lock %s: %s", name, exc)


def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
