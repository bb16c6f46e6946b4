from datetime import date

import redis
from fastapi.testclient import TestClient

from app.main import app
from app.utils import redis_cache

DAY = date(2026, 3, 9)


class DummyRedis:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class BrokenRedis(DummyRedis):
    def _fail(self, *args, **kwargs):
        raise redis.exceptions.ConnectionError("down")

    get = set = setex = delete = scan_iter = _fail


def test_availability_cache_is_scoped_per_service(fake_redis):
    redis_cache.cache_availability([{"start": "09:00"}], 1, 10, DAY)
    redis_cache.cache_availability([{"start": "11:00"}], 1, 11, DAY)

    assert redis_cache.get_cached_availability(1, 10, DAY) == [{"start": "09:00"}]
    assert redis_cache.get_cached_availability(1, 11, DAY) == [{"start": "11:00"}]
    assert redis_cache.get_cached_availability(2, 10, DAY) is None
    assert 0 < fake_redis.ttl("availability:1:2026-03-09:10") <= 330


def test_invalidation_clears_every_service_for_the_day(fake_redis):
    redis_cache.cache_availability([], 1, 10, DAY)
    redis_cache.cache_availability([], 1, 11, DAY)
    redis_cache.cache_availability([], 1, 10, date(2026, 3, 10))

    assert redis_cache.invalidate_availability_cache(1, DAY) == 2
    assert redis_cache.get_cached_availability(1, 10, date(2026, 3, 10)) == []


def test_corrupt_cache_entry_is_a_miss(fake_redis):
    fake_redis.set("availability:1:2026-03-09:10", "{not json")
    assert redis_cache.get_cached_availability(1, 10, DAY) is None


def test_job_lock_is_exclusive_until_released(fake_redis):
    token = redis_cache.acquire_job_lock("auto-cancel-unpaid", 60)
    assert token
    assert redis_cache.acquire_job_lock("auto-cancel-unpaid", 60) is None

    redis_cache.release_job_lock("auto-cancel-unpaid", "not-the-owner")
    assert redis_cache.acquire_job_lock("auto-cancel-unpaid", 60) is None

    redis_cache.release_job_lock("auto-cancel-unpaid", token)
    assert redis_cache.acquire_job_lock("auto-cancel-unpaid", 60)


def test_redis_outage_degrades_gracefully():
    redis_cache.set_redis_client(BrokenRedis())

    assert redis_cache.get_cached_availability(1, 10, DAY) is None
    redis_cache.cache_availability([], 1, 10, DAY)
    assert redis_cache.invalidate_availability_cache(1, DAY) == 0
    assert redis_cache.acquire_job_lock("payment-reminders", 60)


def test_disabled_redis_uses_null_client(monkeypatch):
    redis_cache.set_redis_client(None)
    monkeypatch.setattr(redis_cache.settings, "REDIS_URL", "disabled")

    client = redis_cache.get_redis_client()

    assert isinstance(client, redis_cache._NullRedis)
    assert redis_cache.get_cached_availability(1, 10, DAY) is None
    assert redis_cache.acquire_job_lock("payment-reminders", 60)


def test_close_redis_client(monkeypatch):
    dummy = DummyRedis()
    monkeypatch.setattr(redis_cache, "_redis_client", dummy)
    redis_cache.close_redis_client()
    assert dummy.closed
    assert redis_cache._redis_client is None


def test_shutdown_event_closes_client(monkeypatch):
    dummy = DummyRedis()
    monkeypatch.setattr(redis_cache, "_redis_client", dummy)

    with TestClient(app):
        pass

    assert dummy.closed
    assert redis_cache._redis_client is None
