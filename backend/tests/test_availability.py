from datetime import date, datetime, time, timedelta

import pytest

from app import models
from app.services import availability
from app.services.availability import compute_available_slots, ensure_slot_bookable
from app.services.conflicts import has_conflict
from app.utils import redis_cache
from app.utils.errors import NotFound, PolicyViolation, SlotUnavailable


def _starts(slots):
    return [s.start for s in slots]


def test_existing_booking_blocks_buffer_expanded_range(db, clock, monday, make_provider, make_service, make_booking):
    provider = make_provider()
    service = make_service(provider, duration=60, buffer=15)
    make_booking(provider, service, time(10, 0), status=models.BookingStatus.CONFIRMED,
                 payment=models.PaymentStatus.DEPOSIT_PAID)

    starts = _starts(compute_available_slots(db, provider.id, service.id, monday, now=clock()))

    assert time(9, 0) in starts
    assert time(11, 15) in starts
    for blocked in (time(9, 15), time(9, 30), time(10, 0), time(10, 45), time(11, 0)):
        assert blocked not in starts


def test_slots_fit_footprint_inside_window(db, clock, monday, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider, duration=60, buffer=15)

    slots = compute_available_slots(db, provider.id, service.id, monday, now=clock())

    assert slots[0].start == time(9, 0)
    assert slots[0].end == time(10, 0)
    # 15:45 + 60 + 15 buffer ends exactly at 17:00
    assert slots[-1].start == time(15, 45)
    assert _starts(slots) == sorted(_starts(slots))


def test_provider_buffer_adds_to_service_buffer(db, clock, monday, make_provider, make_service):
    provider = make_provider(booking_buffer_minutes=30)
    service = make_service(provider, duration=60, buffer=15)

    slots = compute_available_slots(db, provider.id, service.id, monday, now=clock())

    assert slots[-1].start == time(15, 15)


def test_closed_day_returns_empty(db, clock, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider)
    tuesday = date(2026, 3, 10)

    assert compute_available_slots(db, provider.id, service.id, tuesday, now=clock()) == []


def test_full_day_time_off_returns_empty(db, clock, monday, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider)
    db.add(models.ProviderTimeOff(
        provider_id=provider.id,
        start_date=monday - timedelta(days=1),
        end_date=monday + timedelta(days=2),
        all_day=True,
    ))
    db.commit()

    assert compute_available_slots(db, provider.id, service.id, monday, now=clock()) == []


def test_partial_time_off_is_subtracted(db, clock, monday, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider, duration=60, buffer=15)
    db.add(models.ProviderTimeOff(
        provider_id=provider.id,
        start_date=monday,
        end_date=monday,
        all_day=False,
        start_time=time(12, 0),
        end_time=time(13, 0),
        reason="Lunch",
    ))
    db.commit()

    starts = _starts(compute_available_slots(db, provider.id, service.id, monday, now=clock()))

    assert time(10, 45) in starts
    assert time(13, 0) in starts
    for blocked in (time(11, 0), time(11, 45), time(12, 0), time(12, 45)):
        assert blocked not in starts


def test_cancelled_bookings_do_not_occupy(db, clock, monday, make_provider, make_service, make_booking):
    provider = make_provider()
    service = make_service(provider)
    make_booking(provider, service, time(10, 0), status=models.BookingStatus.CANCELLED_BY_CLIENT)
    make_booking(provider, service, time(12, 0), status=models.BookingStatus.NO_SHOW)

    starts = _starts(compute_available_slots(db, provider.id, service.id, monday, now=clock()))

    assert time(10, 0) in starts
    assert time(12, 0) in starts


def test_min_advance_hours_filters_early_slots(db, monday, make_provider, make_service):
    provider = make_provider(min_advance_hours=24)
    service = make_service(provider)
    now = datetime.combine(monday - timedelta(days=1), time(12, 0))

    starts = _starts(compute_available_slots(db, provider.id, service.id, monday, now=now))

    assert starts[0] == time(12, 0)


def test_inactive_service_is_rejected(db, clock, monday, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider, active=False)

    with pytest.raises(PolicyViolation):
        compute_available_slots(db, provider.id, service.id, monday, now=clock())


def test_service_of_another_provider_is_not_found(db, clock, monday, make_provider, make_service):
    provider = make_provider(user_id=100)
    other = make_provider(user_id=200)
    service = make_service(other)

    with pytest.raises(NotFound):
        compute_available_slots(db, provider.id, service.id, monday, now=clock())


def test_listing_matches_conflict_detector(db, clock, monday, make_provider, make_service, make_booking):
    provider = make_provider()
    service = make_service(provider, duration=45, buffer=15)
    make_booking(provider, service, time(10, 0), status=models.BookingStatus.CONFIRMED,
                 payment=models.PaymentStatus.DEPOSIT_PAID)
    make_booking(provider, service, time(14, 30))

    listed = set(_starts(compute_available_slots(db, provider.id, service.id, monday, now=clock())))

    cursor = datetime.combine(monday, time(9, 0))
    last = datetime.combine(monday, time(16, 0))
    while cursor <= last:
        end = (cursor + timedelta(minutes=service.duration_minutes)).time()
        free = not has_conflict(db, provider.id, monday, cursor.time(), end)
        assert (cursor.time() in listed) == free, cursor.time()
        if free:
            ensure_slot_bookable(db, provider, service, monday, cursor.time(), clock())
        else:
            with pytest.raises(SlotUnavailable):
                ensure_slot_bookable(db, provider, service, monday, cursor.time(), clock())
        cursor += timedelta(minutes=15)


def test_cached_listing_is_reused_until_invalidated(db, clock, monday, make_provider, make_service, monkeypatch):
    provider = make_provider()
    service = make_service(provider)
    first = compute_available_slots(db, provider.id, service.id, monday, now=clock(), use_cache=True)

    def _boom(*args, **kwargs):
        raise AssertionError("cache miss")

    monkeypatch.setattr(availability, "_candidate_slots", _boom)
    assert compute_available_slots(db, provider.id, service.id, monday, now=clock(), use_cache=True) == first

    assert redis_cache.invalidate_availability_cache(provider.id, monday) == 1
    with pytest.raises(AssertionError):
        compute_available_slots(db, provider.id, service.id, monday, now=clock(), use_cache=True)


def test_ensure_slot_bookable_rejects_policy_breaches(db, clock, monday, make_provider, make_service):
    provider = make_provider(advance_booking_days=3)
    service = make_service(provider)

    with pytest.raises(PolicyViolation):
        ensure_slot_bookable(db, provider, service, monday, time(10, 0), clock())

    with pytest.raises(PolicyViolation):
        ensure_slot_bookable(db, provider, service, clock().date(), time(7, 0), clock())


def test_ensure_slot_bookable_rejects_outside_hours(db, clock, monday, make_provider, make_service):
    provider = make_provider()
    service = make_service(provider, duration=60, buffer=15)

    with pytest.raises(SlotUnavailable):
        ensure_slot_bookable(db, provider, service, monday, time(16, 0), clock())
    with pytest.raises(SlotUnavailable):
        ensure_slot_bookable(db, provider, service, monday, time(8, 30), clock())
