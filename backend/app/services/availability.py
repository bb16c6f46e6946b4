"""Bookable slot computation for a provider, service and date."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_availability, crud_booking
from ..utils import redis_cache
from ..utils.errors import NotFound, PolicyViolation, SlotUnavailable
from .conflicts import Interval, buffer_minutes_for, conflicting_booking, is_clear

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time


def _working_windows(templates: Sequence[models.ProviderAvailability], day: date) -> List[Interval]:
    windows = []
    for row in templates:
        start = datetime.combine(day, row.start_time)
        end = datetime.combine(day, row.end_time)
        # Same-day windows only
        if end > start:
            windows.append((start, end))
    return sorted(windows)


def _blocked_ranges(time_off: Sequence[models.ProviderTimeOff], day: date) -> Optional[List[Interval]]:
    """Partial-day exclusions for ``day``; None when the whole day is off."""
    blocked = []
    for row in time_off:
        if row.all_day or row.start_time is None or row.end_time is None:
            return None
        blocked.append((datetime.combine(day, row.start_time), datetime.combine(day, row.end_time)))
    return blocked


def _fits_schedule(
    start: datetime,
    footprint_end: datetime,
    windows: Sequence[Interval],
    blocked: Sequence[Interval],
) -> bool:
    if not any(w_start <= start and footprint_end <= w_end for w_start, w_end in windows):
        return False
    return is_clear(blocked, start, footprint_end)


def validate_service(provider: models.ProviderProfile, service: Optional[models.Service]) -> models.Service:
    if service is None or service.provider_id != provider.id:
        raise NotFound("Service not found", {"service_id": "not found for this provider"})
    if not service.active:
        raise PolicyViolation("Service is not bookable", {"service_id": "inactive"})
    if not service.duration_minutes or service.duration_minutes <= 0:
        raise PolicyViolation("Service duration must be positive", {"duration_minutes": "must be > 0"})
    return service


def _load(db: Session, provider_id: int, service_id: int):
    provider = crud_availability.get_provider(db, provider_id)
    if provider is None:
        raise NotFound("Provider not found", {"provider_id": "not found"})
    service = validate_service(provider, crud_availability.get_service(db, service_id))
    return provider, service


def _candidate_slots(
    db: Session,
    provider: models.ProviderProfile,
    service: models.Service,
    day: date,
    granularity: int,
) -> List[TimeSlot]:
    """Every grid start that fits the schedule and conflicts with nothing."""
    windows = _working_windows(crud_availability.get_day_templates(db, provider.id, day), day)
    if not windows:
        return []
    blocked = _blocked_ranges(crud_availability.get_time_off_on(db, provider.id, day), day)
    if blocked is None:
        return []
    existing = crud_booking.booking.get_occupying_bookings(db, provider.id, day)
    duration = timedelta(minutes=service.duration_minutes)
    footprint = duration + timedelta(minutes=buffer_minutes_for(provider, service))
    step = timedelta(minutes=granularity)

    slots: List[TimeSlot] = []
    seen = set()
    for w_start, w_end in windows:
        cursor = w_start
        while cursor + footprint <= w_end:
            if (
                cursor not in seen
                and _fits_schedule(cursor, cursor + footprint, windows, blocked)
                and conflicting_booking(existing, cursor, cursor + duration) is None
            ):
                seen.add(cursor)
                slots.append(TimeSlot(start=cursor.time(), end=(cursor + duration).time()))
            cursor += step
    slots.sort(key=lambda s: s.start)
    return slots


def compute_available_slots(
    db: Session,
    provider_id: int,
    service_id: int,
    day: date,
    now: Optional[datetime] = None,
    use_cache: bool = False,
) -> List[TimeSlot]:
    """Return bookable slots for ``day`` in ascending start order.

    An empty list means closed or fully booked. The minimum-notice filter
    is applied after the cache so cached lists never go stale with time.
    The advance-booking horizon is checked by callers.
    """
    provider, service = _load(db, provider_id, service_id)
    now = now or datetime.utcnow()

    slots: Optional[List[TimeSlot]] = None
    if use_cache:
        cached = redis_cache.get_cached_availability(provider.id, service.id, day)
        if cached is not None:
            slots = [TimeSlot(time.fromisoformat(s), time.fromisoformat(e)) for s, e in cached]
    if slots is None:
        slots = _candidate_slots(db, provider, service, day, settings.SLOT_GRANULARITY_MINUTES)
        if use_cache:
            redis_cache.cache_availability(
                [[s.start.isoformat(), s.end.isoformat()] for s in slots],
                provider.id,
                service.id,
                day,
            )

    earliest = now + timedelta(hours=provider.min_advance_hours or 0)
    return [s for s in slots if datetime.combine(day, s.start) >= earliest]


def check_booking_horizon(provider: models.ProviderProfile, day: date, now: datetime) -> None:
    horizon = now.date() + timedelta(days=provider.advance_booking_days or 0)
    if day > horizon:
        raise PolicyViolation(
            "Date is beyond the provider's booking window",
            {"date": f"must be on or before {horizon.isoformat()}"},
        )


def ensure_slot_bookable(
    db: Session,
    provider: models.ProviderProfile,
    service: models.Service,
    day: date,
    start_time: time,
    now: datetime,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Authoritative write-time check, using the same rules as the slot listing."""
    validate_service(provider, service)
    start = datetime.combine(day, start_time)
    if start < now:
        raise PolicyViolation("Appointment must be in the future", {"time": "in the past"})
    check_booking_horizon(provider, day, now)
    if start < now + timedelta(hours=provider.min_advance_hours or 0):
        raise PolicyViolation(
            "Appointment is inside the provider's minimum notice",
            {"time": f"book at least {provider.min_advance_hours} hours ahead"},
        )

    duration = timedelta(minutes=service.duration_minutes)
    footprint_end = start + duration + timedelta(minutes=buffer_minutes_for(provider, service))
    windows = _working_windows(crud_availability.get_day_templates(db, provider.id, day), day)
    blocked = _blocked_ranges(crud_availability.get_time_off_on(db, provider.id, day), day)
    if blocked is None or not _fits_schedule(start, footprint_end, windows, blocked):
        raise SlotUnavailable("Provider is not available at this time", {"time": "outside working hours"})

    existing = crud_booking.booking.get_occupying_bookings(
        db, provider.id, day, exclude_booking_id=exclude_booking_id
    )
    clash = conflicting_booking(existing, start, start + duration)
    if clash is not None:
        logger.info(
            "Slot %s %s for provider %s conflicts with booking %s",
            day, start_time, provider.id, clash.id,
        )
        raise SlotUnavailable("Selected time slot is no longer available", {"time": "already booked"})
