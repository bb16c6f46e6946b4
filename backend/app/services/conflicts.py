"""Overlap predicate shared by availability listing and booking writes.

An existing booking holds ``[start, start + duration + buffer)``. A candidate
is ``[start, start + duration)``; it may start right when the previous
booking's buffer ends, and its own trailing buffer is checked when it is
itself the existing booking.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from .. import models
from ..crud import crud_booking

Interval = Tuple[datetime, datetime]


def buffer_minutes_for(provider: models.ProviderProfile, service: models.Service) -> int:
    return int(service.buffer_minutes or 0) + int(provider.booking_buffer_minutes or 0)


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open interval overlap."""
    return s1 < e2 and s2 < e1


def occupied_interval(booking: models.Booking) -> Interval:
    start = crud_booking.appointment_start(booking)
    held = int(booking.duration_minutes) + int(booking.buffer_minutes or 0)
    return start, start + timedelta(minutes=held)


def conflicting_booking(
    existing: Iterable[models.Booking],
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> Optional[models.Booking]:
    """Return the first booking in ``existing`` whose held interval overlaps."""
    for other in existing:
        if exclude_booking_id is not None and other.id == exclude_booking_id:
            continue
        o_start, o_end = occupied_interval(other)
        if overlaps(start, end, o_start, o_end):
            return other
    return None


def find_conflict(
    db: Session,
    provider_id: int,
    day: date,
    start_time: time,
    end_time: time,
    exclude_booking_id: Optional[int] = None,
) -> Optional[models.Booking]:
    existing = crud_booking.booking.get_occupying_bookings(
        db, provider_id, day, exclude_booking_id=exclude_booking_id
    )
    return conflicting_booking(
        existing,
        datetime.combine(day, start_time),
        datetime.combine(day, end_time),
    )


def has_conflict(
    db: Session,
    provider_id: int,
    day: date,
    start_time: time,
    end_time: time,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """True when ``[start_time, end_time)`` on ``day`` collides with a held slot."""
    return (
        find_conflict(db, provider_id, day, start_time, end_time, exclude_booking_id)
        is not None
    )


def is_clear(intervals: Sequence[Interval], start: datetime, end: datetime) -> bool:
    """True when ``[start, end)`` touches none of ``intervals``."""
    return not any(overlaps(start, end, s, e) for s, e in intervals)
