from datetime import date, datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..crud import crud_availability
from ..database import get_db
from ..services import availability
from ..utils.errors import NotFound
from .dependencies import get_clock

router = APIRouter(tags=["availability"])


@router.get(
    "/providers/{provider_id}/availability",
    response_model=schemas.AvailabilityResponse,
)
def read_availability(
    provider_id: int,
    service_id: int = Query(...),
    day: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Bookable start times for one service on one day.

    Advisory only: the slot is re-checked when the booking is created.
    """
    provider = crud_availability.get_provider(db, provider_id)
    if provider is None:
        raise NotFound("Provider not found", {"provider_id": "not found"})
    now = clock()
    availability.check_booking_horizon(provider, day, now)
    slots = availability.compute_available_slots(
        db, provider_id, service_id, day, now=now, use_cache=True
    )
    return schemas.AvailabilityResponse(
        provider_id=provider_id,
        service_id=service_id,
        date=day,
        slots=[schemas.TimeSlotResponse(start=s.start, end=s.end) for s in slots],
    )
