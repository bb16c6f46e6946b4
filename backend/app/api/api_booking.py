import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..crud import crud_booking
from ..database import get_db
from ..services.booking_lifecycle import BookingStateMachine
from ..utils.errors import NotFound, PermissionDenied
from .dependencies import (
    Principal,
    get_current_client,
    get_current_principal,
    get_current_provider,
    get_state_machine,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


@router.post("/bookings", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    booking_in: schemas.BookingCreate,
    current_client: Principal = Depends(get_current_client),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    """Hold a slot for the client. The booking waits for its deposit."""
    return machine.create(
        client_id=current_client.user_id,
        provider_id=booking_in.provider_id,
        service_id=booking_in.service_id,
        appointment_date=booking_in.appointment_date,
        appointment_time=booking_in.appointment_time,
        special_requests=booking_in.special_requests,
        assigned_team_member_id=booking_in.assigned_team_member_id,
    )


@router.get("/bookings/{booking_id}", response_model=schemas.BookingResponse)
def read_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    booking = crud_booking.booking.get_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking not found", {"booking_id": "not found"})
    if principal.user_id not in (booking.client_id, booking.provider.user_id):
        raise PermissionDenied("You are not a party to this booking", {"booking_id": "forbidden"})
    return booking


@router.post("/bookings/{booking_id}/confirm", response_model=schemas.BookingResponse)
def confirm_booking(
    booking_id: int,
    current_provider: Principal = Depends(get_current_provider),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.confirm(booking_id, current_provider.user_id)


@router.post("/bookings/{booking_id}/cancel", response_model=schemas.BookingResponse)
def cancel_booking(
    booking_id: int,
    body: schemas.BookingCancel,
    principal: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.cancel(booking_id, principal.user_id, principal.role, body.reason)


@router.post("/bookings/{booking_id}/complete", response_model=schemas.BookingResponse)
def complete_booking(
    booking_id: int,
    body: schemas.BookingComplete,
    current_provider: Principal = Depends(get_current_provider),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.complete(booking_id, current_provider.user_id, tip_amount=body.tip_amount)


@router.post("/bookings/{booking_id}/no-show", response_model=schemas.BookingResponse)
def mark_client_no_show(
    booking_id: int,
    current_provider: Principal = Depends(get_current_provider),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.mark_no_show(booking_id, current_provider.user_id, models.PartyRole.PROVIDER)


@router.post("/bookings/{booking_id}/provider-no-show", response_model=schemas.BookingResponse)
def report_provider_no_show(
    booking_id: int,
    current_client: Principal = Depends(get_current_client),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.report_provider_no_show(booking_id, current_client.user_id)


@router.post(
    "/bookings/{booking_id}/reschedule-requests",
    response_model=schemas.RescheduleRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
def request_reschedule(
    booking_id: int,
    body: schemas.RescheduleRequestCreate,
    principal: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.request_reschedule(
        booking_id,
        principal.user_id,
        principal.role,
        body.new_date,
        body.new_time,
        reason=body.reason,
    )


@router.post(
    "/reschedule-requests/{request_id}/respond",
    response_model=schemas.RescheduleRequestResponse,
)
def respond_to_reschedule(
    request_id: int,
    body: schemas.RescheduleResponse,
    principal: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return machine.respond_to_reschedule(request_id, principal.user_id, body.approve)
