from pydantic import BaseModel, Field
from typing import Optional, Annotated
from datetime import date, datetime, time
from decimal import Decimal

from ..models.booking_status import BookingStatus, PaymentStatus
from ..models.reschedule_request import PartyRole, RescheduleStatus


# Properties to receive on item creation (from a client)
class BookingCreate(BaseModel):
    provider_id: int
    service_id: int
    appointment_date: date
    appointment_time: time
    special_requests: Optional[str] = Field(default=None, max_length=2000)
    assigned_team_member_id: Optional[int] = None
    # client_id is the authenticated user


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingComplete(BaseModel):
    tip_amount: Optional[Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]] = None


# Properties to return to client
class BookingResponse(BaseModel):
    id: int
    client_id: int
    provider_id: int
    service_id: int
    assigned_team_member_id: Optional[int] = None
    rescheduled_from_booking_id: Optional[int] = None

    appointment_date: date
    appointment_time: time
    appointment_end_time: time
    duration_minutes: int
    buffer_minutes: int

    service_price: Decimal
    deposit_amount: Decimal
    service_fee: Decimal
    total_amount: Decimal
    tip_amount: Decimal
    amount_paid: Decimal
    refunded_amount: Decimal
    refund_shortfall: Decimal = Decimal("0.00")
    currency: str

    booking_status: BookingStatus
    payment_status: PaymentStatus
    special_requests: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[Decimal] = None
    reschedule_count: int = 0
    completed_at: Optional[datetime] = None
    review_deadline: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }


class RescheduleRequestCreate(BaseModel):
    new_date: date
    new_time: time
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleResponse(BaseModel):
    approve: bool


class RescheduleRequestResponse(BaseModel):
    id: int
    booking_id: int
    requested_by_id: int
    requested_by_role: PartyRole
    new_date: date
    new_time: time
    reason: Optional[str] = None
    status: RescheduleStatus
    expires_at: datetime
    responded_at: Optional[datetime] = None
    new_booking_id: Optional[int] = None

    model_config = {
        "from_attributes": True
    }
