from .booking import (
    BookingCreate,
    BookingCancel,
    BookingComplete,
    BookingResponse,
    RescheduleRequestCreate,
    RescheduleResponse,
    RescheduleRequestResponse,
)
from .availability import TimeSlotResponse, AvailabilityResponse
from .payment import PaymentCreate, PaymentInitResponse, WebhookAck
