from sqlalchemy import Column, Integer, String, Boolean, JSON
import enum

from .base import BaseModel
from .types import CaseInsensitiveEnum


class NotificationType(str, enum.Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_NO_SHOW = "booking_no_show"
    DEPOSIT_RECEIVED = "deposit_received"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REMINDER = "payment_reminder"
    BALANCE_PAID = "balance_paid"
    REFUND_ISSUED = "refund_issued"
    APPOINTMENT_REMINDER = "appointment_reminder"
    REVIEW_REQUEST = "review_request"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULE_APPROVED = "reschedule_approved"
    RESCHEDULE_DENIED = "reschedule_denied"
    RESCHEDULE_EXPIRED = "reschedule_expired"


class Notification(BaseModel):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(
        CaseInsensitiveEnum(NotificationType, name="notificationtype", native_enum=False, length=32),
        nullable=False,
    )
    message = Column(String, nullable=False)
    link = Column(String, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
