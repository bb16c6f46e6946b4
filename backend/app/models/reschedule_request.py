# backend/app/models/reschedule_request.py
import enum

from sqlalchemy import Column, Integer, Date, Time, DateTime, ForeignKey, String, Index, text
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CaseInsensitiveEnum


class RescheduleStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class PartyRole(str, enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    # Background jobs and payment events
    SYSTEM = "system"


class RescheduleRequest(BaseModel):
    __tablename__ = "reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    requested_by_id = Column(Integer, nullable=False)
    requested_by_role = Column(
        CaseInsensitiveEnum(PartyRole, name="partyrole", native_enum=False, length=16),
        nullable=False,
    )
    new_date = Column(Date, nullable=False)
    new_time = Column(Time, nullable=False)
    reason = Column(String, nullable=True)
    status = Column(
        CaseInsensitiveEnum(RescheduleStatus, name="reschedulestatus", native_enum=False, length=16),
        nullable=False,
        default=RescheduleStatus.PENDING,
        index=True,
    )
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    # Successor booking created on approval
    new_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)

    booking = relationship(
        "Booking", back_populates="reschedule_requests", foreign_keys=[booking_id]
    )
    new_booking = relationship("Booking", foreign_keys=[new_booking_id])

    __table_args__ = (
        # At most one open request per booking
        Index(
            "uq_reschedule_requests_open",
            "booking_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
