# backend/app/models/booking.py

from sqlalchemy import (
    Column,
    Integer,
    Date,
    Time,
    DateTime,
    Numeric,
    ForeignKey,
    String,
    Text,
    Boolean,
    Index,
    text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .booking_status import BookingStatus, PaymentStatus
from .types import CaseInsensitiveEnum


class Booking(BaseModel):
    __tablename__ = "bookings"

    id          = Column(Integer, primary_key=True, index=True)
    client_id   = Column(Integer, nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("provider_profiles.id"), nullable=False, index=True)
    service_id  = Column(Integer, ForeignKey("services.id"), nullable=False)
    assigned_team_member_id = Column(Integer, nullable=True)
    rescheduled_from_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)

    appointment_date     = Column(Date, nullable=False, index=True)
    appointment_time     = Column(Time, nullable=False)
    # start + service duration + buffer; the slot is held until this time
    appointment_end_time = Column(Time, nullable=False)
    duration_minutes     = Column(Integer, nullable=False)
    buffer_minutes       = Column(Integer, nullable=False, default=0)

    service_price   = Column(Numeric(10, 2), nullable=False)
    deposit_amount  = Column(Numeric(10, 2), nullable=False, default=0)
    service_fee     = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount    = Column(Numeric(10, 2), nullable=False)
    tip_amount      = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid     = Column(Numeric(10, 2), nullable=False, default=0)
    refunded_amount = Column(Numeric(10, 2), nullable=False, default=0)
    # Owed back to the client but not covered by any recorded charge
    refund_shortfall = Column(Numeric(10, 2), nullable=False, default=0)
    currency        = Column(String(3), nullable=False, default="USD")

    booking_status = Column(
        CaseInsensitiveEnum(BookingStatus, name="bookingstatus", native_enum=False, length=32),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status = Column(
        CaseInsensitiveEnum(PaymentStatus, name="paymentstatus", native_enum=False, length=32),
        default=PaymentStatus.AWAITING_DEPOSIT,
        nullable=False,
        index=True,
    )
    payment_reference = Column(String, nullable=True)
    paid_at           = Column(DateTime, nullable=True)
    balance_paid_at   = Column(DateTime, nullable=True)

    special_requests    = Column(Text, nullable=True)
    cancelled_at        = Column(DateTime, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancellation_fee    = Column(Numeric(10, 2), nullable=True)
    reschedule_count    = Column(Integer, nullable=False, default=0)
    completed_at        = Column(DateTime, nullable=True)
    review_deadline     = Column(DateTime, nullable=True)

    # Each flag flips false -> true once and guards its automated send.
    payment_reminder_sent    = Column(Boolean, nullable=False, default=False)
    payment_reminder_sent_at = Column(DateTime, nullable=True)
    # 24h appointment reminder: client and provider are tracked apart
    reminder_24h_sent        = Column(Boolean, nullable=False, default=False)
    provider_reminder_24h_sent = Column(Boolean, nullable=False, default=False)
    review_reminder_sent     = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False, default=1)

    provider = relationship("ProviderProfile", back_populates="bookings")
    service  = relationship("Service", back_populates="bookings")
    review   = relationship("Review", back_populates="booking", uselist=False)
    rescheduled_from = relationship("Booking", remote_side=[id], uselist=False)
    reschedule_requests = relationship(
        "RescheduleRequest",
        back_populates="booking",
        foreign_keys="RescheduleRequest.booking_id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Backstop against two concurrent writers taking the same start slot.
        Index(
            "uq_bookings_active_slot",
            "provider_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=text("booking_status IN ('pending', 'confirmed')"),
            postgresql_where=text("booking_status IN ('pending', 'confirmed')"),
        ),
        Index("ix_bookings_provider_date", "provider_id", "appointment_date"),
    )
