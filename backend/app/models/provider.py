# backend/app/models/provider.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Numeric,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class ProviderProfile(BaseModel):
    """A beauty-service provider and the booking settings that apply to them."""

    __tablename__ = "provider_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, nullable=False, index=True)
    business_name = Column(String, nullable=True)
    region_code = Column(String(8), nullable=False, default="NA")
    currency = Column(String(3), nullable=False, default="USD")

    # When on, a successful deposit confirms the booking without provider action
    instant_booking_enabled = Column(Boolean, nullable=False, default=False)
    advance_booking_days = Column(Integer, nullable=False, default=30)
    min_advance_hours = Column(Integer, nullable=False, default=24)
    # Added on top of each service's own buffer
    booking_buffer_minutes = Column(Integer, nullable=False, default=0)

    # Aggregates maintained by the lifecycle
    completed_bookings_count = Column(Integer, nullable=False, default=0)
    no_show_count = Column(Integer, nullable=False, default=0)
    # Bumped by every booking write to this calendar; the UPDATE is the lock
    calendar_version = Column(Integer, nullable=False, default=0)

    policy = relationship(
        "ProviderPolicy",
        back_populates="provider",
        uselist=False,
        cascade="all, delete-orphan",
    )
    services = relationship("Service", back_populates="provider", cascade="all, delete-orphan")
    availability = relationship(
        "ProviderAvailability", back_populates="provider", cascade="all, delete-orphan"
    )
    time_off = relationship(
        "ProviderTimeOff", back_populates="provider", cascade="all, delete-orphan"
    )
    bookings = relationship("Booking", back_populates="provider")


class ProviderPolicy(BaseModel):
    __tablename__ = "provider_policies"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(
        Integer,
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    cancellation_window_hours = Column(Integer, nullable=False, default=24)
    cancellation_fee_percentage = Column(Numeric(5, 2), nullable=False, default=50)
    reschedule_allowed = Column(Boolean, nullable=False, default=True)
    reschedule_window_hours = Column(Integer, nullable=False, default=24)
    max_reschedules = Column(Integer, nullable=False, default=2)

    provider = relationship("ProviderProfile", back_populates="policy")
