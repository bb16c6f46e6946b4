# backend/app/models/availability.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    Time,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class ProviderAvailability(BaseModel):
    """Recurring weekly working hours. ``day_of_week`` is 0=Monday .. 6=Sunday."""

    __tablename__ = "provider_availability"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(
        Integer, ForeignKey("provider_profiles.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    provider = relationship("ProviderProfile", back_populates="availability")

    __table_args__ = (
        Index("ix_provider_availability_provider_day", "provider_id", "day_of_week"),
    )


class ProviderTimeOff(BaseModel):
    """Date-range exclusion. Partial days carry ``start_time``/``end_time``."""

    __tablename__ = "provider_time_off"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(
        Integer, ForeignKey("provider_profiles.id", ondelete="CASCADE"), nullable=False
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    all_day = Column(Boolean, nullable=False, default=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)

    provider = relationship("ProviderProfile", back_populates="time_off")

    __table_args__ = (
        Index("ix_provider_time_off_provider_dates", "provider_id", "start_date", "end_date"),
    )
