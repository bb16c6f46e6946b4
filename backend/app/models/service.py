# backend/app/models/service.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    ForeignKey,
    Text,
    Boolean,
)
from sqlalchemy.orm import relationship
from .base import BaseModel
from .types import CaseInsensitiveEnum
import enum


class DepositType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class Service(BaseModel):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(
        Integer,
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String, index=True, nullable=False)
    description = Column(Text, nullable=True)
    # Bookings are priced at price_min; price_max is display-only
    price_min = Column(Numeric(10, 2), nullable=False)
    price_max = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)

    deposit_required = Column(Boolean, nullable=False, default=True)
    deposit_type = Column(
        CaseInsensitiveEnum(DepositType, name="deposittype", native_enum=False, length=16),
        nullable=False,
        default=DepositType.PERCENTAGE,
    )
    # Percentage (0-100) or a fixed amount depending on deposit_type
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    provider = relationship("ProviderProfile", back_populates="services")
    bookings = relationship("Booking", back_populates="service")
