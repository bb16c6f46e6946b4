from sqlalchemy import Column, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship
from .base import BaseModel

class Review(BaseModel):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    booking_id  = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    provider_id = Column(Integer, ForeignKey("provider_profiles.id", ondelete="CASCADE"), nullable=False)
    client_id   = Column(Integer, nullable=False)

    rating      = Column(Integer, nullable=False)
    comment     = Column(Text, nullable=True)

    # Each review is attached to exactly one booking
    booking = relationship("Booking", back_populates="review")
