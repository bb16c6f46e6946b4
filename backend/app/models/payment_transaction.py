# backend/app/models/payment_transaction.py
import enum

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel
from .types import CaseInsensitiveEnum


class TransactionKind(str, enum.Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    REFUND = "refund"


class TransactionStatus(str, enum.Enum):
    INITIALIZED = "initialized"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentTransaction(BaseModel):
    """Maps a gateway reference to the booking it pays for.

    ``status`` doubles as the idempotency guard for webhook deliveries: an
    event is applied only while the row is still INITIALIZED.
    """

    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    reference = Column(String, unique=True, nullable=False, index=True)
    provider = Column(String, nullable=False)
    kind = Column(
        CaseInsensitiveEnum(TransactionKind, name="transactionkind", native_enum=False, length=16),
        nullable=False,
    )
    status = Column(
        CaseInsensitiveEnum(TransactionStatus, name="transactionstatus", native_enum=False, length=16),
        nullable=False,
        default=TransactionStatus.INITIALIZED,
    )
    amount = Column(Numeric(10, 2), nullable=False)
    amount_captured = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False)
    authorization_url = Column(String, nullable=True)
    client_secret = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    # Refund rows point at the charge they reverse
    parent_reference = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    booking = relationship("Booking")
