import enum
from typing import Mapping, FrozenSet


class BookingStatus(str, enum.Enum):
    """Lifecycle of the appointment itself."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED_BY_CLIENT = "cancelled_by_client"
    CANCELLED_BY_PROVIDER = "cancelled_by_provider"
    NO_SHOW = "no_show"
    # Marks the superseded record when a reschedule creates a successor
    RESCHEDULED = "rescheduled"


class PaymentStatus(str, enum.Enum):
    """Money state, tracked independently of ``BookingStatus``."""
    AWAITING_DEPOSIT = "awaiting_deposit"
    DEPOSIT_PAID = "deposit_paid"
    FULLY_PAID = "fully_paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# Statuses that hold a slot on the provider's calendar.
OCCUPYING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)

CANCELLED_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.CANCELLED_BY_CLIENT, BookingStatus.CANCELLED_BY_PROVIDER}
)

BOOKING_TRANSITIONS: Mapping[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED_BY_CLIENT,
            BookingStatus.CANCELLED_BY_PROVIDER,
        }
    ),
    BookingStatus.CONFIRMED: frozenset(
        {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_CLIENT,
            BookingStatus.CANCELLED_BY_PROVIDER,
            BookingStatus.NO_SHOW,
            BookingStatus.RESCHEDULED,
        }
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED_BY_CLIENT: frozenset(),
    BookingStatus.CANCELLED_BY_PROVIDER: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
    BookingStatus.RESCHEDULED: frozenset(),
}

PAYMENT_TRANSITIONS: Mapping[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.AWAITING_DEPOSIT: frozenset(
        {PaymentStatus.DEPOSIT_PAID, PaymentStatus.FULLY_PAID}
    ),
    PaymentStatus.DEPOSIT_PAID: frozenset(
        {
            PaymentStatus.FULLY_PAID,
            PaymentStatus.REFUNDED,
            PaymentStatus.PARTIALLY_REFUNDED,
        }
    ),
    PaymentStatus.FULLY_PAID: frozenset(
        {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}
    ),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Payment states in which at least the deposit has been captured.
DEPOSIT_SECURED: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.DEPOSIT_PAID, PaymentStatus.FULLY_PAID}
)


def can_transition_booking(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS.get(current, frozenset())
