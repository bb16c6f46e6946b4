from .provider import ProviderProfile, ProviderPolicy
from .availability import ProviderAvailability, ProviderTimeOff
from .service import Service, DepositType
from .booking import Booking
from .booking_status import BookingStatus, PaymentStatus
from .reschedule_request import RescheduleRequest, RescheduleStatus, PartyRole
from .payment_transaction import PaymentTransaction, TransactionKind, TransactionStatus
from .review import Review
from .notification import Notification, NotificationType

__all__ = [
    "ProviderProfile",
    "ProviderPolicy",
    "ProviderAvailability",
    "ProviderTimeOff",
    "Service",
    "DepositType",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "RescheduleRequest",
    "RescheduleStatus",
    "PartyRole",
    "PaymentTransaction",
    "TransactionKind",
    "TransactionStatus",
    "Review",
    "Notification",
    "NotificationType",
]
