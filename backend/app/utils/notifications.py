"""Notification delivery for booking lifecycle events.

The lifecycle talks to a ``Notifier`` (``send(event, recipient_id, data)``).
``DatabaseNotifier`` persists an in-app notification in its own session and
pushes it over the realtime bus. Delivery problems never fail the transition
that triggered them: callers go through ``safe_notify``.
"""

import logging
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.orm import Session

from ..models import NotificationType
from ..realtime.bus import Broadcaster, NullBroadcaster

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, event: NotificationType, recipient_id: int, data: dict[str, Any]) -> None:
        ...


def alert_scheduler_failure(exc: Exception) -> None:
    """Emit an error log when a background scheduler run fails."""
    logger.exception("Scheduler run failed: %s", exc)


def format_notification_message(ntype: NotificationType, **kwargs: Any) -> str:
    """Return a human friendly notification message."""
    booking_id = kwargs.get("booking_id")
    when = kwargs.get("appointment")
    if ntype == NotificationType.BOOKING_CREATED:
        return f"New booking #{booking_id} for {when}"
    if ntype == NotificationType.BOOKING_CONFIRMED:
        return f"Booking #{booking_id} confirmed for {when}"
    if ntype == NotificationType.BOOKING_CANCELLED:
        reason = kwargs.get("reason")
        if reason:
            return f"Booking #{booking_id} was cancelled: {reason}"
        return f"Booking #{booking_id} was cancelled"
    if ntype == NotificationType.BOOKING_COMPLETED:
        return f"Booking #{booking_id} is complete. Thanks for visiting!"
    if ntype == NotificationType.BOOKING_NO_SHOW:
        return f"Booking #{booking_id} was marked as a no-show"
    if ntype == NotificationType.DEPOSIT_RECEIVED:
        return f"Deposit received for booking #{booking_id}"
    if ntype == NotificationType.PAYMENT_FAILED:
        return f"Payment for booking #{booking_id} failed"
    if ntype == NotificationType.PAYMENT_REMINDER:
        return f"Complete your deposit to secure booking #{booking_id}"
    if ntype == NotificationType.BALANCE_PAID:
        return f"Balance paid for booking #{booking_id}"
    if ntype == NotificationType.REFUND_ISSUED:
        return f"Refund of {kwargs.get('amount')} issued for booking #{booking_id}"
    if ntype == NotificationType.APPOINTMENT_REMINDER:
        return f"Reminder: your appointment is on {when}"
    if ntype == NotificationType.REVIEW_REQUEST:
        return f"How was your appointment? Review booking #{booking_id}"
    if ntype == NotificationType.RESCHEDULE_REQUESTED:
        return f"Reschedule requested for booking #{booking_id} to {kwargs.get('new_slot')}"
    if ntype == NotificationType.RESCHEDULE_APPROVED:
        return f"Reschedule approved: booking #{booking_id} moved to {kwargs.get('new_slot')}"
    if ntype == NotificationType.RESCHEDULE_DENIED:
        return f"Reschedule for booking #{booking_id} was declined"
    if ntype == NotificationType.RESCHEDULE_EXPIRED:
        return f"Reschedule request for booking #{booking_id} expired"
    return str(ntype.value)


class DatabaseNotifier:
    """Write a ``Notification`` row per send and broadcast it."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        broadcaster: Optional[Broadcaster] = None,
    ):
        self._session_factory = session_factory
        self._broadcaster = broadcaster or NullBroadcaster()

    def send(self, event: NotificationType, recipient_id: int, data: dict[str, Any]) -> None:
        from ..crud import crud_notification

        message = format_notification_message(event, **data)
        link = f"/bookings/{data['booking_id']}" if data.get("booking_id") else "/bookings"
        db = self._session_factory()
        try:
            notif = crud_notification.create_notification(
                db,
                user_id=recipient_id,
                type=event,
                message=message,
                link=link,
                data=data,
            )
            payload = {"id": notif.id, "type": event.value, "message": message, "link": link}
        finally:
            db.close()
        self._broadcaster.emit(recipient_id, "notification", payload)


def safe_notify(
    notifier: Notifier,
    event: NotificationType,
    recipient_id: int,
    data: dict[str, Any],
) -> bool:
    """Send through ``notifier``; log and report False instead of raising."""
    try:
        notifier.send(event, recipient_id, data)
        return True
    except Exception:
        logger.exception("Notification %s to user %s failed", event.value, recipient_id)
        return False
