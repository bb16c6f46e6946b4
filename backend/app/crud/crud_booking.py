from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List, Optional, Iterable
from datetime import date, datetime, timedelta

from .. import models
from ..models.booking_status import BookingStatus, PaymentStatus, OCCUPYING_STATUSES


def appointment_start(booking: models.Booking) -> datetime:
    return datetime.combine(booking.appointment_date, booking.appointment_time)


def appointment_end(booking: models.Booking) -> datetime:
    """End of the service itself, without the trailing buffer."""
    return appointment_start(booking) + timedelta(minutes=booking.duration_minutes)


class CRUDBooking:
    def get_booking(self, db: Session, booking_id: int) -> Optional[models.Booking]:
        return db.query(models.Booking).filter(models.Booking.id == booking_id).first()

    def get_booking_for_update(self, db: Session, booking_id: int) -> Optional[models.Booking]:
        """Row-locked read; the lock is a no-op on SQLite, the version check still applies."""
        return (
            db.query(models.Booking)
            .filter(models.Booking.id == booking_id)
            .with_for_update()
            .first()
        )

    def get_occupying_bookings(
        self,
        db: Session,
        provider_id: int,
        day: date,
        exclude_booking_id: Optional[int] = None,
    ) -> List[models.Booking]:
        """PENDING/CONFIRMED bookings holding time on ``day``."""
        query = db.query(models.Booking).filter(
            models.Booking.provider_id == provider_id,
            models.Booking.appointment_date == day,
            models.Booking.booking_status.in_(list(OCCUPYING_STATUSES)),
        )
        if exclude_booking_id is not None:
            query = query.filter(models.Booking.id != exclude_booking_id)
        return query.order_by(models.Booking.appointment_time.asc()).all()

    # ─── Reconciliation selectors ─────────────────────────────────────────
    # Each returns ids only; job workers reload and re-check every row.

    def ids_awaiting_payment_reminder(
        self, db: Session, now: datetime, min_age: timedelta, max_age: timedelta
    ) -> List[int]:
        rows = (
            db.query(models.Booking.id)
            .filter(
                models.Booking.booking_status == BookingStatus.PENDING,
                models.Booking.payment_status == PaymentStatus.AWAITING_DEPOSIT,
                models.Booking.payment_reminder_sent.is_(False),
                models.Booking.created_at <= now - min_age,
                models.Booking.created_at > now - max_age,
            )
            .order_by(models.Booking.id.asc())
            .all()
        )
        return [r[0] for r in rows]

    def ids_unpaid_past_deadline(self, db: Session, now: datetime, max_age: timedelta) -> List[int]:
        rows = (
            db.query(models.Booking.id)
            .filter(
                models.Booking.booking_status == BookingStatus.PENDING,
                models.Booking.payment_status == PaymentStatus.AWAITING_DEPOSIT,
                models.Booking.created_at <= now - max_age,
            )
            .order_by(models.Booking.id.asc())
            .all()
        )
        return [r[0] for r in rows]

    def ids_unconfirmed_past_deadline(self, db: Session, now: datetime, max_age: timedelta) -> List[int]:
        rows = (
            db.query(models.Booking.id)
            .filter(
                models.Booking.booking_status == BookingStatus.PENDING,
                models.Booking.payment_status == PaymentStatus.DEPOSIT_PAID,
                models.Booking.created_at <= now - max_age,
            )
            .order_by(models.Booking.id.asc())
            .all()
        )
        return [r[0] for r in rows]

    def ids_starting_between(
        self,
        db: Session,
        start: datetime,
        end: datetime,
        statuses: Iterable[BookingStatus],
        reminder_pending: bool = False,
    ) -> List[int]:
        """Bookings whose appointment start falls in ``[start, end)``.

        With ``reminder_pending`` only bookings where either party still
        lacks the 24h reminder are returned.
        """
        query = db.query(models.Booking).filter(
            models.Booking.appointment_date >= start.date(),
            models.Booking.appointment_date <= end.date(),
            models.Booking.booking_status.in_(list(statuses)),
        )
        if reminder_pending:
            query = query.filter(
                or_(
                    models.Booking.reminder_24h_sent.is_(False),
                    models.Booking.provider_reminder_24h_sent.is_(False),
                )
            )
        return [
            b.id
            for b in query.order_by(models.Booking.id.asc()).all()
            if start <= appointment_start(b) < end
        ]

    def ids_started_before(self, db: Session, cutoff: datetime) -> List[int]:
        """CONFIRMED bookings whose start is at or before ``cutoff``."""
        candidates = (
            db.query(models.Booking)
            .filter(
                models.Booking.booking_status == BookingStatus.CONFIRMED,
                models.Booking.appointment_date <= cutoff.date(),
            )
            .order_by(models.Booking.id.asc())
            .all()
        )
        return [b.id for b in candidates if appointment_start(b) <= cutoff]

    def get_refund_shortfalls(self, db: Session, limit: int = 100) -> List[models.Booking]:
        """Bookings whose refund could not be fully matched to a captured charge."""
        return (
            db.query(models.Booking)
            .filter(models.Booking.refund_shortfall > 0)
            .order_by(models.Booking.cancelled_at.desc(), models.Booking.id.desc())
            .limit(limit)
            .all()
        )

    def ids_awaiting_review_reminder(
        self, db: Session, now: datetime, min_age: timedelta, max_age: timedelta
    ) -> List[int]:
        rows = (
            db.query(models.Booking.id)
            .outerjoin(models.Review, models.Review.booking_id == models.Booking.id)
            .filter(
                models.Booking.booking_status == BookingStatus.COMPLETED,
                models.Booking.review_reminder_sent.is_(False),
                models.Booking.completed_at <= now - min_age,
                models.Booking.completed_at >= now - max_age,
                models.Booking.review_deadline >= now,
                models.Review.id.is_(None),
            )
            .order_by(models.Booking.id.asc())
            .all()
        )
        return [r[0] for r in rows]


booking = CRUDBooking()


# ─── Reschedule requests ──────────────────────────────────────────────────────
def get_reschedule_request(db: Session, request_id: int) -> Optional[models.RescheduleRequest]:
    return (
        db.query(models.RescheduleRequest)
        .filter(models.RescheduleRequest.id == request_id)
        .first()
    )


def get_open_reschedule_request(db: Session, booking_id: int) -> Optional[models.RescheduleRequest]:
    return (
        db.query(models.RescheduleRequest)
        .filter(
            models.RescheduleRequest.booking_id == booking_id,
            models.RescheduleRequest.status == models.RescheduleStatus.PENDING,
        )
        .first()
    )


def ids_expired_reschedule_requests(db: Session, now: datetime) -> List[int]:
    rows = (
        db.query(models.RescheduleRequest.id)
        .filter(
            models.RescheduleRequest.status == models.RescheduleStatus.PENDING,
            models.RescheduleRequest.expires_at <= now,
        )
        .order_by(models.RescheduleRequest.id.asc())
        .all()
    )
    return [r[0] for r in rows]


# ─── Payment transactions ─────────────────────────────────────────────────────
def get_open_transaction(
    db: Session, booking_id: int, kind: models.TransactionKind
) -> Optional[models.PaymentTransaction]:
    return (
        db.query(models.PaymentTransaction)
        .filter(
            models.PaymentTransaction.booking_id == booking_id,
            models.PaymentTransaction.kind == kind,
            models.PaymentTransaction.status == models.TransactionStatus.INITIALIZED,
        )
        .order_by(models.PaymentTransaction.id.desc())
        .first()
    )
