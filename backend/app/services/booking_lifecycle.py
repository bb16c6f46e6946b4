"""Booking state machine.

``BookingStateMachine`` owns every status change of a booking. It is bound to
one SQLAlchemy session and receives its collaborators (notifier, payment
gateway, broadcaster, clock) explicitly so tests can swap them out.

Each public operation validates, mutates, commits and only then notifies, so
a failed commit never produces a notification and a failed notification
never undoes a committed transition.
"""

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..core.config import Settings, settings as default_settings
from ..crud import crud_availability, crud_booking
from ..models import NotificationType, PartyRole
from ..models.booking_status import (
    BookingStatus,
    PaymentStatus,
    CANCELLED_STATUSES,
    DEPOSIT_SECURED,
    can_transition_booking,
    can_transition_payment,
)
from ..realtime.bus import Broadcaster, NullBroadcaster
from ..utils import redis_cache
from ..utils.errors import (
    BookingError,
    ExternalDependencyFailure,
    InvalidTransition,
    NotFound,
    PaymentRequired,
    PermissionDenied,
    PolicyViolation,
    SlotUnavailable,
)
from ..utils.notifications import Notifier, safe_notify
from . import availability, pricing
from .conflicts import buffer_minutes_for
from .payment_gateway import GatewayError, PaymentGateway

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = "Deposit payment not received within 24 hours"
AUTO_DECLINE_REASON = "Auto-declined - Provider did not confirm within 48 hours"
PAYMENT_FAILED_REASON = "Payment failed"
PROVIDER_NO_SHOW_REASON = "Provider no-show"


class BookingStateMachine:
    def __init__(
        self,
        db: Session,
        notifier: Notifier,
        gateway: PaymentGateway,
        broadcaster: Optional[Broadcaster] = None,
        now: Optional[Callable[[], datetime]] = None,
        cfg: Settings = default_settings,
    ):
        self.db = db
        self.notifier = notifier
        self.gateway = gateway
        self.broadcaster = broadcaster or NullBroadcaster()
        self.now = now or datetime.utcnow
        self.cfg = cfg

    # ─── helpers ──────────────────────────────────────────────────────────
    def get(self, booking_id: int) -> models.Booking:
        booking = crud_booking.booking.get_booking_for_update(self.db, booking_id)
        if booking is None:
            raise NotFound("Booking not found", {"booking_id": "not found"})
        return booking

    def _set_status(self, booking: models.Booking, target: BookingStatus) -> None:
        current = BookingStatus(booking.booking_status)
        if not can_transition_booking(current, target):
            raise InvalidTransition(
                f"Cannot move booking from {current.value} to {target.value}",
                {"booking_status": current.value},
            )
        booking.booking_status = target

    def _set_payment(self, booking: models.Booking, target: PaymentStatus) -> None:
        current = PaymentStatus(booking.payment_status)
        if not can_transition_payment(current, target):
            raise InvalidTransition(
                f"Cannot move payment from {current.value} to {target.value}",
                {"payment_status": current.value},
            )
        booking.payment_status = target

    def commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise InvalidTransition(
                "Booking was modified by another request, reload and retry",
                {"version": "stale"},
            )

    def _provider_user_id(self, booking: models.Booking) -> int:
        return booking.provider.user_id

    def check_party(self, booking: models.Booking, actor_id: int, role: PartyRole) -> None:
        if role == PartyRole.SYSTEM:
            return
        if role == PartyRole.CLIENT and booking.client_id == actor_id:
            return
        if role == PartyRole.PROVIDER and self._provider_user_id(booking) == actor_id:
            return
        raise PermissionDenied("You are not a party to this booking", {"booking_id": "forbidden"})

    def _payload(self, booking: models.Booking, **extra: Any) -> dict[str, Any]:
        data = {
            "booking_id": booking.id,
            "appointment": f"{booking.appointment_date.isoformat()} {booking.appointment_time.strftime('%H:%M')}",
            "booking_status": BookingStatus(booking.booking_status).value,
            "payment_status": PaymentStatus(booking.payment_status).value,
        }
        data.update(extra)
        return data

    def notify(self, event: NotificationType, recipient_id: int, booking: models.Booking, **extra: Any) -> None:
        data = self._payload(booking, **extra)
        safe_notify(self.notifier, event, recipient_id, data)
        self.broadcaster.emit(recipient_id, "booking_updated", data)

    def _invalidate(self, booking: models.Booking) -> None:
        redis_cache.invalidate_availability_cache(booking.provider_id, booking.appointment_date)

    def _starts_at(self, booking: models.Booking) -> datetime:
        return crud_booking.appointment_start(booking)

    # ─── refunds ──────────────────────────────────────────────────────────
    def _issue_refund(self, booking: models.Booking, amount: Decimal) -> Decimal:
        """Refund ``amount`` across the booking's captured charges.

        Adds REFUND transactions to the session and updates the booking's
        refunded amount and payment status. Raises ExternalDependencyFailure
        when the gateway rejects a refund; the caller rolls back.
        """
        amount = pricing.money(amount)
        if amount <= 0:
            return pricing.ZERO
        charges = (
            self.db.query(models.PaymentTransaction)
            .filter(
                models.PaymentTransaction.booking_id.in_(self._booking_chain_ids(booking)),
                models.PaymentTransaction.kind.in_(
                    [models.TransactionKind.DEPOSIT, models.TransactionKind.BALANCE]
                ),
                models.PaymentTransaction.status == models.TransactionStatus.SUCCEEDED,
            )
            .order_by(models.PaymentTransaction.id.asc())
            .all()
        )
        remaining = amount
        for charge in charges:
            if remaining <= 0:
                break
            already = sum(
                (
                    pricing.money(r.amount)
                    for r in self.db.query(models.PaymentTransaction).filter(
                        models.PaymentTransaction.kind == models.TransactionKind.REFUND,
                        models.PaymentTransaction.parent_reference == charge.reference,
                    )
                ),
                pricing.ZERO,
            )
            available = pricing.money(charge.amount_captured or charge.amount) - already
            portion = min(remaining, available)
            if portion <= 0:
                continue
            try:
                handle = self.gateway.refund(charge.reference, portion)
            except GatewayError as exc:
                raise ExternalDependencyFailure(
                    "Refund could not be issued, try again shortly",
                    {"payment": str(exc)},
                ) from exc
            self.db.add(
                models.PaymentTransaction(
                    booking_id=booking.id,
                    reference=handle.reference,
                    provider=charge.provider,
                    kind=models.TransactionKind.REFUND,
                    status=models.TransactionStatus.SUCCEEDED,
                    amount=portion,
                    currency=charge.currency,
                    parent_reference=charge.reference,
                    completed_at=self.now(),
                )
            )
            remaining -= portion
        refunded = amount - remaining
        if remaining > 0:
            booking.refund_shortfall = pricing.money(booking.refund_shortfall) + remaining
            logger.error(
                "Booking id=%s refund short by %s: no captured charge left, needs manual refund",
                booking.id,
                remaining,
            )
        booking.refunded_amount = pricing.money(booking.refunded_amount) + refunded
        if refunded > 0:
            if booking.refunded_amount >= pricing.money(booking.amount_paid):
                target = PaymentStatus.REFUNDED
            else:
                target = PaymentStatus.PARTIALLY_REFUNDED
            if PaymentStatus(booking.payment_status) != target:
                self._set_payment(booking, target)
        return refunded

    def _booking_chain_ids(self, booking: models.Booking) -> list[int]:
        """The booking plus every record it was rescheduled from."""
        ids = [booking.id]
        current = booking
        while current.rescheduled_from_booking_id:
            ids.append(current.rescheduled_from_booking_id)
            current = current.rescheduled_from
            if current is None:
                break
        return ids

    # ─── creation ─────────────────────────────────────────────────────────
    def create(
        self,
        client_id: int,
        provider_id: int,
        service_id: int,
        appointment_date: date,
        appointment_time: time,
        special_requests: Optional[str] = None,
        assigned_team_member_id: Optional[int] = None,
    ) -> models.Booking:
        """Validate the slot and persist a PENDING / AWAITING_DEPOSIT booking."""
        now = self.now()
        # The calendar lock is held from here until commit or rollback
        provider = crud_availability.lock_provider(self.db, provider_id)
        try:
            if provider is None:
                raise NotFound("Provider not found", {"provider_id": "not found"})
            if provider.user_id == client_id:
                raise PolicyViolation("Providers cannot book themselves", {"client_id": "is the provider"})
            service = availability.validate_service(
                provider, crud_availability.get_service(self.db, service_id)
            )
            availability.ensure_slot_bookable(
                self.db, provider, service, appointment_date, appointment_time, now
            )
            price = pricing.price_booking(provider, service, self.cfg)
        except BookingError:
            self.db.rollback()
            raise

        buffer = buffer_minutes_for(provider, service)
        start = datetime.combine(appointment_date, appointment_time)
        booking = models.Booking(
            client_id=client_id,
            provider_id=provider.id,
            service_id=service.id,
            assigned_team_member_id=assigned_team_member_id,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            appointment_end_time=(start + timedelta(minutes=service.duration_minutes + buffer)).time(),
            duration_minutes=service.duration_minutes,
            buffer_minutes=buffer,
            service_price=price.service_price,
            deposit_amount=price.deposit_amount,
            service_fee=price.service_fee,
            total_amount=price.total_amount,
            tip_amount=pricing.ZERO,
            amount_paid=pricing.ZERO,
            refunded_amount=pricing.ZERO,
            currency=price.currency,
            booking_status=BookingStatus.PENDING,
            payment_status=PaymentStatus.AWAITING_DEPOSIT,
            special_requests=special_requests,
            created_at=now,
            updated_at=now,
        )
        self.db.add(booking)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Concurrent booking won slot %s %s for provider %s",
                appointment_date, appointment_time, provider_id,
            )
            raise SlotUnavailable("Selected time slot is no longer available", {"time": "already booked"})
        self.db.refresh(booking)
        self._invalidate(booking)
        self.notify(NotificationType.BOOKING_CREATED, provider.user_id, booking)
        return booking

    # ─── payment events ───────────────────────────────────────────────────
    def on_deposit_paid(
        self,
        booking_id: int,
        amount: Optional[Decimal] = None,
        reference: Optional[str] = None,
    ) -> bool:
        """Apply a captured deposit. Returns False for duplicate deliveries."""
        booking = self.get(booking_id)
        if PaymentStatus(booking.payment_status) != PaymentStatus.AWAITING_DEPOSIT:
            logger.info("Booking id=%s deposit event ignored, payment already %s", booking.id, booking.payment_status)
            return False

        captured = pricing.money(amount if amount is not None else booking.total_amount)
        status = BookingStatus(booking.booking_status)
        self._set_payment(booking, PaymentStatus.DEPOSIT_PAID)
        booking.amount_paid = captured
        booking.paid_at = self.now()
        if reference:
            booking.payment_reference = reference

        if status in CANCELLED_STATUSES:
            # Money arrived for a booking that no longer exists
            self.db.flush()
            refunded = self._issue_refund(booking, captured)
            self.commit()
            if refunded > 0:
                self.notify(NotificationType.REFUND_ISSUED, booking.client_id, booking, amount=str(refunded))
            return True
        if status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Deposit cannot be applied to a {status.value} booking",
                {"booking_status": status.value},
            )

        confirmed = bool(booking.provider.instant_booking_enabled)
        if confirmed:
            self._set_status(booking, BookingStatus.CONFIRMED)
        self.commit()
        if confirmed:
            self.notify(NotificationType.BOOKING_CONFIRMED, booking.client_id, booking)
        else:
            self.notify(NotificationType.DEPOSIT_RECEIVED, booking.client_id, booking)
        self.notify(NotificationType.DEPOSIT_RECEIVED, self._provider_user_id(booking), booking)
        return True

    def on_balance_paid(self, booking_id: int, amount: Decimal, reference: Optional[str] = None) -> bool:
        booking = self.get(booking_id)
        if PaymentStatus(booking.payment_status) == PaymentStatus.FULLY_PAID:
            return False
        self._set_payment(booking, PaymentStatus.FULLY_PAID)
        booking.amount_paid = pricing.money(booking.amount_paid) + pricing.money(amount)
        booking.balance_paid_at = self.now()
        self.commit()
        self.notify(NotificationType.BALANCE_PAID, booking.client_id, booking)
        self.notify(NotificationType.BALANCE_PAID, self._provider_user_id(booking), booking)
        return True

    def on_payment_failed(self, booking_id: int, reason: Optional[str] = None) -> bool:
        """Cancel an unpaid hold after its deposit charge failed."""
        booking = self.get(booking_id)
        if (
            BookingStatus(booking.booking_status) != BookingStatus.PENDING
            or PaymentStatus(booking.payment_status) != PaymentStatus.AWAITING_DEPOSIT
        ):
            logger.info("Booking id=%s payment failure ignored in status %s", booking.id, booking.booking_status)
            return False
        self._set_status(booking, BookingStatus.CANCELLED_BY_CLIENT)
        booking.cancelled_at = self.now()
        booking.cancellation_reason = PAYMENT_FAILED_REASON
        booking.cancellation_fee = pricing.ZERO
        self.commit()
        self._invalidate(booking)
        self.notify(NotificationType.PAYMENT_FAILED, booking.client_id, booking, reason=reason)
        return True

    # ─── provider / client actions ────────────────────────────────────────
    def confirm(self, booking_id: int, provider_user_id: int) -> models.Booking:
        booking = self.get(booking_id)
        self.check_party(booking, provider_user_id, PartyRole.PROVIDER)
        if BookingStatus(booking.booking_status) != BookingStatus.PENDING:
            raise InvalidTransition(
                "Only pending bookings can be confirmed",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        if PaymentStatus(booking.payment_status) not in DEPOSIT_SECURED:
            raise PaymentRequired("Deposit has not been paid", {"payment_status": PaymentStatus(booking.payment_status).value})
        self._set_status(booking, BookingStatus.CONFIRMED)
        self.commit()
        self.notify(NotificationType.BOOKING_CONFIRMED, booking.client_id, booking)
        return booking

    def _cancel(
        self,
        booking: models.Booking,
        target: BookingStatus,
        reason: Optional[str],
        fee: Decimal,
    ) -> Decimal:
        self._set_status(booking, target)
        booking.cancelled_at = self.now()
        booking.cancellation_reason = reason
        booking.cancellation_fee = pricing.money(fee)
        self.db.flush()
        refund = pricing.refundable(booking, fee)
        try:
            refunded = self._issue_refund(booking, refund)
        except ExternalDependencyFailure:
            self.db.rollback()
            raise
        self.commit()
        self._invalidate(booking)
        return refunded

    def cancel(
        self,
        booking_id: int,
        actor_id: int,
        role: PartyRole,
        reason: Optional[str] = None,
    ) -> models.Booking:
        """Cancel as client or provider.

        A client cancelling inside the provider's window pays the policy
        percentage of the deposit; a provider cancellation is always free.
        """
        booking = self.get(booking_id)
        if role == PartyRole.SYSTEM:
            raise PermissionDenied("Cancellation needs a client or provider", {"role": role.value})
        self.check_party(booking, actor_id, role)
        fee = pricing.ZERO
        if role == PartyRole.CLIENT:
            target = BookingStatus.CANCELLED_BY_CLIENT
            policy = crud_availability.get_policy(self.db, booking.provider)
            hours_before = (self._starts_at(booking) - self.now()).total_seconds() / 3600
            fee = pricing.cancellation_fee(booking, policy, hours_before)
        else:
            target = BookingStatus.CANCELLED_BY_PROVIDER
        refunded = self._cancel(booking, target, reason, fee)

        counterparty = self._provider_user_id(booking) if role == PartyRole.CLIENT else booking.client_id
        self.notify(NotificationType.BOOKING_CANCELLED, counterparty, booking, reason=reason)
        if refunded > 0:
            self.notify(NotificationType.REFUND_ISSUED, booking.client_id, booking, amount=str(refunded))
        return booking

    def complete(
        self,
        booking_id: int,
        provider_user_id: int,
        tip_amount: Optional[Decimal] = None,
    ) -> models.Booking:
        booking = self.get(booking_id)
        self.check_party(booking, provider_user_id, PartyRole.PROVIDER)
        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED:
            raise InvalidTransition(
                "Only confirmed bookings can be completed",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        now = self.now()
        if now < crud_booking.appointment_end(booking):
            raise InvalidTransition("Appointment has not ended yet", {"appointment": "in progress"})
        if PaymentStatus(booking.payment_status) not in DEPOSIT_SECURED:
            raise PaymentRequired("Deposit has not been paid", {"payment_status": PaymentStatus(booking.payment_status).value})

        self._set_status(booking, BookingStatus.COMPLETED)
        booking.completed_at = now
        booking.review_deadline = now + timedelta(days=self.cfg.REVIEW_WINDOW_DAYS)
        if tip_amount is not None:
            booking.tip_amount = pricing.money(tip_amount)
        booking.provider.completed_bookings_count = (booking.provider.completed_bookings_count or 0) + 1
        self.commit()
        self.notify(NotificationType.BOOKING_COMPLETED, booking.client_id, booking)
        return booking

    def _grace_elapsed(self, booking: models.Booking) -> bool:
        grace = timedelta(minutes=self.cfg.NO_SHOW_GRACE_PERIOD_MINUTES)
        return self.now() >= self._starts_at(booking) + grace

    def mark_no_show(
        self,
        booking_id: int,
        actor_id: Optional[int] = None,
        role: PartyRole = PartyRole.SYSTEM,
    ) -> models.Booking:
        """Client did not turn up. The deposit is kept by the provider."""
        booking = self.get(booking_id)
        if role != PartyRole.SYSTEM:
            if role != PartyRole.PROVIDER:
                raise PermissionDenied("Only the provider can report a client no-show", {"role": role.value})
            self.check_party(booking, actor_id, role)
        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED:
            raise InvalidTransition(
                "Only confirmed bookings can be marked as no-show",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        if not self._grace_elapsed(booking):
            raise PolicyViolation(
                "The grace period after the appointment start has not elapsed",
                {"appointment": "grace period running"},
            )
        self._set_status(booking, BookingStatus.NO_SHOW)
        booking.provider.no_show_count = (booking.provider.no_show_count or 0) + 1
        self.commit()
        self._invalidate(booking)
        self.notify(NotificationType.BOOKING_NO_SHOW, booking.client_id, booking)
        self.notify(NotificationType.BOOKING_NO_SHOW, self._provider_user_id(booking), booking)
        return booking

    def report_provider_no_show(self, booking_id: int, client_id: int) -> models.Booking:
        """Client reports that the provider never showed. Refunds everything."""
        booking = self.get(booking_id)
        self.check_party(booking, client_id, PartyRole.CLIENT)
        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED:
            raise InvalidTransition(
                "Only confirmed bookings can be reported",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        if not self._grace_elapsed(booking):
            raise PolicyViolation(
                "The grace period after the appointment start has not elapsed",
                {"appointment": "grace period running"},
            )
        refunded = self._cancel(booking, BookingStatus.CANCELLED_BY_PROVIDER, PROVIDER_NO_SHOW_REASON, pricing.ZERO)
        self.notify(NotificationType.BOOKING_CANCELLED, self._provider_user_id(booking), booking, reason=PROVIDER_NO_SHOW_REASON)
        if refunded > 0:
            self.notify(NotificationType.REFUND_ISSUED, booking.client_id, booking, amount=str(refunded))
        return booking

    # ─── rescheduling ─────────────────────────────────────────────────────
    def request_reschedule(
        self,
        booking_id: int,
        actor_id: int,
        role: PartyRole,
        new_date: date,
        new_time: time,
        reason: Optional[str] = None,
    ) -> models.RescheduleRequest:
        booking = self.get(booking_id)
        if role == PartyRole.SYSTEM:
            raise PermissionDenied("Reschedules need a client or provider", {"role": role.value})
        self.check_party(booking, actor_id, role)
        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED:
            raise InvalidTransition(
                "Only confirmed bookings can be rescheduled",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        now = self.now()
        policy = crud_availability.get_policy(self.db, booking.provider)
        if not policy.reschedule_allowed:
            raise PolicyViolation("This provider does not allow rescheduling", {"booking_id": "reschedule disabled"})
        if (booking.reschedule_count or 0) >= policy.max_reschedules:
            raise PolicyViolation(
                "Maximum number of reschedules reached",
                {"reschedule_count": f"limit is {policy.max_reschedules}"},
            )
        starts_at = self._starts_at(booking)
        if role == PartyRole.CLIENT and starts_at - now < timedelta(hours=policy.reschedule_window_hours or 0):
            raise PolicyViolation(
                "Too close to the appointment to reschedule",
                {"appointment": f"reschedule at least {policy.reschedule_window_hours} hours ahead"},
            )

        existing = crud_booking.get_open_reschedule_request(self.db, booking.id)
        if existing is not None:
            if existing.expires_at <= now:
                existing.status = models.RescheduleStatus.EXPIRED
                existing.responded_at = now
                self.db.flush()
            else:
                raise PolicyViolation(
                    "A reschedule request is already open for this booking",
                    {"reschedule_request_id": str(existing.id)},
                )

        availability.ensure_slot_bookable(
            self.db,
            booking.provider,
            booking.service,
            new_date,
            new_time,
            now,
            exclude_booking_id=booking.id,
        )
        request = models.RescheduleRequest(
            booking_id=booking.id,
            requested_by_id=actor_id,
            requested_by_role=role,
            new_date=new_date,
            new_time=new_time,
            reason=reason,
            status=models.RescheduleStatus.PENDING,
            expires_at=min(now + timedelta(hours=self.cfg.RESCHEDULE_REQUEST_TTL_HOURS), starts_at),
        )
        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise PolicyViolation(
                "A reschedule request is already open for this booking",
                {"booking_id": str(booking_id)},
            )
        self.db.refresh(request)
        counterparty = self._provider_user_id(booking) if role == PartyRole.CLIENT else booking.client_id
        self.notify(
            NotificationType.RESCHEDULE_REQUESTED,
            counterparty,
            booking,
            reschedule_request_id=request.id,
            new_slot=f"{new_date.isoformat()} {new_time.strftime('%H:%M')}",
        )
        return request

    def _get_request(self, request_id: int) -> models.RescheduleRequest:
        request = crud_booking.get_reschedule_request(self.db, request_id)
        if request is None:
            raise NotFound("Reschedule request not found", {"request_id": "not found"})
        return request

    def expire_reschedule_request(self, request_id: int) -> bool:
        request = self._get_request(request_id)
        if request.status != models.RescheduleStatus.PENDING or request.expires_at > self.now():
            return False
        request.status = models.RescheduleStatus.EXPIRED
        request.responded_at = self.now()
        self.commit()
        self.notify(NotificationType.RESCHEDULE_EXPIRED, request.requested_by_id, request.booking)
        return True

    def respond_to_reschedule(
        self,
        request_id: int,
        actor_id: int,
        approve: bool,
    ) -> models.RescheduleRequest:
        """Approve or deny. Approval creates a successor booking.

        On a conflicting new slot nothing changes: the request stays open
        and SlotUnavailable is raised so the parties can pick another time.
        """
        request = self._get_request(request_id)
        booking = self.get(request.booking_id)
        if request.status != models.RescheduleStatus.PENDING:
            raise InvalidTransition(
                "Reschedule request is already closed",
                {"status": models.RescheduleStatus(request.status).value},
            )
        responder_role = (
            PartyRole.PROVIDER if request.requested_by_role == PartyRole.CLIENT else PartyRole.CLIENT
        )
        self.check_party(booking, actor_id, responder_role)

        now = self.now()
        if request.expires_at <= now:
            request.status = models.RescheduleStatus.EXPIRED
            request.responded_at = now
            self.commit()
            raise PolicyViolation("Reschedule request has expired", {"request_id": "expired"})

        new_slot = f"{request.new_date.isoformat()} {request.new_time.strftime('%H:%M')}"
        if not approve:
            request.status = models.RescheduleStatus.DENIED
            request.responded_at = now
            self.commit()
            self.notify(NotificationType.RESCHEDULE_DENIED, request.requested_by_id, booking, new_slot=new_slot)
            return request

        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED:
            raise InvalidTransition(
                "Only confirmed bookings can be rescheduled",
                {"booking_status": BookingStatus(booking.booking_status).value},
            )
        policy = crud_availability.get_policy(self.db, booking.provider)
        if (booking.reschedule_count or 0) >= policy.max_reschedules:
            raise PolicyViolation(
                "Maximum number of reschedules reached",
                {"reschedule_count": f"limit is {policy.max_reschedules}"},
            )
        provider = crud_availability.lock_provider(self.db, booking.provider_id)
        try:
            availability.ensure_slot_bookable(
                self.db,
                provider,
                booking.service,
                request.new_date,
                request.new_time,
                now,
                exclude_booking_id=booking.id,
            )
        except BookingError:
            self.db.rollback()
            raise

        self._set_status(booking, BookingStatus.RESCHEDULED)
        # The old row must leave the active-slot index before the successor lands
        self.db.flush()
        start = datetime.combine(request.new_date, request.new_time)
        successor = models.Booking(
            client_id=booking.client_id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            assigned_team_member_id=booking.assigned_team_member_id,
            rescheduled_from_booking_id=booking.id,
            appointment_date=request.new_date,
            appointment_time=request.new_time,
            appointment_end_time=(start + timedelta(minutes=booking.duration_minutes + booking.buffer_minutes)).time(),
            duration_minutes=booking.duration_minutes,
            buffer_minutes=booking.buffer_minutes,
            service_price=booking.service_price,
            deposit_amount=booking.deposit_amount,
            service_fee=booking.service_fee,
            total_amount=booking.total_amount,
            tip_amount=booking.tip_amount,
            amount_paid=booking.amount_paid,
            refunded_amount=booking.refunded_amount,
            currency=booking.currency,
            booking_status=BookingStatus.CONFIRMED,
            payment_status=booking.payment_status,
            payment_reference=booking.payment_reference,
            paid_at=booking.paid_at,
            balance_paid_at=booking.balance_paid_at,
            special_requests=booking.special_requests,
            reschedule_count=(booking.reschedule_count or 0) + 1,
            payment_reminder_sent=booking.payment_reminder_sent,
            reminder_24h_sent=False,
            provider_reminder_24h_sent=False,
            review_reminder_sent=False,
            created_at=booking.created_at,
            updated_at=now,
        )
        self.db.add(successor)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise SlotUnavailable("Selected time slot is no longer available", {"time": "already booked"})
        request.status = models.RescheduleStatus.APPROVED
        request.responded_at = now
        request.new_booking_id = successor.id
        self.commit()
        self._invalidate(booking)
        self._invalidate(successor)
        self.notify(
            NotificationType.RESCHEDULE_APPROVED,
            request.requested_by_id,
            successor,
            previous_booking_id=booking.id,
            new_slot=new_slot,
        )
        return request

    # ─── automated transitions (reconciliation jobs) ──────────────────────
    def auto_cancel_unpaid(self, booking_id: int) -> bool:
        booking = self.get(booking_id)
        deadline = booking.created_at + timedelta(hours=self.cfg.DEPOSIT_DEADLINE_HOURS)
        if (
            BookingStatus(booking.booking_status) != BookingStatus.PENDING
            or PaymentStatus(booking.payment_status) != PaymentStatus.AWAITING_DEPOSIT
            or self.now() < deadline
        ):
            return False
        self._cancel(booking, BookingStatus.CANCELLED_BY_CLIENT, AUTO_CANCEL_REASON, pricing.ZERO)
        self.notify(NotificationType.BOOKING_CANCELLED, booking.client_id, booking, reason=AUTO_CANCEL_REASON)
        return True

    def auto_decline_unconfirmed(self, booking_id: int) -> bool:
        booking = self.get(booking_id)
        deadline = booking.created_at + timedelta(hours=self.cfg.PROVIDER_CONFIRMATION_DEADLINE_HOURS)
        if (
            BookingStatus(booking.booking_status) != BookingStatus.PENDING
            or PaymentStatus(booking.payment_status) != PaymentStatus.DEPOSIT_PAID
            or self.now() < deadline
        ):
            return False
        refunded = self._cancel(booking, BookingStatus.CANCELLED_BY_PROVIDER, AUTO_DECLINE_REASON, pricing.ZERO)
        self.notify(NotificationType.BOOKING_CANCELLED, booking.client_id, booking, reason=AUTO_DECLINE_REASON)
        self.notify(NotificationType.BOOKING_CANCELLED, self._provider_user_id(booking), booking, reason=AUTO_DECLINE_REASON)
        if refunded > 0:
            self.notify(NotificationType.REFUND_ISSUED, booking.client_id, booking, amount=str(refunded))
        return True

    def detect_no_show(self, booking_id: int) -> bool:
        booking = self.get(booking_id)
        if BookingStatus(booking.booking_status) != BookingStatus.CONFIRMED or not self._grace_elapsed(booking):
            return False
        self.mark_no_show(booking_id)
        return True

    def send_payment_reminder(self, booking_id: int) -> bool:
        """Send at most one deposit reminder. Notifier errors propagate."""
        booking = self.get(booking_id)
        if (
            booking.payment_reminder_sent
            or BookingStatus(booking.booking_status) != BookingStatus.PENDING
            or PaymentStatus(booking.payment_status) != PaymentStatus.AWAITING_DEPOSIT
        ):
            return False
        self.notifier.send(NotificationType.PAYMENT_REMINDER, booking.client_id, self._payload(booking))
        booking.payment_reminder_sent = True
        booking.payment_reminder_sent_at = self.now()
        self.commit()
        return True

    def send_appointment_reminder(self, booking_id: int) -> bool:
        """Remind each party once; a party already reminded is skipped.

        Each send is committed before the next one starts, so a failure on
        the provider side leaves the client's flag set for the retry.
        """
        booking = self.get(booking_id)
        if BookingStatus(booking.booking_status) not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            return False
        if booking.reminder_24h_sent and booking.provider_reminder_24h_sent:
            return False
        data = self._payload(booking)
        if not booking.reminder_24h_sent:
            self.notifier.send(NotificationType.APPOINTMENT_REMINDER, booking.client_id, data)
            booking.reminder_24h_sent = True
            self.commit()
        if not booking.provider_reminder_24h_sent:
            self.notifier.send(NotificationType.APPOINTMENT_REMINDER, self._provider_user_id(booking), data)
            booking.provider_reminder_24h_sent = True
            self.commit()
        return True

    def send_review_reminder(self, booking_id: int) -> bool:
        booking = self.get(booking_id)
        if (
            booking.review_reminder_sent
            or BookingStatus(booking.booking_status) != BookingStatus.COMPLETED
            or booking.review is not None
            or (booking.review_deadline is not None and booking.review_deadline < self.now())
        ):
            return False
        self.notifier.send(NotificationType.REVIEW_REQUEST, booking.client_id, self._payload(booking))
        booking.review_reminder_sent = True
        self.commit()
        return True
