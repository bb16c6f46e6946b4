"""Deposit and balance collection.

Starts charges through the gateway and applies vendor-neutral payment events
(``reference`` succeeded/failed for ``amount`` in ``currency``) to the
booking state machine. ``PaymentTransaction.status`` is the idempotency guard
for at-least-once webhook delivery.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from .. import models
from ..crud import crud_booking
from ..models import PartyRole, TransactionKind, TransactionStatus
from ..models.booking_status import BookingStatus, PaymentStatus
from ..utils.errors import (
    ExternalDependencyFailure,
    InvalidTransition,
    NotFound,
    PaymentRequired,
    PolicyViolation,
)
from . import pricing
from .booking_lifecycle import BookingStateMachine
from .payment_gateway import GatewayError

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"


@dataclass
class PaymentInit:
    provider: str
    reference: Optional[str]
    client_secret_or_authorization_url: Optional[str]
    amount: Decimal
    currency: str
    kind: TransactionKind


class PaymentGate:
    def __init__(self, machine: BookingStateMachine):
        self.machine = machine
        self.db: Session = machine.db
        self.gateway = machine.gateway

    def _amount_for(self, booking: models.Booking, kind: TransactionKind) -> Decimal:
        if kind == TransactionKind.DEPOSIT:
            if (
                BookingStatus(booking.booking_status) != BookingStatus.PENDING
                or PaymentStatus(booking.payment_status) != PaymentStatus.AWAITING_DEPOSIT
            ):
                raise InvalidTransition(
                    "Deposit is not due for this booking",
                    {"payment_status": PaymentStatus(booking.payment_status).value},
                )
            return pricing.money(booking.total_amount)
        if kind == TransactionKind.BALANCE:
            if (
                BookingStatus(booking.booking_status) not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
                or PaymentStatus(booking.payment_status) != PaymentStatus.DEPOSIT_PAID
            ):
                raise InvalidTransition(
                    "Balance is not due for this booking",
                    {"payment_status": PaymentStatus(booking.payment_status).value},
                )
            amount = pricing.balance_due(booking)
            if amount <= 0:
                raise PolicyViolation("Nothing left to pay", {"amount": "0.00"})
            return amount
        raise PolicyViolation("Unsupported payment kind", {"kind": kind.value})

    def initialize_payment(
        self,
        booking_id: int,
        client_id: int,
        kind: TransactionKind = TransactionKind.DEPOSIT,
        email: Optional[str] = None,
    ) -> PaymentInit:
        booking = self.machine.get(booking_id)
        self.machine.check_party(booking, client_id, PartyRole.CLIENT)
        amount = self._amount_for(booking, kind)

        if amount <= 0 and kind == TransactionKind.DEPOSIT:
            # Nothing to collect online
            self.machine.on_deposit_paid(booking.id, pricing.ZERO)
            return PaymentInit("none", None, None, pricing.ZERO, booking.currency, kind)

        open_txn = crud_booking.get_open_transaction(self.db, booking.id, kind)
        if open_txn is not None and pricing.money(open_txn.amount) == amount:
            return PaymentInit(
                open_txn.provider,
                open_txn.reference,
                open_txn.authorization_url or open_txn.client_secret,
                amount,
                open_txn.currency,
                kind,
            )

        metadata = {"booking_id": booking.id, "client_id": booking.client_id, "kind": kind.value}
        if email:
            metadata["email"] = email
        try:
            handle = self.gateway.initialize_deposit(amount, booking.currency, metadata)
        except GatewayError as exc:
            self.db.rollback()
            raise ExternalDependencyFailure(
                "Payment could not be started, try again shortly", {"payment": str(exc)}
            ) from exc

        txn = models.PaymentTransaction(
            booking_id=booking.id,
            reference=handle.reference,
            provider=handle.provider,
            kind=kind,
            status=TransactionStatus.INITIALIZED,
            amount=amount,
            currency=booking.currency,
            authorization_url=handle.authorization_url,
            client_secret=handle.client_secret,
        )
        self.db.add(txn)
        self.machine.commit()
        logger.info("Booking id=%s %s payment initialized ref=%s", booking.id, kind.value, handle.reference)
        return PaymentInit(
            handle.provider,
            handle.reference,
            handle.authorization_url or handle.client_secret,
            amount,
            booking.currency,
            kind,
        )

    def _transaction(self, reference: str) -> models.PaymentTransaction:
        txn = (
            self.db.query(models.PaymentTransaction)
            .filter(models.PaymentTransaction.reference == reference)
            .with_for_update()
            .first()
        )
        if txn is None:
            raise NotFound("Unknown payment reference", {"reference": reference})
        return txn

    def on_payment_succeeded(self, reference: str, amount: Decimal, currency: Optional[str] = None) -> str:
        """Apply a successful charge once. Returns applied/duplicate."""
        txn = self._transaction(reference)
        if txn.status != TransactionStatus.INITIALIZED:
            logger.info("Payment ref=%s already %s, duplicate event ignored", reference, txn.status)
            return DUPLICATE
        captured = pricing.money(amount)
        if currency and currency.upper() != (txn.currency or "").upper():
            raise PaymentRequired(
                "Payment currency does not match booking",
                {"currency": f"expected {txn.currency}, got {currency}"},
            )
        if captured < pricing.money(txn.amount):
            raise PaymentRequired(
                "Captured amount is less than the amount due",
                {"amount": f"expected {txn.amount}, got {captured}"},
            )
        txn.status = TransactionStatus.SUCCEEDED
        txn.amount_captured = captured
        txn.completed_at = self.machine.now()
        self.db.flush()

        if txn.kind == TransactionKind.BALANCE:
            applied = self.machine.on_balance_paid(txn.booking_id, captured, reference)
        else:
            applied = self.machine.on_deposit_paid(txn.booking_id, captured, reference)
        if not applied:
            # The booking moved on through another charge; keep the row settled
            self.machine.commit()
        return APPLIED

    def on_payment_failed(self, reference: str, reason: Optional[str] = None) -> str:
        txn = self._transaction(reference)
        if txn.status != TransactionStatus.INITIALIZED:
            return DUPLICATE
        txn.status = TransactionStatus.FAILED
        txn.failure_reason = (reason or "")[:255] or None
        txn.completed_at = self.machine.now()
        self.db.flush()
        if txn.kind == TransactionKind.DEPOSIT:
            if not self.machine.on_payment_failed(txn.booking_id, reason):
                self.machine.commit()
        else:
            self.machine.commit()
            booking = crud_booking.booking.get_booking(self.db, txn.booking_id)
            self.machine.notify(models.NotificationType.PAYMENT_FAILED, booking.client_id, booking, reason=reason)
        return APPLIED

    def verify(self, reference: str) -> str:
        """Pull the charge state from the gateway and apply it (redirect flows)."""
        try:
            result = self.gateway.confirm_charge(reference)
        except GatewayError as exc:
            raise ExternalDependencyFailure("Verification failed", {"payment": str(exc)}) from exc
        if not result.succeeded:
            return IGNORED
        return self.on_payment_succeeded(reference, result.amount, result.currency or None)
