"""Payment gateway adapters.

The lifecycle only needs three calls: start a charge, look a charge up and
refund part of it. Vendor payloads stop here; webhooks are translated in
``app.api.api_payment``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"


class GatewayError(Exception):
    """The gateway could not be reached or rejected the call."""


@dataclass
class TransactionHandle:
    reference: str
    provider: str
    authorization_url: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass
class ChargeResult:
    reference: str
    succeeded: bool
    amount: Decimal
    currency: str


@dataclass
class RefundHandle:
    reference: str
    charge_reference: str
    amount: Decimal


class PaymentGateway(Protocol):
    name: str

    def initialize_deposit(
        self, amount: Decimal, currency: str, metadata: dict[str, Any]
    ) -> TransactionHandle:
        ...

    def confirm_charge(self, reference: str) -> ChargeResult:
        ...

    def refund(self, reference: str, amount: Decimal) -> RefundHandle:
        ...


def new_reference(booking_id: int) -> str:
    return f"bk{booking_id}-{uuid.uuid4().hex[:16]}"


def _minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class SimulatedGateway:
    """In-process gateway for local development and tests.

    Charges are recorded when initialized and report success for the full
    amount on lookup; refunds are recorded and always accepted.
    """

    name = "simulated"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.charges: dict[str, tuple[Decimal, str]] = {}
        self.refunds: list[RefundHandle] = []

    def initialize_deposit(
        self, amount: Decimal, currency: str, metadata: dict[str, Any]
    ) -> TransactionHandle:
        reference = new_reference(int(metadata.get("booking_id") or 0))
        with self._lock:
            self.charges[reference] = (amount, currency)
        return TransactionHandle(
            reference=reference,
            provider=self.name,
            client_secret=f"{reference}_secret_{uuid.uuid4().hex[:8]}",
        )

    def confirm_charge(self, reference: str) -> ChargeResult:
        with self._lock:
            found = self.charges.get(reference)
        if found is None:
            raise GatewayError(f"Unknown reference {reference}")
        amount, currency = found
        return ChargeResult(reference=reference, succeeded=True, amount=amount, currency=currency)

    def refund(self, reference: str, amount: Decimal) -> RefundHandle:
        handle = RefundHandle(
            reference=f"rf-{uuid.uuid4().hex[:16]}", charge_reference=reference, amount=amount
        )
        with self._lock:
            self.refunds.append(handle)
        logger.info("Simulated refund %s of %s against %s", handle.reference, amount, reference)
        return handle


class PaystackGateway:
    name = "paystack"

    def __init__(
        self,
        secret_key: str,
        callback_url: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=PAYSTACK_BASE_URL,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
        )
        self._callback_url = callback_url

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            r = self._client.request(method, path, **kwargs)
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Paystack %s %s failed: %s", method, path, exc, exc_info=True)
            raise GatewayError(str(exc)) from exc
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Paystack rejected the request")
        return body.get("data") or {}

    def initialize_deposit(
        self, amount: Decimal, currency: str, metadata: dict[str, Any]
    ) -> TransactionHandle:
        booking_id = int(metadata.get("booking_id") or 0)
        reference = new_reference(booking_id)
        payload: dict[str, Any] = {
            "email": metadata.get("email") or f"client{metadata.get('client_id', booking_id)}@example.com",
            "amount": _minor_units(amount),
            "currency": currency,
            "reference": reference,
            # Lets the webhook correlate even if the reference is lost
            "metadata": {k: v for k, v in metadata.items() if k != "email"},
        }
        if self._callback_url:
            payload["callback_url"] = self._callback_url
        data = self._request("POST", "/transaction/initialize", json=payload)
        auth_url = data.get("authorization_url")
        if not auth_url:
            raise GatewayError("Invalid Paystack response")
        return TransactionHandle(
            reference=data.get("reference") or reference,
            provider=self.name,
            authorization_url=auth_url,
            client_secret=data.get("access_code"),
        )

    def confirm_charge(self, reference: str) -> ChargeResult:
        data = self._request("GET", f"/transaction/verify/{reference}")
        amount = Decimal(int(data.get("amount", 0) or 0)) / 100
        return ChargeResult(
            reference=reference,
            succeeded=str(data.get("status", "")).lower() == "success",
            amount=amount,
            currency=str(data.get("currency") or ""),
        )

    def refund(self, reference: str, amount: Decimal) -> RefundHandle:
        data = self._request(
            "POST", "/refund", json={"transaction": reference, "amount": _minor_units(amount)}
        )
        return RefundHandle(
            reference=str(data.get("id") or new_reference(0)),
            charge_reference=reference,
            amount=amount,
        )


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway chosen by PAYMENT_PROVIDER."""
    global _gateway
    if _gateway is None:
        if settings.PAYMENT_PROVIDER == "paystack":
            _gateway = PaystackGateway(
                settings.PAYSTACK_SECRET_KEY,
                callback_url=settings.PAYSTACK_CALLBACK_URL,
                timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
            )
        else:
            _gateway = SimulatedGateway()
    return _gateway
