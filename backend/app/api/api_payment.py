import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status

from .. import schemas
from ..core.config import settings
from ..services.payment_gate import IGNORED, PaymentGate
from ..utils.errors import NotFound, PaymentRequired
from ..utils.json import loads
from .dependencies import Principal, get_clock, get_current_client, get_payment_gate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

# Stripe rejects signatures older than five minutes by default.
STRIPE_SIGNATURE_TOLERANCE_SECONDS = 300


def _minor_to_decimal(value) -> Optional[Decimal]:
    try:
        return Decimal(int(value or 0)) / 100
    except (TypeError, ValueError, InvalidOperation):
        return None


def _apply(gate: PaymentGate, succeeded: bool, reference: str, amount, currency, reason) -> str:
    """Feed one normalized webhook event to the gate.

    Unknown references and short captures are acknowledged so the vendor
    stops retrying; they are logged for manual follow-up.
    """
    try:
        if succeeded:
            return gate.on_payment_succeeded(reference, amount, currency)
        return gate.on_payment_failed(reference, reason)
    except (NotFound, PaymentRequired) as exc:
        gate.db.rollback()
        logger.warning("Payment webhook ref=%s not applied: %s %s", reference, exc.message, exc.field_errors)
        return IGNORED


@router.post(
    "/bookings/{booking_id}/payments",
    response_model=schemas.PaymentInitResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_payment(
    booking_id: int,
    payment_in: schemas.PaymentCreate,
    current_client: Principal = Depends(get_current_client),
    gate: PaymentGate = Depends(get_payment_gate),
):
    """Start collecting the deposit (or balance) for a booking."""
    return gate.initialize_payment(
        booking_id,
        current_client.user_id,
        kind=payment_in.kind,
        email=payment_in.email,
    )


@router.get("/payments/paystack/verify", response_model=schemas.WebhookAck)
def verify_paystack_payment(
    reference: str,
    current_client: Principal = Depends(get_current_client),
    gate: PaymentGate = Depends(get_payment_gate),
):
    """Redirect-flow fallback when the webhook has not arrived yet."""
    return {"status": gate.verify(reference)}


@router.post("/payments/paystack/webhook")
async def paystack_webhook(
    request: Request,
    gate: PaymentGate = Depends(get_payment_gate),
    x_paystack_signature: str | None = Header(default=None),
):
    """Handle Paystack ``charge.success`` and ``charge.failed`` events.

    The raw body must carry a valid HMAC SHA512 signature made with
    PAYSTACK_SECRET_KEY. Redeliveries of an applied event are acknowledged
    without side effects.
    """
    if not settings.PAYSTACK_SECRET_KEY:
        return Response(status_code=status.HTTP_200_OK)

    raw = await request.body()
    expected = hmac.new(
        key=settings.PAYSTACK_SECRET_KEY.encode("utf-8"),
        msg=raw,
        digestmod=hashlib.sha512,
    ).hexdigest()
    if not x_paystack_signature or not hmac.compare_digest(x_paystack_signature, expected):
        logger.warning("Paystack webhook signature mismatch")
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    try:
        payload = loads(raw)
    except ValueError:
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    event = str(payload.get("event", "")).lower()
    data = payload.get("data") or {}
    reference = str(data.get("reference") or "")
    if not reference or event not in ("charge.success", "charge.failed"):
        return {"status": IGNORED}

    result = _apply(
        gate,
        event == "charge.success",
        reference,
        _minor_to_decimal(data.get("amount")) or Decimal("0"),
        data.get("currency"),
        data.get("gateway_response") or "charge failed",
    )
    return {"status": result}


def _verify_stripe_signature(raw: bytes, header: Optional[str], secret: str, now: datetime) -> bool:
    if not header:
        return False
    parts = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        parts.setdefault(key, []).append(value)
    try:
        timestamp = int(parts.get("t", [""])[0])
    except ValueError:
        return False
    if abs(now.timestamp() - timestamp) > STRIPE_SIGNATURE_TOLERANCE_SECONDS:
        return False
    signed = f"{timestamp}.".encode("utf-8") + raw
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in parts.get("v1", []))


@router.post("/payments/stripe/webhook")
async def stripe_webhook(
    request: Request,
    gate: PaymentGate = Depends(get_payment_gate),
    clock: Callable[[], datetime] = Depends(get_clock),
    stripe_signature: str | None = Header(default=None),
):
    """Translate Stripe payment intent events into payment gate calls.

    The intent must carry our reference in ``metadata.reference``.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        return Response(status_code=status.HTTP_200_OK)

    raw = await request.body()
    # The clock returns naive UTC
    now = clock().replace(tzinfo=timezone.utc)
    if not _verify_stripe_signature(raw, stripe_signature, settings.STRIPE_WEBHOOK_SECRET, now):
        logger.warning("Stripe webhook signature mismatch")
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    try:
        payload = loads(raw)
    except ValueError:
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    event = str(payload.get("type", ""))
    intent = (payload.get("data") or {}).get("object") or {}
    reference = str((intent.get("metadata") or {}).get("reference") or "")
    if not reference or event not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        return {"status": IGNORED}

    error = intent.get("last_payment_error") or {}
    result = _apply(
        gate,
        event == "payment_intent.succeeded",
        reference,
        _minor_to_decimal(intent.get("amount_received")) or Decimal("0"),
        intent.get("currency"),
        error.get("message") or "payment failed",
    )
    return {"status": result}
