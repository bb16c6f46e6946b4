import hashlib
import hmac
from datetime import time, timezone

import pytest
from fastapi.testclient import TestClient

from app import models
from app.api.dependencies import get_broadcaster, get_clock, get_gateway, get_notifier
from app.core.config import settings
from app.database import get_db
from app.main import app
from app.models import BookingStatus, PaymentStatus
from app.realtime.bus import NullBroadcaster
from app.utils.json import dumps

API = settings.API_V1_STR
PAYSTACK_SECRET = "sk_test_webhook"
STRIPE_SECRET = "whsec_test"


@pytest.fixture
def client(session_factory, notifier, gateway, clock):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_broadcaster] = lambda: NullBroadcaster()
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def initialized(machine, gate, monday, make_provider, make_service):
    provider = make_provider(user_id=100)
    service = make_service(provider)
    booking = machine.create(1, provider.id, service.id, monday, time(10, 0))
    return booking, gate.initialize_payment(booking.id, 1)


def _paystack_post(client, payload, secret=PAYSTACK_SECRET):
    raw = dumps(payload).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), raw, hashlib.sha512).hexdigest()
    return client.post(
        f"{API}/payments/paystack/webhook",
        content=raw,
        headers={"x-paystack-signature": signature, "Content-Type": "application/json"},
    )


def _stripe_post(client, payload, timestamp, secret=STRIPE_SECRET):
    raw = dumps(payload).encode("utf-8")
    signed = f"{timestamp}.".encode("utf-8") + raw
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return client.post(
        f"{API}/payments/stripe/webhook",
        content=raw,
        headers={"stripe-signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"},
    )


def _booking(db, booking):
    db.expire_all()
    return db.get(models.Booking, booking.id)


def test_paystack_webhook_disabled_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "")
    res = client.post(f"{API}/payments/paystack/webhook", content=b"{}")
    assert res.status_code == 200


def test_paystack_charge_success_applies_once(client, db, initialized, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    booking, init = initialized
    payload = {
        "event": "charge.success",
        "data": {"reference": init.reference, "amount": 2485, "currency": "USD"},
    }

    first = _paystack_post(client, payload)
    again = _paystack_post(client, payload)

    assert first.json() == {"status": "applied"}
    assert again.json() == {"status": "duplicate"}
    assert _booking(db, booking).payment_status == PaymentStatus.DEPOSIT_PAID


def test_paystack_bad_signature_is_rejected(client, db, initialized, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    booking, init = initialized
    payload = {"event": "charge.success", "data": {"reference": init.reference, "amount": 2485}}

    res = _paystack_post(client, payload, secret="someone-else")

    assert res.status_code == 400
    assert _booking(db, booking).payment_status == PaymentStatus.AWAITING_DEPOSIT


def test_paystack_short_or_unknown_charge_is_acknowledged(client, db, initialized, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    booking, init = initialized

    short = _paystack_post(
        client, {"event": "charge.success", "data": {"reference": init.reference, "amount": 1000, "currency": "USD"}}
    )
    unknown = _paystack_post(client, {"event": "charge.success", "data": {"reference": "bk0-missing", "amount": 2485}})
    other = _paystack_post(client, {"event": "transfer.success", "data": {"reference": init.reference}})

    assert short.json() == {"status": "ignored"}
    assert unknown.json() == {"status": "ignored"}
    assert other.json() == {"status": "ignored"}
    assert _booking(db, booking).payment_status == PaymentStatus.AWAITING_DEPOSIT


def test_paystack_charge_failed_cancels_hold(client, db, initialized, monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", PAYSTACK_SECRET)
    booking, init = initialized

    res = _paystack_post(
        client,
        {"event": "charge.failed", "data": {"reference": init.reference, "gateway_response": "Declined"}},
    )

    assert res.json() == {"status": "applied"}
    assert _booking(db, booking).booking_status == BookingStatus.CANCELLED_BY_CLIENT
    txn = db.query(models.PaymentTransaction).filter_by(reference=init.reference).one()
    assert txn.failure_reason == "Declined"


def _intent(event, reference, amount=2485):
    return {
        "type": event,
        "data": {
            "object": {
                "id": "pi_123",
                "amount_received": amount,
                "currency": "usd",
                "metadata": {"reference": reference},
                "last_payment_error": {"message": "Card declined"},
            }
        },
    }


def test_stripe_payment_intent_succeeded(client, db, clock, initialized, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    booking, init = initialized
    timestamp = int(clock.now.replace(tzinfo=timezone.utc).timestamp())

    res = _stripe_post(client, _intent("payment_intent.succeeded", init.reference), timestamp)

    assert res.status_code == 200
    assert res.json() == {"status": "applied"}
    assert _booking(db, booking).payment_status == PaymentStatus.DEPOSIT_PAID


def test_stripe_stale_or_forged_signature_is_rejected(client, db, clock, initialized, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    booking, init = initialized
    now = int(clock.now.replace(tzinfo=timezone.utc).timestamp())
    payload = _intent("payment_intent.succeeded", init.reference)

    stale = _stripe_post(client, payload, now - 301)
    forged = _stripe_post(client, payload, now, secret="whsec_other")
    unsigned = client.post(f"{API}/payments/stripe/webhook", content=dumps(payload).encode("utf-8"))

    assert stale.status_code == 400
    assert forged.status_code == 400
    assert unsigned.status_code == 400
    assert _booking(db, booking).payment_status == PaymentStatus.AWAITING_DEPOSIT


def test_stripe_payment_failed(client, db, clock, initialized, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)
    booking, init = initialized
    timestamp = int(clock.now.replace(tzinfo=timezone.utc).timestamp())

    res = _stripe_post(client, _intent("payment_intent.payment_failed", init.reference), timestamp)

    assert res.json() == {"status": "applied"}
    assert _booking(db, booking).booking_status == BookingStatus.CANCELLED_BY_CLIENT
