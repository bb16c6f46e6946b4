from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import models
from app.core.config import Settings
from app.services import pricing
from app.utils.errors import PolicyViolation


def _service(**fields):
    defaults = dict(
        price_min=Decimal("100.00"),
        deposit_required=True,
        deposit_type=models.DepositType.PERCENTAGE,
        deposit_amount=Decimal("20"),
        currency="USD",
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


def test_percentage_deposit():
    assert pricing.deposit_for(_service(), Decimal("100.00")) == Decimal("20.00")
    assert pricing.deposit_for(_service(deposit_amount=Decimal("33.333")), Decimal("10.00")) == Decimal("3.33")


def test_fixed_deposit_is_capped_at_price():
    service = _service(deposit_type=models.DepositType.FIXED, deposit_amount=Decimal("150"))
    assert pricing.deposit_for(service, Decimal("100.00")) == Decimal("100.00")


def test_no_deposit_when_not_required():
    assert pricing.deposit_for(_service(deposit_required=False), Decimal("100.00")) == pricing.ZERO


def test_regional_fee_is_capped():
    cfg = Settings(SERVICE_FEE_SCHEDULE={"GH": {"base": "1.00", "percentage": "10", "cap": "5.00", "currency": "GHS"}})
    assert pricing.service_fee_for(Decimal("20.00"), "gh", cfg) == Decimal("3.00")
    assert pricing.service_fee_for(Decimal("200.00"), "GH", cfg) == Decimal("5.00")


def test_unknown_region_falls_back_to_na():
    assert pricing.service_fee_for(Decimal("100.00"), "ZZ") == Decimal("4.85")


def test_price_booking_totals_deposit_and_fee():
    provider = SimpleNamespace(region_code="NA", currency="USD")
    breakdown = pricing.price_booking(provider, _service())
    assert breakdown.service_price == Decimal("100.00")
    assert breakdown.deposit_amount == Decimal("20.00")
    assert breakdown.service_fee == Decimal("4.85")
    assert breakdown.total_amount == Decimal("24.85")
    assert breakdown.currency == "USD"


def test_fee_schedule_rejects_other_currencies():
    cfg = Settings(SERVICE_FEE_SCHEDULE={"NG": {"base": "100", "percentage": "2", "cap": "2000", "currency": "NGN"}})

    assert pricing.service_fee_for(Decimal("5000.00"), "NG", cfg, "ngn") == Decimal("200.00")
    with pytest.raises(PolicyViolation):
        pricing.service_fee_for(Decimal("50.00"), "NG", cfg, "USD")


def test_price_booking_uses_service_currency_against_schedule():
    provider = SimpleNamespace(region_code="EU", currency="EUR")

    assert pricing.price_booking(provider, _service(currency="EUR")).currency == "EUR"
    with pytest.raises(PolicyViolation):
        pricing.price_booking(provider, _service(currency="USD"))


def test_cancellation_fee_applies_only_inside_window():
    booking = SimpleNamespace(deposit_amount=Decimal("20.00"), amount_paid=Decimal("24.85"), refunded_amount=Decimal("0"))
    policy = SimpleNamespace(cancellation_window_hours=24, cancellation_fee_percentage=Decimal("50"))

    assert pricing.cancellation_fee(booking, policy, 23) == Decimal("10.00")
    assert pricing.cancellation_fee(booking, policy, 24) == pricing.ZERO
    assert pricing.cancellation_fee(booking, policy, 72) == pricing.ZERO


def test_cancellation_fee_never_exceeds_amount_paid():
    booking = SimpleNamespace(deposit_amount=Decimal("20.00"), amount_paid=Decimal("0"), refunded_amount=Decimal("0"))
    policy = SimpleNamespace(cancellation_window_hours=24, cancellation_fee_percentage=Decimal("100"))
    assert pricing.cancellation_fee(booking, policy, 1) == pricing.ZERO


def test_refundable_keeps_fee_and_prior_refunds():
    booking = SimpleNamespace(amount_paid=Decimal("24.85"), refunded_amount=Decimal("4.85"))
    assert pricing.refundable(booking, Decimal("10.00")) == Decimal("10.00")
    assert pricing.refundable(booking, Decimal("30.00")) == pricing.ZERO


def test_balance_due():
    booking = SimpleNamespace(service_price=Decimal("100.00"), deposit_amount=Decimal("20.00"))
    assert pricing.balance_due(booking) == Decimal("80.00")
