"""Deposit, platform fee and cancellation-fee arithmetic.

All amounts are ``Decimal`` quantized to cents with ROUND_HALF_UP.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from .. import models
from ..core.config import Settings, settings as default_settings
from ..utils.errors import PolicyViolation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    service_price: Decimal
    deposit_amount: Decimal
    service_fee: Decimal
    total_amount: Decimal
    currency: str


def deposit_for(service: models.Service, price: Decimal) -> Decimal:
    if not service.deposit_required:
        return ZERO
    amount = Decimal(str(service.deposit_amount or 0))
    if service.deposit_type == models.DepositType.PERCENTAGE:
        return money(price * amount / Decimal(100))
    return money(min(amount, price))


def service_fee_for(
    price: Decimal,
    region_code: str | None,
    cfg: Settings = default_settings,
    currency: str | None = None,
) -> Decimal:
    """Regional platform fee: base plus a percentage of the price, capped.

    The schedule is denominated in its own currency; pricing a ``currency``
    it does not cover raises ``PolicyViolation`` instead of mixing units.
    """
    schedule = cfg.service_fee_for_region(region_code)
    if currency and currency.upper() != schedule["currency"].upper():
        raise PolicyViolation(
            "Platform fee is not available in this currency",
            {"currency": f"fee schedule for {region_code or 'NA'} is in {schedule['currency']}"},
        )
    fee = schedule["base"] + price * schedule["percentage"] / Decimal(100)
    return money(min(fee, schedule["cap"]))


def price_booking(
    provider: models.ProviderProfile,
    service: models.Service,
    cfg: Settings = default_settings,
) -> PriceBreakdown:
    price = money(service.price_min)
    currency = service.currency or provider.currency or cfg.DEFAULT_CURRENCY
    deposit = deposit_for(service, price)
    fee = service_fee_for(price, provider.region_code, cfg, currency)
    return PriceBreakdown(
        service_price=price,
        deposit_amount=deposit,
        service_fee=fee,
        # Charged online when the booking is made
        total_amount=money(deposit + fee),
        currency=currency,
    )


def balance_due(booking: models.Booking) -> Decimal:
    """Remainder of the service price owed after the deposit."""
    return money(max(money(booking.service_price) - money(booking.deposit_amount), ZERO))


def cancellation_fee(
    booking: models.Booking,
    policy: models.ProviderPolicy,
    hours_before_start: float,
) -> Decimal:
    """Fee for a client cancellation ``hours_before_start`` ahead of the appointment."""
    if hours_before_start >= float(policy.cancellation_window_hours or 0):
        return ZERO
    pct = Decimal(str(policy.cancellation_fee_percentage or 0))
    fee = money(money(booking.deposit_amount) * pct / Decimal(100))
    return min(fee, money(booking.amount_paid))


def refundable(booking: models.Booking, fee: Decimal) -> Decimal:
    """What is left to return after keeping ``fee`` from the captured amount."""
    remaining = money(booking.amount_paid) - money(booking.refunded_amount) - money(fee)
    return money(max(remaining, ZERO))
