import logging
from datetime import time

from app.utils.status_logger import register_status_listeners


def test_status_changes_are_logged(caplog, machine, monday, make_provider, make_service, pay_deposit):
    register_status_listeners()
    provider = make_provider(user_id=100)
    service = make_service(provider)
    booking = machine.create(1, provider.id, service.id, monday, time(10, 0))
    caplog.set_level(logging.INFO, logger="app.utils.status_logger")

    pay_deposit(booking)
    machine.confirm(booking.id, 100)

    messages = [r.getMessage() for r in caplog.records if r.name == "app.utils.status_logger"]
    assert f"Booking id={booking.id} payment_status changed from awaiting_deposit to deposit_paid" in messages
    assert f"Booking id={booking.id} booking_status changed from pending to confirmed" in messages
    assert any(m.startswith("PaymentTransaction") and "to succeeded" in m for m in messages)
