import os
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path

import fakeredis
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Load environment variables for tests
load_dotenv(Path(__file__).resolve().parents[1] / '.env.test')
os.environ.setdefault("PYTEST_RUN", "1")

from app import models  # noqa: E402
from app.models.base import BaseModel  # noqa: E402
from app.services import pricing  # noqa: E402
from app.services.booking_lifecycle import BookingStateMachine  # noqa: E402
from app.services.conflicts import buffer_minutes_for  # noqa: E402
from app.services.payment_gate import PaymentGate  # noqa: E402
from app.services.payment_gateway import SimulatedGateway  # noqa: E402
from app.utils import redis_cache  # noqa: E402

# 2026-03-02 is a Monday; appointments go on the following Monday.
NOW = datetime(2026, 3, 2, 8, 0)
MONDAY = date(2026, 3, 9)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Notifier double that keeps every send; ``fail_with`` makes sends raise."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, event, recipient_id, data):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((event, recipient_id, data))

    def events(self, event=None):
        return [s for s in self.sent if event is None or s[0] == event]


@pytest.fixture(autouse=True)
def fake_redis():
    """Every test gets an isolated fakeredis behind the process-wide client."""
    fake = fakeredis.FakeStrictRedis(decode_responses=True)
    redis_cache.set_redis_client(fake)
    yield fake
    redis_cache.set_redis_client(None)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    BaseModel.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def monday():
    return MONDAY


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return SimulatedGateway()


@pytest.fixture
def machine(db, notifier, gateway, clock):
    return BookingStateMachine(db, notifier, gateway, now=clock)


@pytest.fixture
def gate(machine):
    return PaymentGate(machine)


@pytest.fixture
def make_provider(db):
    def _make(
        user_id=100,
        hours=((0, time(9, 0), time(17, 0)),),
        policy=None,
        **fields,
    ):
        fields.setdefault("business_name", f"Studio {user_id}")
        fields.setdefault("region_code", "NA")
        fields.setdefault("currency", "USD")
        provider = models.ProviderProfile(user_id=user_id, **fields)
        db.add(provider)
        db.flush()
        for day_of_week, start, end in hours:
            db.add(
                models.ProviderAvailability(
                    provider_id=provider.id,
                    day_of_week=day_of_week,
                    start_time=start,
                    end_time=end,
                )
            )
        db.add(models.ProviderPolicy(provider_id=provider.id, **(policy or {})))
        db.commit()
        db.refresh(provider)
        return provider

    return _make


@pytest.fixture
def make_service(db):
    def _make(provider, duration=60, buffer=0, price="100.00", **fields):
        fields.setdefault("title", "Silk press")
        fields.setdefault("currency", "USD")
        fields.setdefault("deposit_required", True)
        fields.setdefault("deposit_type", models.DepositType.PERCENTAGE)
        fields.setdefault("deposit_amount", Decimal("20"))
        service = models.Service(
            provider_id=provider.id,
            duration_minutes=duration,
            buffer_minutes=buffer,
            price_min=Decimal(price),
            **fields,
        )
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return _make


@pytest.fixture
def make_booking(db, clock):
    """Insert a booking row directly, skipping the slot checks."""

    def _make(
        provider,
        service,
        start,
        day=MONDAY,
        client_id=1,
        status=models.BookingStatus.PENDING,
        payment=models.PaymentStatus.AWAITING_DEPOSIT,
        created_at=None,
        **fields,
    ):
        buffer = buffer_minutes_for(provider, service)
        begins = datetime.combine(day, start)
        price = pricing.price_booking(provider, service)
        booking = models.Booking(
            client_id=client_id,
            provider_id=provider.id,
            service_id=service.id,
            appointment_date=day,
            appointment_time=start,
            appointment_end_time=(begins + timedelta(minutes=service.duration_minutes + buffer)).time(),
            duration_minutes=service.duration_minutes,
            buffer_minutes=buffer,
            service_price=price.service_price,
            deposit_amount=price.deposit_amount,
            service_fee=price.service_fee,
            total_amount=price.total_amount,
            currency=price.currency,
            booking_status=status,
            payment_status=payment,
            created_at=created_at or clock.now,
            updated_at=created_at or clock.now,
            **fields,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def pay_deposit(gate):
    """Drive a booking's deposit through the payment gate like a webhook would."""

    def _pay(booking):
        init = gate.initialize_payment(booking.id, booking.client_id)
        gate.on_payment_succeeded(init.reference, init.amount, init.currency)
        return init

    return _pay
