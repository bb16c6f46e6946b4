from datetime import datetime, time, timedelta
from decimal import Decimal

import pytest

from app import models
from app.core.config import Settings
from app.models import BookingStatus, NotificationType, PartyRole, PaymentStatus, RescheduleStatus
from app.services import reconciliation_jobs
from app.services.booking_lifecycle import AUTO_CANCEL_REASON, AUTO_DECLINE_REASON
from app.services.reconciliation_jobs import JobContext, run_all_jobs, run_job
from app.utils.errors import NotFound

# Start time of the frozen clock fixture
NOW = datetime(2026, 3, 2, 8, 0)


@pytest.fixture
def setup(make_provider, make_service):
    provider = make_provider(user_id=100)
    service = make_service(provider, duration=60, buffer=15)
    return provider, service


@pytest.fixture
def job_context(session_factory, notifier, gateway):
    """Jobs run one item at a time because the test engine has a single connection."""

    def _make(now, **overrides):
        overrides.setdefault("JOB_BATCH_SIZE", 1)
        return JobContext(
            session_factory=session_factory,
            notifier=notifier,
            gateway=gateway,
            now=now,
            cfg=Settings(**overrides),
        )

    return _make


def _reload(db, booking):
    db.expire_all()
    return db.get(models.Booking, booking.id)


def test_unpaid_booking_cancelled_only_after_deadline(db, setup, make_booking, notifier, job_context):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0))

    early = run_job("auto-cancel-unpaid", job_context(NOW + timedelta(hours=23, minutes=59)))
    assert early["candidates"] == 0
    assert _reload(db, booking).booking_status == BookingStatus.PENDING

    summary = run_job("auto-cancel-unpaid", job_context(NOW + timedelta(hours=24, minutes=1)))

    assert summary["status"] == "ok"
    assert summary["succeeded"] == 1
    booking = _reload(db, booking)
    assert booking.booking_status == BookingStatus.CANCELLED_BY_CLIENT
    assert booking.payment_status == PaymentStatus.AWAITING_DEPOSIT
    assert booking.cancellation_reason == AUTO_CANCEL_REASON
    assert notifier.events(NotificationType.BOOKING_CANCELLED)[0][1] == booking.client_id


def test_paid_booking_is_not_auto_cancelled(db, setup, machine, monday, pay_deposit, job_context):
    provider, service = setup
    booking = machine.create(1, provider.id, service.id, monday, time(10, 0))
    pay_deposit(booking)

    summary = run_job("auto-cancel-unpaid", job_context(NOW + timedelta(hours=25)))

    assert summary["candidates"] == 0
    assert _reload(db, booking).booking_status == BookingStatus.PENDING


def test_payment_reminder_sent_once(db, setup, make_booking, notifier, job_context):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0))

    assert run_job("payment-reminders", job_context(NOW + timedelta(hours=1)))["candidates"] == 0
    first = run_job("payment-reminders", job_context(NOW + timedelta(hours=3)))
    again = run_job("payment-reminders", job_context(NOW + timedelta(hours=4)))

    assert first["succeeded"] == 1
    assert again["candidates"] == 0
    booking = _reload(db, booking)
    assert booking.payment_reminder_sent is True
    assert booking.payment_reminder_sent_at == NOW + timedelta(hours=3)
    assert len(notifier.events(NotificationType.PAYMENT_REMINDER)) == 1


def test_appointment_reminder_reaches_both_parties(db, setup, make_booking, monday, notifier, job_context):
    provider, service = setup
    soon = make_booking(provider, service, time(10, 0), status=BookingStatus.CONFIRMED, payment=PaymentStatus.DEPOSIT_PAID)
    later = make_booking(provider, service, time(13, 0), client_id=2, status=BookingStatus.CONFIRMED, payment=PaymentStatus.DEPOSIT_PAID)
    now = datetime.combine(monday - timedelta(days=1), time(10, 30))

    summary = run_job("appointment-reminders", job_context(now))
    rerun = run_job("appointment-reminders", job_context(now + timedelta(minutes=5)))

    assert summary["succeeded"] == 1
    assert rerun["candidates"] == 0
    recipients = sorted(r for _, r, _ in notifier.events(NotificationType.APPOINTMENT_REMINDER))
    assert recipients == [1, provider.user_id]
    assert _reload(db, soon).reminder_24h_sent is True
    assert _reload(db, soon).provider_reminder_24h_sent is True
    assert _reload(db, later).reminder_24h_sent is False


def test_no_show_detection_waits_for_grace_period(db, setup, make_booking, monday, notifier, job_context):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0), status=BookingStatus.CONFIRMED, payment=PaymentStatus.DEPOSIT_PAID)

    early = run_job("no-show-detection", job_context(datetime.combine(monday, time(10, 20))))
    assert early["candidates"] == 0

    summary = run_job("no-show-detection", job_context(datetime.combine(monday, time(10, 31))))

    assert summary["succeeded"] == 1
    booking = _reload(db, booking)
    assert booking.booking_status == BookingStatus.NO_SHOW
    assert booking.payment_status == PaymentStatus.DEPOSIT_PAID
    assert booking.provider.no_show_count == 1
    assert len(notifier.events(NotificationType.BOOKING_NO_SHOW)) == 2


def test_review_reminder_for_recent_unreviewed_completions(db, setup, make_booking, notifier, job_context):
    provider, service = setup
    completed_at = NOW - timedelta(hours=36)
    common = dict(
        day=NOW.date() - timedelta(days=2),
        status=BookingStatus.COMPLETED,
        payment=PaymentStatus.DEPOSIT_PAID,
        completed_at=completed_at,
        review_deadline=completed_at + timedelta(days=14),
    )
    unreviewed = make_booking(provider, service, time(10, 0), client_id=1, **common)
    reviewed = make_booking(provider, service, time(12, 0), client_id=2, **common)
    db.add(models.Review(booking_id=reviewed.id, provider_id=provider.id, client_id=2, rating=5))
    db.commit()

    summary = run_job("review-reminders", job_context(NOW))

    assert summary["candidates"] == 1
    assert _reload(db, unreviewed).review_reminder_sent is True
    assert _reload(db, reviewed).review_reminder_sent is False
    assert [r for _, r, _ in notifier.events(NotificationType.REVIEW_REQUEST)] == [1]


def test_unconfirmed_paid_booking_is_declined_and_refunded(
    db, setup, machine, monday, gateway, pay_deposit, notifier, job_context
):
    provider, service = setup
    booking = machine.create(1, provider.id, service.id, monday, time(10, 0))
    init = pay_deposit(booking)

    assert run_job("auto-decline-unconfirmed", job_context(NOW + timedelta(hours=47)))["candidates"] == 0
    summary = run_job("auto-decline-unconfirmed", job_context(NOW + timedelta(hours=49)))

    assert summary["succeeded"] == 1
    booking = _reload(db, booking)
    assert booking.booking_status == BookingStatus.CANCELLED_BY_PROVIDER
    assert booking.payment_status == PaymentStatus.REFUNDED
    assert booking.cancellation_reason == AUTO_DECLINE_REASON
    assert [(r.charge_reference, r.amount) for r in gateway.refunds] == [(init.reference, Decimal("24.85"))]
    cancelled_for = sorted(r for _, r, _ in notifier.events(NotificationType.BOOKING_CANCELLED))
    assert cancelled_for == [1, provider.user_id]


def test_expired_reschedule_requests_are_closed(
    db, setup, machine, monday, pay_deposit, notifier, job_context
):
    provider, service = setup
    booking = machine.create(1, provider.id, service.id, monday, time(10, 0))
    pay_deposit(booking)
    machine.confirm(booking.id, provider.user_id)
    request = machine.request_reschedule(booking.id, 1, PartyRole.CLIENT, monday, time(14, 0))

    summary = run_job("expire-reschedule-requests", job_context(NOW + timedelta(hours=49)))

    assert summary["succeeded"] == 1
    db.expire_all()
    assert db.get(models.RescheduleRequest, request.id).status == RescheduleStatus.EXPIRED
    assert notifier.events(NotificationType.RESCHEDULE_EXPIRED)[0][1] == 1


class _FailsForRecipient:
    """Notifier that fails for one recipient only."""

    def __init__(self, inner, recipient_id):
        self.inner = inner
        self.recipient_id = recipient_id

    def send(self, event, recipient_id, data):
        if recipient_id == self.recipient_id:
            raise RuntimeError("delivery failed")
        self.inner.send(event, recipient_id, data)


def test_one_failing_item_does_not_stop_the_batch(db, setup, make_booking, notifier, session_factory, gateway):
    provider, service = setup
    ok = make_booking(provider, service, time(10, 0), client_id=1)
    broken = make_booking(provider, service, time(13, 0), client_id=2)
    ctx = JobContext(
        session_factory=session_factory,
        notifier=_FailsForRecipient(notifier, recipient_id=2),
        gateway=gateway,
        now=NOW + timedelta(hours=3),
        cfg=Settings(JOB_BATCH_SIZE=1),
    )

    summary = run_job("payment-reminders", ctx)

    assert summary["succeeded"] == 1
    assert summary["failed"] == 1
    assert summary["errors"] == [{"id": broken.id, "error": "delivery failed"}]
    assert _reload(db, ok).payment_reminder_sent is True
    assert _reload(db, broken).payment_reminder_sent is False


def test_failed_provider_reminder_does_not_repeat_client_reminder(
    db, setup, make_booking, monday, notifier, session_factory, gateway
):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0), status=BookingStatus.CONFIRMED, payment=PaymentStatus.DEPOSIT_PAID)
    now = datetime.combine(monday - timedelta(days=1), time(10, 30))

    def context(sender, at):
        return JobContext(
            session_factory=session_factory,
            notifier=sender,
            gateway=gateway,
            now=at,
            cfg=Settings(JOB_BATCH_SIZE=1),
        )

    first = run_job("appointment-reminders", context(_FailsForRecipient(notifier, provider.user_id), now))

    assert first["failed"] == 1
    booking = _reload(db, booking)
    assert booking.reminder_24h_sent is True
    assert booking.provider_reminder_24h_sent is False

    retry = run_job("appointment-reminders", context(notifier, now + timedelta(minutes=5)))

    assert retry["succeeded"] == 1
    recipients = [r for _, r, _ in notifier.events(NotificationType.APPOINTMENT_REMINDER)]
    assert recipients == [1, provider.user_id]
    assert _reload(db, booking).provider_reminder_24h_sent is True


def test_exhausted_time_budget_leaves_work_for_next_run(db, setup, make_booking, job_context):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0))

    summary = run_job(
        "auto-cancel-unpaid",
        job_context(NOW + timedelta(hours=25), JOB_TIME_BUDGET_SECONDS=0),
    )

    assert summary["processed"] == 0
    assert summary["remaining"] == 1
    assert _reload(db, booking).booking_status == BookingStatus.PENDING


def test_job_skipped_while_lock_is_held(db, setup, make_booking, fake_redis, job_context):
    provider, service = setup
    booking = make_booking(provider, service, time(10, 0))
    fake_redis.set("job-lock:auto-cancel-unpaid", "another-worker")

    summary = run_job("auto-cancel-unpaid", job_context(NOW + timedelta(hours=25)))

    assert summary == {"job": "auto-cancel-unpaid", "status": "locked"}
    assert _reload(db, booking).booking_status == BookingStatus.PENDING
    assert fake_redis.get("job-lock:auto-cancel-unpaid") == "another-worker"


def test_lock_released_after_run(fake_redis, job_context):
    run_job("auto-cancel-unpaid", job_context(NOW))
    assert fake_redis.get("job-lock:auto-cancel-unpaid") is None


def test_unknown_job_is_not_found(job_context):
    with pytest.raises(NotFound):
        run_job("defragment", job_context(NOW))


def test_run_all_jobs_reports_every_job(job_context):
    results = run_all_jobs(job_context(NOW))
    assert set(results) == set(reconciliation_jobs.JOBS)
    assert all(r["status"] == "ok" for r in results.values())
