"""Periodic booking sweeps.

Every job is a plain function over a ``JobContext``: select candidate ids,
then drive the state machine for each one in bounded batches. Each item gets
its own session and is re-checked under lock, so a booking that changed
since selection is skipped instead of transitioned twice.

Scheduling is external: ``run_job`` is called from the ops endpoint, the
``scripts/run_jobs.py`` CLI, or the optional in-process loop in ``app.main``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..crud import crud_booking
from ..database import SessionLocal, get_db_session
from ..models.booking_status import BookingStatus
from ..realtime.bus import Broadcaster, NullBroadcaster, RedisBroadcaster
from ..utils import redis_cache
from ..utils.batching import BatchResult, batch_process
from ..utils.errors import NotFound
from ..utils.notifications import DatabaseNotifier, Notifier
from .booking_lifecycle import BookingStateMachine
from .payment_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    session_factory: Callable[[], Session]
    notifier: Notifier
    gateway: PaymentGateway
    now: datetime
    broadcaster: Broadcaster = field(default_factory=NullBroadcaster)
    cfg: Settings = field(default_factory=lambda: default_settings)

    def machine(self, db: Session) -> BookingStateMachine:
        return BookingStateMachine(
            db,
            self.notifier,
            self.gateway,
            broadcaster=self.broadcaster,
            now=lambda: self.now,
            cfg=self.cfg,
        )

    def select(self, selector: Callable[[Session], List[int]]) -> List[int]:
        with get_db_session(self.session_factory) as db:
            return selector(db)


def default_context(now: Optional[datetime] = None) -> JobContext:
    broadcaster = RedisBroadcaster()
    return JobContext(
        session_factory=SessionLocal,
        notifier=DatabaseNotifier(SessionLocal, broadcaster),
        gateway=get_payment_gateway(),
        now=now or datetime.utcnow(),
        broadcaster=broadcaster,
    )


def _drive(ctx: JobContext, job: str, ids: List[int], action: str) -> dict:
    """Apply ``BookingStateMachine.<action>`` to every id and summarise."""
    logger.info("Job %s started with %s candidate(s)", job, len(ids))

    def _process(item_id: int) -> bool:
        with get_db_session(ctx.session_factory) as db:
            return getattr(ctx.machine(db), action)(item_id)

    result: BatchResult = batch_process(
        ids,
        _process,
        batch_size=ctx.cfg.JOB_BATCH_SIZE,
        time_budget=ctx.cfg.JOB_TIME_BUDGET_SECONDS,
    )
    summary = {
        "job": job,
        "candidates": result.total,
        "processed": result.processed,
        "succeeded": result.succeeded,
        "skipped": result.skipped,
        "failed": result.failed,
        "remaining": result.remaining,
        "errors": [{"id": item, "error": str(exc)} for item, exc in result.errors],
    }
    if result.processed and result.failure_ratio > ctx.cfg.JOB_FAILURE_ALERT_RATIO:
        logger.error(
            "Job %s failure ratio %.2f above threshold %.2f (%s of %s failed)",
            job,
            result.failure_ratio,
            ctx.cfg.JOB_FAILURE_ALERT_RATIO,
            result.failed,
            result.processed,
        )
    elif result.failed:
        logger.warning("Job %s finished with %s failure(s)", job, result.failed)
    logger.info(
        "Job %s finished: %s succeeded, %s skipped, %s failed, %s remaining",
        job, result.succeeded, result.skipped, result.failed, result.remaining,
    )
    return summary


def send_payment_reminders(ctx: JobContext) -> dict:
    """Nudge clients whose deposit has been outstanding for 2 to 24 hours."""
    ids = ctx.select(
        lambda db: crud_booking.booking.ids_awaiting_payment_reminder(
            db,
            ctx.now,
            min_age=timedelta(hours=ctx.cfg.PAYMENT_REMINDER_AFTER_HOURS),
            max_age=timedelta(hours=ctx.cfg.DEPOSIT_DEADLINE_HOURS),
        )
    )
    return _drive(ctx, "payment-reminders", ids, "send_payment_reminder")


def auto_cancel_unpaid_bookings(ctx: JobContext) -> dict:
    ids = ctx.select(
        lambda db: crud_booking.booking.ids_unpaid_past_deadline(
            db, ctx.now, timedelta(hours=ctx.cfg.DEPOSIT_DEADLINE_HOURS)
        )
    )
    return _drive(ctx, "auto-cancel-unpaid", ids, "auto_cancel_unpaid")


def auto_decline_unconfirmed_bookings(ctx: JobContext) -> dict:
    ids = ctx.select(
        lambda db: crud_booking.booking.ids_unconfirmed_past_deadline(
            db, ctx.now, timedelta(hours=ctx.cfg.PROVIDER_CONFIRMATION_DEADLINE_HOURS)
        )
    )
    return _drive(ctx, "auto-decline-unconfirmed", ids, "auto_decline_unconfirmed")


def send_appointment_reminders(ctx: JobContext) -> dict:
    """Remind both parties of appointments starting 23 to 24 hours from now."""
    lead = timedelta(hours=ctx.cfg.REMINDER_LEAD_HOURS)
    ids = ctx.select(
        lambda db: crud_booking.booking.ids_starting_between(
            db,
            ctx.now + lead - timedelta(hours=1),
            ctx.now + lead,
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
            reminder_pending=True,
        )
    )
    return _drive(ctx, "appointment-reminders", ids, "send_appointment_reminder")


def detect_no_shows(ctx: JobContext) -> dict:
    cutoff = ctx.now - timedelta(minutes=ctx.cfg.NO_SHOW_GRACE_PERIOD_MINUTES)
    ids = ctx.select(lambda db: crud_booking.booking.ids_started_before(db, cutoff))
    return _drive(ctx, "no-show-detection", ids, "detect_no_show")


def send_review_reminders(ctx: JobContext) -> dict:
    ids = ctx.select(
        lambda db: crud_booking.booking.ids_awaiting_review_reminder(
            db, ctx.now, min_age=timedelta(days=1), max_age=timedelta(days=2)
        )
    )
    return _drive(ctx, "review-reminders", ids, "send_review_reminder")


def expire_reschedule_requests(ctx: JobContext) -> dict:
    ids = ctx.select(lambda db: crud_booking.ids_expired_reschedule_requests(db, ctx.now))
    return _drive(ctx, "expire-reschedule-requests", ids, "expire_reschedule_request")


JOBS: Dict[str, Callable[[JobContext], dict]] = {
    "payment-reminders": send_payment_reminders,
    "auto-cancel-unpaid": auto_cancel_unpaid_bookings,
    "auto-decline-unconfirmed": auto_decline_unconfirmed_bookings,
    "appointment-reminders": send_appointment_reminders,
    "no-show-detection": detect_no_shows,
    "review-reminders": send_review_reminders,
    "expire-reschedule-requests": expire_reschedule_requests,
}


def run_job(name: str, ctx: Optional[JobContext] = None) -> dict:
    """Run one job under its Redis run lock.

    A run that finds the lock held is skipped rather than overlapping.
    """
    job = JOBS.get(name)
    if job is None:
        raise NotFound(f"Unknown job {name}", {"name": "unknown"})
    ctx = ctx or default_context()
    token = redis_cache.acquire_job_lock(name, ctx.cfg.JOB_TIME_BUDGET_SECONDS + 60)
    if token is None:
        logger.info("Job %s skipped: previous run still holds the lock", name)
        return {"job": name, "status": "locked"}
    started = time.monotonic()
    try:
        summary = job(ctx)
    finally:
        redis_cache.release_job_lock(name, token)
    summary["status"] = "ok"
    summary["duration_ms"] = int((time.monotonic() - started) * 1000)
    return summary


def run_all_jobs(ctx: Optional[JobContext] = None) -> dict:
    ctx = ctx or default_context()
    return {name: run_job(name, ctx) for name in JOBS}
