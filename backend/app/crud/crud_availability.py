from datetime import date
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .. import models


def get_provider(db: Session, provider_id: int) -> Optional[models.ProviderProfile]:
    return db.query(models.ProviderProfile).filter(models.ProviderProfile.id == provider_id).first()


def lock_provider(db: Session, provider_id: int) -> Optional[models.ProviderProfile]:
    """Serialize writers to one provider's calendar until the caller commits.

    The ``calendar_version`` UPDATE is the lock: a row lock on PostgreSQL and
    the database write lock on SQLite, where ``FOR UPDATE`` is ignored and
    pysqlite would otherwise run the following conflict reads outside any
    write transaction. A second writer blocks here and then reads the first
    one's committed bookings.
    """
    bumped = db.execute(
        update(models.ProviderProfile)
        .where(models.ProviderProfile.id == provider_id)
        .values(calendar_version=models.ProviderProfile.calendar_version + 1)
        .execution_options(synchronize_session=False)
    )
    if not bumped.rowcount:
        return None
    return (
        db.query(models.ProviderProfile)
        .filter(models.ProviderProfile.id == provider_id)
        .populate_existing()
        .first()
    )


def get_policy(db: Session, provider: models.ProviderProfile) -> models.ProviderPolicy:
    """Return the provider's policy, or an unsaved one carrying the defaults."""
    if provider.policy is not None:
        return provider.policy
    return models.ProviderPolicy(
        provider_id=provider.id,
        cancellation_window_hours=24,
        cancellation_fee_percentage=50,
        reschedule_allowed=True,
        reschedule_window_hours=24,
        max_reschedules=2,
    )


def get_service(db: Session, service_id: int) -> Optional[models.Service]:
    return db.query(models.Service).filter(models.Service.id == service_id).first()


def get_day_templates(db: Session, provider_id: int, day: date) -> List[models.ProviderAvailability]:
    return (
        db.query(models.ProviderAvailability)
        .filter(
            models.ProviderAvailability.provider_id == provider_id,
            models.ProviderAvailability.day_of_week == day.weekday(),
            models.ProviderAvailability.is_available.is_(True),
        )
        .order_by(models.ProviderAvailability.start_time.asc())
        .all()
    )


def get_time_off_on(db: Session, provider_id: int, day: date) -> List[models.ProviderTimeOff]:
    return (
        db.query(models.ProviderTimeOff)
        .filter(
            models.ProviderTimeOff.provider_id == provider_id,
            models.ProviderTimeOff.start_date <= day,
            models.ProviderTimeOff.end_date >= day,
        )
        .all()
    )
