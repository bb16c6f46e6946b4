import logging
from sqlalchemy import event
from sqlalchemy.orm.attributes import NO_VALUE

from .. import models

logger = logging.getLogger(__name__)

_registered = False


def _value(v):  # noqa: ANN001
    return getattr(v, "value", v)


def _listener_factory(model_name: str, attr: str):
    """Return a SQLAlchemy attribute listener that logs status changes."""

    def _status_change(target, value, oldvalue, initiator):  # noqa: ANN001
        if oldvalue is NO_VALUE or oldvalue is None or _value(oldvalue) == _value(value):
            return value
        entity_id = getattr(target, "id", "unknown")
        logger.info(
            "%s id=%s %s changed from %s to %s",
            model_name,
            entity_id,
            attr,
            _value(oldvalue),
            _value(value),
        )
        return value

    return _status_change


def register_status_listeners() -> None:
    """Attach listeners to both booking status axes and reschedule requests."""
    global _registered
    if _registered:
        return
    for model, attr in (
        (models.Booking, "booking_status"),
        (models.Booking, "payment_status"),
        (models.RescheduleRequest, "status"),
        (models.PaymentTransaction, "status"),
    ):
        event.listen(
            getattr(model, attr),
            "set",
            _listener_factory(model.__name__, attr),
            retval=False,
            propagate=True,
        )
    _registered = True
