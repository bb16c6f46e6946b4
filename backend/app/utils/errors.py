from typing import Dict, Optional
from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


def error_response(
    message: str,
    field_errors: Dict[str, str],
    code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
) -> HTTPException:
    """Return an HTTPException with a consistent structure and log details."""
    logger.error("%s %s", message, field_errors)
    detail = {"message": message, "field_errors": field_errors}
    return HTTPException(status_code=code, detail=detail)


class BookingError(Exception):
    """Base for every business error raised by the booking lifecycle.

    Routers never catch these individually; the application-level handler
    renders them with the ``error_response`` body shape.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors or {}

    def to_http(self) -> HTTPException:
        return error_response(self.message, self.field_errors, self.status_code)


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class SlotUnavailable(BookingError):
    """Requested slot conflicts with another booking or is outside working hours."""

    status_code = status.HTTP_409_CONFLICT


class PaymentRequired(BookingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class InvalidTransition(BookingError):
    """State change not allowed from the current status, or lost a concurrent update."""

    status_code = status.HTTP_409_CONFLICT


class PolicyViolation(BookingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ExternalDependencyFailure(BookingError):
    status_code = status.HTTP_502_BAD_GATEWAY
