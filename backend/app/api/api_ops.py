import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..core.config import settings
from ..crud import crud_booking
from ..database import get_db
from ..services import reconciliation_jobs

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ops"])


def require_ops_token(x_ops_token: str | None = Header(default=None)) -> None:
    if not settings.OPS_TOKEN:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    if not x_ops_token or not hmac.compare_digest(x_ops_token, settings.OPS_TOKEN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid ops token")


@router.post(
    "/ops/jobs/{name}/run",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_ops_token)],
)
def run_job(name: str):
    """Run one reconciliation job now and return its summary.

    Meant for an external cron when the in-process loop is disabled.
    """
    return reconciliation_jobs.run_job(name)


@router.post(
    "/ops/scheduler/tick",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_ops_token)],
)
def ops_tick():
    summary = reconciliation_jobs.run_all_jobs()
    return {"status": "ok", "jobs": summary}


@router.get(
    "/ops/refund-shortfalls",
    response_model=list[schemas.BookingResponse],
    dependencies=[Depends(require_ops_token)],
)
def list_refund_shortfalls(limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    """Cancelled bookings that still owe the client money outside any recorded charge."""
    return crud_booking.booking.get_refund_shortfalls(db, limit=limit)
