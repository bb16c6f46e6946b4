from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import SessionLocal, get_db
from ..models import PartyRole
from ..realtime.bus import Broadcaster, RedisBroadcaster
from ..services.booking_lifecycle import BookingStateMachine
from ..services.payment_gate import PaymentGate
from ..services.payment_gateway import PaymentGateway, get_payment_gateway
from ..utils.notifications import DatabaseNotifier, Notifier

# Tokens are issued by the identity service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: PartyRole


def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme),
    request: Request = None,
) -> Principal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    jwt_token = token or (request.cookies.get("access_token") if request else None)
    if not jwt_token:
        raise credentials_exception
    try:
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub"))
        role = PartyRole(str(payload.get("role") or "client").lower())
    except (JWTError, TypeError, ValueError):
        raise credentials_exception
    if role == PartyRole.SYSTEM:
        raise credentials_exception
    return Principal(user_id=user_id, role=role)


def get_current_client(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != PartyRole.CLIENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Clients only.")
    return principal


def get_current_provider(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != PartyRole.PROVIDER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not a service provider.",
        )
    return principal


def get_clock() -> Callable[[], datetime]:
    return datetime.utcnow


def get_broadcaster() -> Broadcaster:
    return RedisBroadcaster()


def get_notifier(broadcaster: Broadcaster = Depends(get_broadcaster)) -> Notifier:
    return DatabaseNotifier(SessionLocal, broadcaster)


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_state_machine(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    gateway: PaymentGateway = Depends(get_gateway),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingStateMachine:
    return BookingStateMachine(db, notifier, gateway, broadcaster=broadcaster, now=clock)


def get_payment_gate(machine: BookingStateMachine = Depends(get_state_machine)) -> PaymentGate:
    return PaymentGate(machine)
