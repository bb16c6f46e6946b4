from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr

from ..models.payment_transaction import TransactionKind


class PaymentCreate(BaseModel):
    kind: TransactionKind = TransactionKind.DEPOSIT
    email: Optional[EmailStr] = None


class PaymentInitResponse(BaseModel):
    provider: str
    reference: Optional[str] = None
    client_secret_or_authorization_url: Optional[str] = None
    amount: Decimal
    currency: str
    kind: TransactionKind

    model_config = {
        "from_attributes": True
    }


class WebhookAck(BaseModel):
    status: str
