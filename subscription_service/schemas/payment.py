import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from subscription_service.schemas.auth import UserResponse
from subscription_service.schemas.base import CamelModel


class CreateOrderRequest(CamelModel):
    amount_in_paise: Optional[int] = Field(None, ge=0)
    plan_id: Optional[str] = Field(None, max_length=50)
    plan_name: Optional[str] = Field(None, max_length=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=10)


class CreateOrderResponse(CamelModel):
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None


class VerifyPaymentRequest(CamelModel):
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None

    @field_validator("order_id", "payment_id", "signature", mode="before")
    @classmethod
    def coerce_to_string(cls, value):
        # Checkout callbacks occasionally send numbers or nulls for these
        if value is None or isinstance(value, str):
            return value
        return str(value)


class InvoiceResponse(CamelModel):
    id: uuid.UUID
    invoice_number: str
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    amount: Decimal
    currency: str
    payment_id: str
    order_id: Optional[str] = None
    issued_at: datetime


class VerifyPaymentResponse(CamelModel):
    success: bool = True
    message: str
    already_applied: bool = False
    invoice_number: Optional[str] = None
    user: UserResponse
