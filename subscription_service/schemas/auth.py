import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import EmailStr, Field, constr

from subscription_service.schemas.base import CamelModel


class RegisterRequest(CamelModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)  # type: ignore
    email: EmailStr
    phone_number: constr(min_length=10, max_length=20)  # type: ignore
    password: constr(min_length=6)  # type: ignore
    government_id_type: constr(strip_whitespace=True, min_length=1, max_length=50)  # type: ignore
    government_id_number: constr(strip_whitespace=True, min_length=1, max_length=100)  # type: ignore
    government_document_url: Optional[constr(max_length=256)] = None  # type: ignore
    accept_terms: bool = False


class OtpRequest(CamelModel):
    phone_number: constr(min_length=10, max_length=20)  # type: ignore
    password: constr(min_length=1)  # type: ignore


class OtpVerify(CamelModel):
    phone_number: constr(min_length=10, max_length=20)  # type: ignore
    code: constr(strip_whitespace=True, min_length=4, max_length=8)  # type: ignore


class AdminLoginRequest(CamelModel):
    email: EmailStr
    password: constr(min_length=1)  # type: ignore


class PasswordResetConfirm(CamelModel):
    token_id: uuid.UUID
    token: constr(min_length=1)  # type: ignore
    new_password: constr(min_length=6)  # type: ignore


class OtpDispatchResponse(CamelModel):
    masked_phone: str
    expires_at: datetime
    is_active: bool
    debug_code: Optional[str] = None


class UserResponse(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    phone_number: str
    is_subscribed: bool
    is_registration_complete: bool
    subscription_id: Optional[str] = None
    active_plan_id: Optional[str] = None
    active_plan_name: Optional[str] = None
    active_plan_amount: Optional[Decimal] = None
    active_plan_currency: Optional[str] = None
    pending_plan_id: Optional[str] = None
    payment_verified_at: Optional[datetime] = None


class LoginResponse(CamelModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse
    roles: List[str] = Field(default_factory=list)
