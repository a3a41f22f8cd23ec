from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EXPIRED_CHALLENGE = "expired_challenge"
    NO_CHALLENGE_FOUND = "no_challenge_found"
    INVALID_CODE = "invalid_code"
    CHALLENGE_LOCKED = "challenge_locked"
    DELIVERY_FAILED = "delivery_failed"
    INVALID_SESSION = "invalid_session"
    INVALID_SIGNATURE = "invalid_signature"
    PAYMENT_INCOMPLETE = "payment_incomplete"
    ORDER_MISMATCH = "order_mismatch"
    MISSING_PARAMETERS = "missing_parameters"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    USER_NOT_FOUND = "user_not_found"
    PLAN_NOT_FOUND = "plan_not_found"
    EMAIL_TAKEN = "email_taken"
    PHONE_TAKEN = "phone_taken"
    TOKEN_INVALID = "token_invalid"
    VALIDATION_FAILURE = "validation_failure"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a business operation: either a value or an error kind with a caller-safe message"""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Result[T]":
        return cls(error=error, message=message)
