from fastapi import HTTPException, status

from subscription_service.services.result import ErrorKind, Result

ERROR_STATUS = {
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.EXPIRED_CHALLENGE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NO_CHALLENGE_FOUND: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CODE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CHALLENGE_LOCKED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_SESSION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.TOKEN_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.DELIVERY_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.GATEWAY_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INVALID_SIGNATURE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.PAYMENT_INCOMPLETE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ORDER_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MISSING_PARAMETERS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.PLAN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EMAIL_TAKEN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.PHONE_TAKEN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION_FAILURE: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def http_error(result: Result) -> HTTPException:
    """Turn a failed service result into the HTTPException a router raises"""
    status_code = ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(
        status_code=status_code,
        detail={"error": result.error.value, "message": result.message},
        headers=headers,
    )
