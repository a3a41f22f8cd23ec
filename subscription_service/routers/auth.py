import logging

from fastapi import APIRouter, Depends, Request, status

from subscription_service.dependencies import get_auth_service, get_password_reset_service
from subscription_service.models.user import User
from subscription_service.schemas.auth import (
    AdminLoginRequest,
    LoginResponse,
    OtpDispatchResponse,
    OtpRequest,
    OtpVerify,
    PasswordResetConfirm,
    RegisterRequest,
    UserResponse,
)
from subscription_service.schemas.base import MessageResponse
from subscription_service.services.auth_service import AuthService, LoginResult
from subscription_service.services.password_reset_service import PasswordResetService
from subscription_service.utils.auth import client_info, get_current_user
from subscription_service.utils.errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


def _login_response(login: LoginResult) -> LoginResponse:
    return LoginResponse(token=login.token, user=UserResponse.model_validate(login.user), roles=login.roles)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Register a new user with email, phone, password and KYC details
    """
    result = await auth_service.register(user_data)
    if not result.ok:
        raise http_error(result)
    logger.info("Registered user %s", result.value.id)
    return result.value


@router.post("/otp/request", response_model=OtpDispatchResponse)
async def request_otp(
    otp_request: OtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Check phone + password and send a login OTP
    """
    result = await auth_service.request_login_otp(otp_request.phone_number, otp_request.password)
    if not result.ok:
        raise http_error(result)
    return result.value


@router.post("/otp/verify", response_model=LoginResponse)
async def verify_otp(
    otp_verify: OtpVerify,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Verify the login OTP and start a new session
    """
    result = await auth_service.verify_login_otp(otp_verify.phone_number, otp_verify.code, client_info(request))
    if not result.ok:
        raise http_error(result)
    return _login_response(result.value)


@router.post("/admin/login", response_model=LoginResponse)
async def admin_login(
    login_request: AdminLoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = await auth_service.admin_login(login_request.email, login_request.password, client_info(request))
    if not result.ok:
        raise http_error(result)
    return _login_response(result.value)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.logout(current_user.id)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(
    reset_request: PasswordResetConfirm,
    reset_service: PasswordResetService = Depends(get_password_reset_service),
):
    """
    Redeem a reset token issued by an admin and set a new password
    """
    result = await reset_service.redeem_reset_token(reset_request.token_id, reset_request.token, reset_request.new_password)
    if not result.ok:
        raise http_error(result)
    return {"message": "Password has been reset. Please log in again."}
