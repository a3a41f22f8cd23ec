import logging

from fastapi import APIRouter, Depends

from subscription_service.dependencies import get_payment_service
from subscription_service.models.user import User
from subscription_service.schemas.auth import UserResponse
from subscription_service.schemas.payment import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from subscription_service.services.payment_service import PaymentService
from subscription_service.utils.auth import get_current_user
from subscription_service.utils.errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(
    order_request: CreateOrderRequest,
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Create a Razorpay order for the subscription and remember it as pending
    """
    result = await payment_service.create_order(
        current_user.id,
        amount_in_paise=order_request.amount_in_paise,
        plan_id=order_request.plan_id,
        plan_name=order_request.plan_name,
        currency=order_request.currency,
    )
    if not result.ok:
        raise http_error(result)
    return result.value


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    verify_request: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service),
):
    """
    Verify a checkout payment and activate the subscription
    """
    result = await payment_service.verify_payment(
        current_user.id,
        payment_id=verify_request.payment_id,
        order_id=verify_request.order_id,
        signature=verify_request.signature,
    )
    if not result.ok:
        logger.info("Payment verification failed for user %s: %s", current_user.id, result.error.value)
        raise http_error(result)

    entitlement = result.value
    return VerifyPaymentResponse(
        message="Payment already verified" if entitlement.already_applied else "Payment verified successfully",
        already_applied=entitlement.already_applied,
        invoice_number=entitlement.invoice.invoice_number if entitlement.invoice else None,
        user=UserResponse.model_validate(entitlement.user),
    )
