from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.database import get_db
from subscription_service.services.auth_service import AuthService
from subscription_service.services.billing_service import BillingService
from subscription_service.services.password_reset_service import PasswordResetService
from subscription_service.services.payment_gateway import PaymentGateway
from subscription_service.services.payment_service import PaymentService
from subscription_service.services.session_service import SessionRegistry
from subscription_service.utils.clock import Clock
from subscription_service.utils.msg91_client import MSG91Client


async def get_clock():
    return Clock()

async def get_otp_sender():
    return MSG91Client()

async def get_payment_gateway():
    return PaymentGateway()

async def get_session_registry(db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return SessionRegistry(db, clock=clock)

async def get_auth_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    sender: MSG91Client = Depends(get_otp_sender),
):
    return AuthService(db, clock=clock, sender=sender)

async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return PaymentService(db, gateway, clock=clock)

async def get_password_reset_service(db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)):
    return PasswordResetService(db, clock=clock)

async def get_billing_service(db: AsyncSession = Depends(get_db)):
    return BillingService(db)
