import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.config import RazorpaySettings, settings
from subscription_service.models.billing import Invoice, Plan, UserPlanHistory
from subscription_service.models.user import User
from subscription_service.services.payment_gateway import PaymentGateway, PaymentGatewayError
from subscription_service.services.result import ErrorKind, Result
from subscription_service.utils.clock import Clock

logger = logging.getLogger(__name__)

# Checkout widgets sometimes post these instead of leaving the field out
SENTINEL_IDS = {"undefined", "null", "none"}

CENT = Decimal("0.01")

# Retries after losing a race on invoice_number or payment_id
ENTITLEMENT_ATTEMPTS = 3


def clean_identifier(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in SENTINEL_IDS:
        return None
    return value


def to_major_units(amount_in_minor: int) -> Decimal:
    return (Decimal(amount_in_minor) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def round_amount(amount) -> Decimal:
    # ROUND_HALF_UP on Decimal rounds halves away from zero
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class OrderResult:
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str]
    reused: bool = False


@dataclass
class EntitlementResult:
    user: User
    invoice: Optional[Invoice]
    already_applied: bool = False


class PaymentService:
    """
    Order creation and the payment -> entitlement transition.

    A verified payment flips the subscription flags, rotates user_plan_history,
    writes one invoice and rewrites the plan snapshot on the user row, all in a
    single commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        options: Optional[RazorpaySettings] = None,
        clock: Optional[Clock] = None,
        default_plan_id: Optional[str] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.options = options or settings.razorpay
        self.clock = clock or Clock()
        self.default_plan_id = default_plan_id if default_plan_id is not None else settings.DEFAULT_PLAN_ID

    async def _lock_user(self, user_id: uuid.UUID) -> Optional[User]:
        query = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _get_plan(self, plan_id: Optional[str], active_only: bool = False) -> Optional[Plan]:
        if not plan_id:
            return None
        query = select(Plan).where(Plan.id == plan_id)
        if active_only:
            query = query.where(Plan.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _catalog_plan(self) -> Optional[Plan]:
        plan = await self._get_plan(self.default_plan_id, active_only=True)
        if plan is not None:
            return plan
        query = (
            select(Plan)
            .where(Plan.is_active == True)  # noqa: E712
            .order_by(Plan.display_order, Plan.created_at)
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    def _reusable_order(self, user: User, plan_id: Optional[str], amount: Decimal, currency: str, now: datetime) -> bool:
        window = self.options.order_reuse_minutes
        if window <= 0 or not user.pending_order_id or user.pending_order_created_at is None:
            return False
        if now - user.pending_order_created_at > timedelta(minutes=window):
            return False
        return (
            user.pending_plan_id == plan_id
            and user.pending_plan_amount is not None
            and round_amount(user.pending_plan_amount) == amount
            and (user.pending_plan_currency or "").upper() == currency
        )

    async def _next_invoice_number(self, now: datetime) -> str:
        """INV-YYYYMMDD-NNNNNN, counting up within the day"""
        prefix = f"INV-{now:%Y%m%d}-"
        result = await self.db.execute(
            select(func.max(Invoice.invoice_number)).where(Invoice.invoice_number.like(f"{prefix}%"))
        )
        last = result.scalar_one_or_none()
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:06d}"

    async def _applied_payment(self, user: User, payment_id: str) -> Optional[Result[EntitlementResult]]:
        """The outcome for a payment that was already credited, or None if it never was"""
        result = await self.db.execute(select(Invoice).where(Invoice.payment_id == payment_id))
        invoice = result.scalars().first()
        if invoice is not None:
            if invoice.user_id != user.id:
                logger.warning("Payment %s presented by user %s was credited to another account", payment_id, user.id)
                return Result.failure(ErrorKind.ORDER_MISMATCH, "Payment does not belong to this account.")
            return Result.success(EntitlementResult(user=user, invoice=invoice, already_applied=True))
        if user.is_subscribed and user.subscription_id == payment_id:
            return Result.success(EntitlementResult(user=user, invoice=None, already_applied=True))
        return None

    async def create_order(
        self,
        user_id: uuid.UUID,
        amount_in_paise: Optional[int] = None,
        plan_id: Optional[str] = None,
        plan_name: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Result[OrderResult]:
        """
        Open a gateway order and record it as the user's pending order.

        Each call opens a new order and overwrites the pending snapshot, unless
        order reuse is configured and an equivalent recent pending order exists.
        """
        amount = amount_in_paise if amount_in_paise and amount_in_paise > 0 else self.options.default_amount_in_paise
        currency = (currency or self.options.currency).strip().upper()
        plan_id = clean_identifier(plan_id)

        plan = None
        if plan_id:
            plan = await self._get_plan(plan_id, active_only=True)
            if plan is None:
                return Result.failure(ErrorKind.PLAN_NOT_FOUND, "Plan not found.")
        plan_name = (plan_name or "").strip() or (plan.name if plan else None)

        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")

        now = self.clock.now()
        if self._reusable_order(user, plan_id, to_major_units(amount), currency, now):
            logger.info("Reusing pending order %s for user %s", user.pending_order_id, user_id)
            return Result.success(OrderResult(
                order_id=user.pending_order_id,
                amount=amount,
                currency=currency,
                receipt=user.pending_order_receipt,
                reused=True,
            ))

        receipt = f"rcpt_{uuid.uuid4().hex}"
        try:
            order = await self.gateway.create_order(amount, currency, receipt)
        except PaymentGatewayError:
            return Result.failure(ErrorKind.GATEWAY_UNAVAILABLE, "Unable to create payment order. Please try again later.")

        try:
            user = await self._lock_user(user_id)
            user.pending_order_id = order["id"]
            user.pending_order_receipt = order.get("receipt", receipt)
            user.pending_order_created_at = now
            user.pending_plan_id = plan_id
            user.pending_plan_name = plan_name
            user.pending_plan_amount = to_major_units(amount)
            user.pending_plan_currency = currency
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Created order %s for user %s (%s %s)", order["id"], user_id, amount, currency)
        return Result.success(OrderResult(
            order_id=order["id"],
            amount=order.get("amount", amount),
            currency=order.get("currency", currency),
            receipt=order.get("receipt", receipt),
        ))

    async def _confirm_with_gateway(self, user: User, payment_id: str, effective_order_id: Optional[str]) -> Result[Optional[str]]:
        """Fetch (and capture if needed) the payment; returns the order id to record"""
        stored_order_id = clean_identifier(user.pending_order_id)
        try:
            payment = await self.gateway.fetch_payment(payment_id)
        except PaymentGatewayError:
            return Result.failure(ErrorKind.PAYMENT_INCOMPLETE, "Unable to confirm payment status.")

        status = (payment.get("status") or "").lower()
        if status == "authorized":
            amount = payment.get("amount")
            if not amount and user.pending_plan_amount is not None:
                amount = int(round_amount(user.pending_plan_amount) * 100)
            if not amount:
                logger.warning("Payment %s is authorized but its amount is unknown", payment_id)
                return Result.failure(ErrorKind.PAYMENT_INCOMPLETE, "Payment amount is unknown; cannot capture.")
            currency = payment.get("currency") or user.pending_plan_currency or self.options.currency
            try:
                payment = await self.gateway.capture_payment(payment_id, amount, currency)
            except PaymentGatewayError:
                return Result.failure(ErrorKind.PAYMENT_INCOMPLETE, "Payment capture failed.")
            status = (payment.get("status") or "").lower()

        if status != "captured":
            return Result.failure(
                ErrorKind.PAYMENT_INCOMPLETE,
                f"Payment is not captured (status: {status or 'unknown'}).",
            )

        gateway_order_id = clean_identifier(payment.get("order_id"))
        if gateway_order_id and effective_order_id and gateway_order_id != effective_order_id:
            if not stored_order_id:
                logger.warning("Payment %s belongs to order %s, not %s", payment_id, gateway_order_id, effective_order_id)
                return Result.failure(ErrorKind.ORDER_MISMATCH, "Payment does not belong to this order.")
            logger.warning(
                "Payment %s reports order %s, keeping stored pending order %s",
                payment_id, gateway_order_id, stored_order_id,
            )
            return Result.success(stored_order_id)
        return Result.success(effective_order_id or gateway_order_id)

    async def verify_payment(
        self,
        user_id: uuid.UUID,
        payment_id: Optional[str],
        order_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> Result[EntitlementResult]:
        payment_id = clean_identifier(payment_id)
        if not payment_id:
            return Result.failure(ErrorKind.MISSING_PARAMETERS, "Payment id is required.")

        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")
        applied = await self._applied_payment(user, payment_id)
        if applied is not None:
            return applied

        explicit_order_id = clean_identifier(order_id)
        signature = clean_identifier(signature)
        stored_order_id = clean_identifier(user.pending_order_id)
        effective_order_id = explicit_order_id or stored_order_id

        if explicit_order_id and signature:
            if not self.gateway.verify_signature(explicit_order_id, payment_id, signature):
                logger.warning("Invalid signature for payment %s of user %s", payment_id, user_id)
                return Result.failure(ErrorKind.INVALID_SIGNATURE, "Invalid payment signature.")
            # The signed order must be this user's pending order
            if explicit_order_id != stored_order_id:
                logger.warning(
                    "Signed order %s presented by user %s does not match pending order %s",
                    explicit_order_id, user_id, stored_order_id,
                )
                return Result.failure(ErrorKind.ORDER_MISMATCH, "Order does not match the pending order.")
        else:
            confirmed = await self._confirm_with_gateway(user, payment_id, effective_order_id)
            if not confirmed.ok:
                return Result.failure(confirmed.error, confirmed.message)
            effective_order_id = confirmed.value

        return await self._apply_entitlement(user_id, payment_id, effective_order_id)

    async def _apply_entitlement(self, user_id: uuid.UUID, payment_id: str, order_id: Optional[str]) -> Result[EntitlementResult]:
        for attempt in range(1, ENTITLEMENT_ATTEMPTS + 1):
            try:
                return await self._credit_payment(user_id, payment_id, order_id)
            except IntegrityError:
                if attempt == ENTITLEMENT_ATTEMPTS:
                    raise
                logger.warning("Crediting payment %s collided with a concurrent write, retrying", payment_id)

    async def _credit_payment(self, user_id: uuid.UUID, payment_id: str, order_id: Optional[str]) -> Result[EntitlementResult]:
        try:
            user = await self._lock_user(user_id)
            if user is None:
                return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")
            # A concurrent verification of the same payment may have won the lock
            applied = await self._applied_payment(user, payment_id)
            if applied is not None:
                return applied

            plan = None
            for candidate in (user.pending_plan_id, user.active_plan_id):
                plan = await self._get_plan(candidate)
                if plan is not None:
                    break
            if plan is None:
                plan = await self._catalog_plan()
            if plan is None:
                logger.error("No plan to credit for payment %s of user %s", payment_id, user_id)
                return Result.failure(ErrorKind.PLAN_NOT_FOUND, "No plan available to activate.")

            if user.pending_plan_amount is not None:
                amount = user.pending_plan_amount
            elif user.active_plan_amount is not None:
                amount = user.active_plan_amount
            elif plan.price is not None:
                amount = plan.price
            else:
                amount = to_major_units(self.options.default_amount_in_paise)
            amount = round_amount(amount)

            currency = (
                user.pending_plan_currency
                or user.active_plan_currency
                or plan.currency
                or self.options.currency
            ).upper()

            if plan.id == user.pending_plan_id and user.pending_plan_name:
                plan_name = user.pending_plan_name
            elif plan.id == user.active_plan_id and user.active_plan_name:
                plan_name = user.active_plan_name
            else:
                plan_name = plan.name

            now = self.clock.now()
            user.is_subscribed = True
            user.subscription_id = payment_id
            user.is_registration_complete = True
            user.payment_verified_at = now
            user.pending_order_id = None
            user.pending_order_receipt = None
            user.pending_order_created_at = None

            active_rows = await self.db.execute(
                select(UserPlanHistory).where(
                    UserPlanHistory.user_id == user_id,
                    UserPlanHistory.status == "active",
                )
            )
            for row in active_rows.scalars().all():
                row.status = "ended"
                row.cancelled_at = now

            self.db.add(UserPlanHistory(
                user_id=user_id,
                plan_id=plan.id,
                status="active",
                amount=amount,
                currency=currency,
                subscribed_at=now,
                notes=f"Payment {payment_id}",
            ))

            invoice = Invoice(
                invoice_number=await self._next_invoice_number(now),
                user_id=user_id,
                plan_id=plan.id,
                plan_name=plan_name,
                amount=amount,
                currency=currency,
                payment_id=payment_id,
                order_id=order_id,
                issued_at=now,
            )
            self.db.add(invoice)

            user.active_plan_id = plan.id
            user.active_plan_name = plan_name
            user.active_plan_amount = amount
            user.active_plan_currency = currency
            user.pending_plan_id = None
            user.pending_plan_name = None
            user.pending_plan_amount = None
            user.pending_plan_currency = None

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Activated plan %s for user %s: invoice %s, %s %s",
            plan.id, user_id, invoice.invoice_number, amount, currency,
        )
        return Result.success(EntitlementResult(user=user, invoice=invoice))
