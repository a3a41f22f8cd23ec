import asyncio
import functools
import logging
from typing import Any, Dict, Optional

import razorpay
from razorpay.errors import SignatureVerificationError

from subscription_service.config import RazorpaySettings, settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Gateway call failed or timed out"""


class PaymentGateway:
    """Razorpay orders, payments and checkout signatures"""

    def __init__(self, options: Optional[RazorpaySettings] = None):
        self.options = options or settings.razorpay
        # Initialize Razorpay client
        self.client = razorpay.Client(auth=(self.options.key_id, self.options.key_secret))

    async def _call(self, description: str, func, *args, **kwargs) -> Dict[str, Any]:
        # The SDK is blocking; keep it off the event loop and bound it in time
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
                timeout=self.options.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Razorpay %s timed out", description)
            raise PaymentGatewayError(f"{description} timed out") from exc
        except Exception as exc:
            logger.error("Razorpay %s failed: %s", description, exc)
            raise PaymentGatewayError(f"{description} failed: {exc}") from exc

    async def create_order(self, amount: int, currency: str, receipt: str) -> Dict[str, Any]:
        """Open an order; amount is in minor units (paise)"""
        return await self._call("order creation", self.client.order.create, data={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": {"description": self.options.plan_description},
        })

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._call("payment fetch", self.client.payment.fetch, payment_id)

    async def capture_payment(self, payment_id: str, amount: int, currency: str) -> Dict[str, Any]:
        return await self._call("payment capture", self.client.payment.capture, payment_id, amount, {"currency": currency})

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 over "order_id|payment_id" with the key secret, compared in constant time"""
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            return False
        return True
