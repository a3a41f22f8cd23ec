import asyncio
import logging
from typing import Optional

import aiohttp

from subscription_service.config import settings

logger = logging.getLogger(__name__)


class MSG91Client:
    """Client for sending OTP codes through the MSG91 API"""

    BASE_URL = "https://api.msg91.com/api/v5"

    def __init__(self, auth_key: Optional[str] = None, template_id: Optional[str] = None, timeout_seconds: float = 10.0):
        self.auth_key = settings.MSG91_AUTH_KEY if auth_key is None else auth_key
        self.template_id = settings.MSG91_TEMPLATE_ID if template_id is None else template_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.auth_key)

    @staticmethod
    def _with_country_code(phone_number: str) -> str:
        if phone_number.startswith("0"):
            return "91" + phone_number[1:]
        if len(phone_number) == 10:
            return "91" + phone_number
        return phone_number

    async def send_otp(self, phone_number: str, otp_code: str) -> bool:
        """Send the code; returns False when MSG91 rejects it or is unreachable"""
        payload = {
            "template_id": self.template_id,
            "mobile": self._with_country_code(phone_number),
            "otp": otp_code,
        }
        headers = {
            "authkey": self.auth_key,
            "Content-Type": "application/json",
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(f"{self.BASE_URL}/otp", json=payload, headers=headers) as response:
                    result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("MSG91 request failed: %s", exc)
            return False

        if result.get("type") != "success":
            logger.warning("MSG91 rejected OTP send: %s", result.get("message", "unknown error"))
            return False
        return True
