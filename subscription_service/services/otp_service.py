import logging
import random
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.config import OtpSettings, settings
from subscription_service.models.otp import UserOtp
from subscription_service.models.user import User
from subscription_service.services.credential_hasher import CredentialHasher
from subscription_service.services.result import ErrorKind, Result
from subscription_service.utils.clock import Clock
from subscription_service.utils.msg91_client import MSG91Client

logger = logging.getLogger(__name__)

CODE_SPACE = 1_000_000


def normalize_phone(phone_number: str) -> str:
    return phone_number.replace(" ", "").replace("-", "").replace("+", "").strip()


def mask_destination(destination: str) -> str:
    """Mask all but the last four characters"""
    if len(destination) <= 4:
        return "*" * len(destination)
    return "*" * (len(destination) - 4) + destination[-4:]


@dataclass
class OtpDispatch:
    masked_destination: str
    expires_at: datetime
    debug_code: Optional[str] = None


class OtpService:
    """
    Issues and verifies short-lived numeric codes per (user, purpose).

    Only the newest unconsumed challenge of a (user, purpose) pair is live: issuing
    a code consumes every earlier one. Consumption is permanent whether it came from
    a successful match, expiry or running out of attempts.
    """

    def __init__(
        self,
        db: AsyncSession,
        options: Optional[OtpSettings] = None,
        hasher: Optional[CredentialHasher] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        sender: Optional[MSG91Client] = None,
    ):
        self.db = db
        self.options = options or settings.otp
        self.hasher = hasher or CredentialHasher()
        self.clock = clock or Clock()
        self.rng = rng or secrets.SystemRandom()
        self.sender = sender

    def _generate_code(self) -> str:
        # randrange over the exact code space, no modulo bias
        return f"{self.rng.randrange(CODE_SPACE):06d}"

    async def _lock_user(self, user_id: uuid.UUID) -> Optional[User]:
        query = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def request_code(self, user_id: uuid.UUID, purpose: str = "login") -> Result[OtpDispatch]:
        """Invalidate outstanding codes for the purpose and issue a fresh one"""
        try:
            user = await self._lock_user(user_id)
            if user is None:
                return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")

            outstanding = await self.db.execute(
                select(UserOtp).where(
                    UserOtp.user_id == user_id,
                    UserOtp.purpose == purpose,
                    UserOtp.consumed == False,  # noqa: E712
                )
            )
            for otp in outstanding.scalars().all():
                otp.consumed = True

            code = self._generate_code()
            code_hash, salt = self.hasher.hash(code)
            now = self.clock.now()
            expires_at = now + timedelta(minutes=self.options.lifetime_minutes)

            challenge = UserOtp(
                user_id=user_id,
                purpose=purpose,
                code_hash=code_hash,
                salt=salt,
                created_at=now,
                expires_at=expires_at,
                consumed=False,
                attempt_count=0,
            )
            self.db.add(challenge)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if self.sender is not None and self.sender.enabled:
            if not await self.sender.send_otp(user.phone_number, code):
                challenge.consumed = True
                await self.db.commit()
                logger.error("OTP delivery failed for user %s", user_id)
                return Result.failure(ErrorKind.DELIVERY_FAILED, "Failed to send OTP. Please try again later.")

        logger.info("Issued %s OTP for user %s, expires %s", purpose, user_id, expires_at.isoformat())
        return Result.success(OtpDispatch(
            masked_destination=mask_destination(user.phone_number),
            expires_at=expires_at,
            debug_code=code if self.options.expose_codes_in_responses else None,
        ))

    async def verify_code(self, user_id: uuid.UUID, purpose: str, submitted_code: str) -> Result[UserOtp]:
        """Check a submitted code against the newest live challenge"""
        try:
            query = (
                select(UserOtp)
                .where(
                    UserOtp.user_id == user_id,
                    UserOtp.purpose == purpose,
                    UserOtp.consumed == False,  # noqa: E712
                )
                .order_by(UserOtp.created_at.desc())
                .with_for_update()
            )
            result = await self.db.execute(query)
            challenge = result.scalars().first()

            if challenge is None:
                return Result.failure(ErrorKind.NO_CHALLENGE_FOUND, "No pending OTP. Please request a new one.")

            now = self.clock.now()
            if now > challenge.expires_at:
                challenge.consumed = True
                await self.db.commit()
                return Result.failure(ErrorKind.EXPIRED_CHALLENGE, "OTP has expired. Request a new code.")

            challenge.attempt_count += 1

            code = (submitted_code or "").strip()
            matched = bool(code) and self.hasher.verify(code, challenge.code_hash, challenge.salt)
            if not matched:
                if challenge.attempt_count >= self.options.max_verification_attempts:
                    challenge.consumed = True
                    await self.db.commit()
                    logger.warning("OTP challenge %s locked after %d attempts", challenge.id, challenge.attempt_count)
                    return Result.failure(
                        ErrorKind.CHALLENGE_LOCKED,
                        "Invalid OTP code. Maximum attempts reached, request a new code.",
                    )
                await self.db.commit()
                return Result.failure(ErrorKind.INVALID_CODE, "Invalid OTP code.")

            challenge.consumed = True
            challenge.verified_at = now
            await self.db.commit()
            return Result.success(challenge)
        except Exception:
            await self.db.rollback()
            raise
