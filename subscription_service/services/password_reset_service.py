import base64
import logging
import random
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.config import PasswordResetSettings, settings
from subscription_service.models.token import PasswordResetToken
from subscription_service.models.user import User
from subscription_service.services.credential_hasher import CredentialHasher, InvalidInput
from subscription_service.services.result import ErrorKind, Result
from subscription_service.services.session_service import SessionRegistry
from subscription_service.utils.clock import Clock
from subscription_service.utils.security import get_password_hash

logger = logging.getLogger(__name__)


@dataclass
class PasswordResetTokenResult:
    token_id: uuid.UUID
    user_id: uuid.UUID
    token: str
    expires_at: datetime


class PasswordResetService:
    """
    Single-use recovery tokens. Only the hash is stored, so the plaintext returned by
    generate_reset_token is the one and only copy. Several tokens may be outstanding
    for the same user.
    """

    def __init__(
        self,
        db: AsyncSession,
        options: Optional[PasswordResetSettings] = None,
        hasher: Optional[CredentialHasher] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.options = options or settings.password_reset
        self.hasher = hasher or CredentialHasher()
        self.clock = clock or Clock()
        self.rng = rng or secrets.SystemRandom()

    def _generate_secure_token(self) -> str:
        return base64.urlsafe_b64encode(self.rng.randbytes(32)).decode("ascii").rstrip("=")

    async def generate_reset_token(
        self,
        user_id: uuid.UUID,
        created_by: str,
        reason: Optional[str] = None,
        lifetime: Optional[timedelta] = None,
    ) -> Result[PasswordResetTokenResult]:
        if lifetime is not None and lifetime <= timedelta(0):
            return Result.failure(ErrorKind.VALIDATION_FAILURE, "Lifetime must be positive.")

        user = await self.db.get(User, user_id)
        if user is None:
            return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")

        token = self._generate_secure_token()
        token_hash, token_salt = self.hasher.hash(token)
        now = self.clock.now()
        expires_at = now + (lifetime or timedelta(hours=self.options.default_lifetime_hours))

        reset_token = PasswordResetToken(
            user_id=user_id,
            token_hash=token_hash,
            token_salt=token_salt,
            created_at=now,
            created_by=created_by or "system",
            expires_at=expires_at,
            reason=reason,
        )
        self.db.add(reset_token)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Password reset token %s issued for user %s by %s", reset_token.id, user_id, created_by)
        return Result.success(PasswordResetTokenResult(
            token_id=reset_token.id,
            user_id=user_id,
            token=token,
            expires_at=expires_at,
        ))

    async def redeem_reset_token(self, token_id: uuid.UUID, token: str, new_password: str) -> Result[User]:
        """Consume a token, set the new password and end whatever session was live"""
        invalid = Result.failure(ErrorKind.TOKEN_INVALID, "Reset token is invalid or has expired.")
        try:
            query = select(PasswordResetToken).where(PasswordResetToken.id == token_id).with_for_update()
            reset_token = (await self.db.execute(query)).scalars().first()
            if reset_token is None or reset_token.consumed_at is not None:
                return invalid

            now = self.clock.now()
            if now > reset_token.expires_at:
                logger.info("Expired password reset token %s presented", token_id)
                return invalid

            try:
                matched = self.hasher.verify(token, reset_token.token_hash, reset_token.token_salt)
            except InvalidInput:
                matched = False
            if not matched:
                logger.warning("Password reset token %s presented with a wrong secret", token_id)
                return invalid

            registry = SessionRegistry(self.db, clock=self.clock)
            user = await registry.lock_user(reset_token.user_id)
            if user is None:
                return invalid

            reset_token.consumed_at = now
            user.password_hash = get_password_hash(new_password)
            ended = await registry.terminate(user, "password_reset")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Password reset for user %s ended %d session(s)", user.id, ended)
        return Result.success(user)
