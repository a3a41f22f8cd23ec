import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.config import JwtSettings, OtpSettings
from subscription_service.models.user import Role, User, UserRole
from subscription_service.schemas.auth import RegisterRequest
from subscription_service.services.credential_hasher import CredentialHasher
from subscription_service.services.otp_service import OtpService, normalize_phone
from subscription_service.services.result import ErrorKind, Result
from subscription_service.services.session_service import ClientInfo, SessionRegistry
from subscription_service.services.token_service import TokenIssuer, normalize_roles
from subscription_service.utils.clock import Clock
from subscription_service.utils.msg91_client import MSG91Client
from subscription_service.utils.security import dummy_verify, get_password_hash, verify_password

logger = logging.getLogger(__name__)

LOGIN_PURPOSE = "login"
INVALID_CREDENTIALS = "Invalid credentials."


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def load_roles(db: AsyncSession, user: User) -> List[str]:
    result = await db.execute(
        select(Role.name).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user.id)
    )
    return normalize_roles(result.scalars().all(), bool(user.is_admin))


@dataclass
class OtpDispatchResult:
    masked_phone: str
    expires_at: datetime
    is_active: bool
    debug_code: Optional[str] = None


@dataclass
class LoginResult:
    user: User
    token: str
    roles: List[str]


class AuthService:
    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        otp_options: Optional[OtpSettings] = None,
        jwt_options: Optional[JwtSettings] = None,
        hasher: Optional[CredentialHasher] = None,
        rng: Optional[random.Random] = None,
        sender: Optional[MSG91Client] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.otp_service = OtpService(db, options=otp_options, hasher=hasher, clock=self.clock, rng=rng, sender=sender)
        self.sessions = SessionRegistry(db, clock=self.clock, rng=rng)
        self.tokens = TokenIssuer(jwt_options, clock=self.clock)

    async def register(self, user_data: RegisterRequest) -> Result[User]:
        """
        Create a user with KYC details
        """
        if not user_data.accept_terms:
            return Result.failure(ErrorKind.VALIDATION_FAILURE, "Terms and conditions must be accepted.")

        email = normalize_email(user_data.email)
        phone = normalize_phone(user_data.phone_number)

        email_result = await self.db.execute(select(User.id).where(User.email == email))
        if email_result.first() is not None:
            return Result.failure(ErrorKind.EMAIL_TAKEN, "User with this email already exists.")

        phone_result = await self.db.execute(select(User.id).where(User.phone_number == phone))
        if phone_result.first() is not None:
            return Result.failure(ErrorKind.PHONE_TAKEN, "User with this mobile number already exists.")

        now = self.clock.now()
        user = User(
            name=user_data.name.strip(),
            email=email,
            phone_number=phone,
            password_hash=get_password_hash(user_data.password),
            government_id_type=user_data.government_id_type.strip(),
            government_id_number=user_data.government_id_number.strip(),
            government_document_url=(user_data.government_document_url or "").strip() or None,
            kyc_verified=True,
            is_admin=False,
            is_subscribed=False,
            is_registration_complete=False,
            terms_accepted_at=now,
            risk_policy_accepted_at=now,
            created_at=now,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(user)
        return Result.success(user)

    async def get_roles(self, user: User) -> List[str]:
        return await load_roles(self.db, user)

    async def _login(self, user: User, login_type: str, client: Optional[ClientInfo]) -> Result[LoginResult]:
        started = await self.sessions.start_session(user.id, login_type, client)
        if not started.ok:
            return Result.failure(started.error, started.message)
        roles = await self.get_roles(user)
        token = self.tokens.issue_token(user, started.value, roles)
        return Result.success(LoginResult(user=user, token=token, roles=roles))

    async def _find_by_phone(self, phone_number: str) -> Optional[User]:
        query = select(User).where(User.phone_number == normalize_phone(phone_number), User.is_admin == False)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalars().first()

    async def request_login_otp(self, phone_number: str, password: str) -> Result[OtpDispatchResult]:
        user = await self._find_by_phone(phone_number)
        if user is None:
            dummy_verify()
            logger.info("OTP requested for unknown phone number")
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            logger.info("OTP requested with wrong password for user %s", user.id)
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        dispatched = await self.otp_service.request_code(user.id, LOGIN_PURPOSE)
        if not dispatched.ok:
            return Result.failure(dispatched.error, dispatched.message)

        return Result.success(OtpDispatchResult(
            masked_phone=dispatched.value.masked_destination,
            expires_at=dispatched.value.expires_at,
            is_active=bool(user.is_registration_complete and user.is_subscribed),
            debug_code=dispatched.value.debug_code,
        ))

    async def verify_login_otp(self, phone_number: str, code: str, client: Optional[ClientInfo] = None) -> Result[LoginResult]:
        user = await self._find_by_phone(phone_number)
        if user is None:
            logger.info("OTP verification for unknown phone number")
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        verified = await self.otp_service.verify_code(user.id, LOGIN_PURPOSE, code)
        if not verified.ok:
            logger.info("OTP verification failed for user %s: %s", user.id, verified.error.value)
            return Result.failure(verified.error, verified.message)

        return await self._login(user, "otp", client)

    async def admin_login(self, email: str, password: str, client: Optional[ClientInfo] = None) -> Result[LoginResult]:
        result = await self.db.execute(select(User).where(User.email == normalize_email(email)))
        user = result.scalars().first()
        if user is None:
            dummy_verify()
            logger.info("Admin login for unknown email")
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            logger.info("Admin login with wrong password for user %s", user.id)
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)
        if "admin" not in await self.get_roles(user):
            logger.warning("Admin login attempted by non-admin user %s", user.id)
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        return await self._login(user, "password", client)

    async def logout(self, user_id: uuid.UUID) -> bool:
        return await self.sessions.end_session(user_id, "logout")
