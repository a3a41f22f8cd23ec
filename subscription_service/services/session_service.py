import hashlib
import hmac
import logging
import random
import secrets
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.models.session import UserSession
from subscription_service.models.user import User
from subscription_service.services.result import ErrorKind, Result
from subscription_service.utils.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def device_fingerprint(client: ClientInfo) -> str:
    raw = f"{client.ip_address or ''}|{client.user_agent or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def classify_device(user_agent: Optional[str]) -> str:
    """Best-effort platform label from a user-agent string"""
    ua = (user_agent or "").lower()
    # iOS agents also say "like Mac OS X" and Android agents say "Linux", so test those first
    if "iphone" in ua or "ipad" in ua or "ipod" in ua:
        return "iOS"
    if "android" in ua:
        return "Android"
    if "windows" in ua:
        return "Windows"
    if "macintosh" in ua or "mac os x" in ua:
        return "macOS"
    if "linux" in ua or "x11" in ua:
        return "Linux"
    return "Unknown"


class SessionRegistry:
    """
    Keeps at most one active session per user and answers, on every authenticated
    request, whether a presented session id is still the live one.

    Concurrent logins for one user resolve last-write-wins: both may briefly succeed,
    the later commit owns User.current_session_id.
    """

    def __init__(self, db: AsyncSession, clock: Optional[Clock] = None, rng: Optional[random.Random] = None):
        self.db = db
        self.clock = clock or Clock()
        self.rng = rng or secrets.SystemRandom()

    def _new_session_id(self) -> str:
        return self.rng.randbytes(16).hex()

    async def lock_user(self, user_id: uuid.UUID) -> Optional[User]:
        query = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _deactivate_active(self, user_id: uuid.UUID, reason: str) -> int:
        now = self.clock.now()
        result = await self.db.execute(
            select(UserSession).where(UserSession.user_id == user_id, UserSession.is_active == True)  # noqa: E712
        )
        sessions = result.scalars().all()
        for session in sessions:
            session.is_active = False
            session.ended_at = now
            session.terminated_by = reason
        return len(sessions)

    async def start_session(
        self, user_id: uuid.UUID, login_type: str, client: Optional[ClientInfo] = None
    ) -> Result[str]:
        """Replace whatever session the user had with a new one and return its id"""
        client = client or ClientInfo()
        try:
            user = await self.lock_user(user_id)
            if user is None:
                return Result.failure(ErrorKind.USER_NOT_FOUND, "User not found.")

            replaced = await self._deactivate_active(user_id, "replaced")

            now = self.clock.now()
            session_id = self._new_session_id()
            user.current_session_id = session_id
            self.db.add(UserSession(
                user_id=user_id,
                session_id=session_id,
                login_type=login_type,
                ip_address=client.ip_address,
                last_seen_ip_address=client.ip_address,
                user_agent=client.user_agent[:512] if client.user_agent else None,
                device_signature=device_fingerprint(client),
                device_name=classify_device(client.user_agent),
                created_at=now,
                last_seen_at=now,
                is_active=True,
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if replaced:
            logger.info("Session for user %s replaced %d earlier session(s)", user_id, replaced)
        return Result.success(session_id)

    async def validate_session(self, user_id: uuid.UUID, session_id: str, client_ip: Optional[str] = None) -> bool:
        """
        Fail closed unless session_id is the user's current one.

        A valid check also stamps last-seen on the session row; errors there are
        logged and never fail the request.
        """
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None or not user.current_session_id or not session_id:
            return False
        if not hmac.compare_digest(user.current_session_id.encode("utf-8"), session_id.encode("utf-8")):
            return False

        try:
            result = await self.db.execute(
                select(UserSession).where(UserSession.user_id == user_id, UserSession.session_id == session_id)
            )
            session = result.scalars().first()
            if session is not None:
                session.last_seen_at = self.clock.now()
                session.last_seen_ip_address = client_ip
                await self.db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Could not update last-seen for session of user %s: %s", user_id, exc)
            await self.db.rollback()
        return True

    async def terminate(self, user: User, reason: str) -> int:
        """
        Deactivate the user's sessions and clear the pointer inside the caller's
        transaction. Nothing is committed here.
        """
        ended = await self._deactivate_active(user.id, reason)
        user.current_session_id = None
        return ended

    async def end_session(self, user_id: uuid.UUID, reason: str) -> bool:
        """Deactivate the active session and clear the user's pointer to it"""
        try:
            user = await self.lock_user(user_id)
            if user is None:
                return False
            ended = await self.terminate(user, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Ended %d session(s) for user %s (%s)", ended, user_id, reason)
        return ended > 0

    async def list_sessions(self, user_id: uuid.UUID, limit: int = 20) -> List[UserSession]:
        query = (
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .order_by(desc(UserSession.created_at))
            .limit(limit)
        )
        result = await self.db.execute(query)
        return result.scalars().all()
