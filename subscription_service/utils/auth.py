import logging
import uuid
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.database import get_db
from subscription_service.dependencies import get_clock
from subscription_service.models.user import User
from subscription_service.services.auth_service import load_roles
from subscription_service.services.session_service import ClientInfo, SessionRegistry
from subscription_service.services.token_service import TokenIssuer
from subscription_service.utils.clock import Clock

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def client_info(request: Request) -> ClientInfo:
    """Caller IP (first X-Forwarded-For hop when behind a proxy) and user agent"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientInfo(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> User:
    """Resolve the bearer token to a user whose session is still the live one"""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Not authenticated")

    try:
        claims = TokenIssuer(clock=clock).decode_token(credentials.credentials)
        user_id = uuid.UUID(claims["sub"])
    except (jwt.InvalidTokenError, ValueError) as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise _unauthorized("Could not validate credentials")

    registry = SessionRegistry(db, clock=clock)
    if not await registry.validate_session(user_id, str(claims["sessionId"]), client_info(request).ip_address):
        logger.info("Stale or revoked session presented for user %s", user_id)
        raise _unauthorized("Session is no longer valid. Please log in again.")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("Could not validate credentials")

    return user


async def require_admin(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> User:
    # Roles come from user_roles, not the token claims
    if "admin" not in await load_roles(db, current_user):
        logger.warning("Admin route requested by user %s without the admin role", current_user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user
