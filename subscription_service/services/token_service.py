import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

import jwt

from subscription_service.config import JwtSettings, settings
from subscription_service.models.user import User
from subscription_service.utils.clock import Clock

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"


def normalize_roles(roles: Iterable[str], is_admin: bool = False) -> List[str]:
    """Lower-cased, de-duplicated role names in first-seen order, with "admin" added for admins"""
    seen: List[str] = []
    for role in roles:
        name = (role or "").strip().lower()
        if name and name not in seen:
            seen.append(name)
    if is_admin and "admin" not in seen:
        seen.append("admin")
    return seen


class TokenIssuer:
    def __init__(self, options: Optional[JwtSettings] = None, clock: Optional[Clock] = None):
        self.options = options or settings.jwt
        self.clock = clock or Clock()

    def issue_token(self, user: User, session_id: str, roles: Iterable[str] = ()) -> str:
        """Create a signed bearer token carrying identity, session and role claims"""
        now = self.clock.now()
        payload: Dict[str, Any] = {
            "sub": str(user.id),
            "email": user.email,
            "name": user.name,
            "isSubscribed": bool(user.is_subscribed),
            "sessionId": session_id,
            "roles": normalize_roles(roles, bool(user.is_admin)),
            "iss": self.options.issuer,
            "aud": self.options.audience or self.options.issuer,
            "iat": now,
            "exp": now + timedelta(minutes=self.options.expiration_minutes),
        }

        if user.phone_number:
            payload["phone"] = user.phone_number
        if user.subscription_id:
            payload["subscriptionId"] = user.subscription_id

        return jwt.encode(payload, self.options.key, algorithm=JWT_ALG)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Validate signature, expiry, issuer and audience.

        Raises:
            jwt.InvalidTokenError: for any invalid, expired or foreign token
        """
        return jwt.decode(
            token,
            self.options.key,
            algorithms=[JWT_ALG],
            issuer=self.options.issuer,
            audience=self.options.audience or self.options.issuer,
            options={"require": ["exp", "sub", "sessionId"]},
        )
