import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from subscription_service.schemas.base import CamelModel


class GeneratePasswordResetRequest(CamelModel):
    lifetime_minutes: Optional[int] = Field(None, ge=5, le=60 * 24 * 7)
    reason: Optional[str] = Field(None, max_length=256)


class PasswordResetTokenResponse(CamelModel):
    token_id: uuid.UUID
    user_id: uuid.UUID
    token: str
    expires_at: datetime


class SessionSummary(CamelModel):
    id: uuid.UUID
    session_id: str
    login_type: Optional[str] = None
    ip_address: Optional[str] = None
    last_seen_ip_address: Optional[str] = None
    device_name: Optional[str] = None
    created_at: datetime
    last_seen_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    is_active: bool
    terminated_by: Optional[str] = None
