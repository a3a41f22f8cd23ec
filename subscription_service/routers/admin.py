import logging
import uuid
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from subscription_service.dependencies import get_password_reset_service, get_session_registry
from subscription_service.models.user import User
from subscription_service.schemas.admin import (
    GeneratePasswordResetRequest,
    PasswordResetTokenResponse,
    SessionSummary,
)
from subscription_service.services.password_reset_service import PasswordResetService
from subscription_service.services.session_service import SessionRegistry
from subscription_service.utils.auth import require_admin
from subscription_service.utils.errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/users/{user_id}/password-reset", response_model=PasswordResetTokenResponse, status_code=status.HTTP_201_CREATED)
async def generate_password_reset(
    user_id: uuid.UUID,
    reset_request: Optional[GeneratePasswordResetRequest] = None,
    admin: User = Depends(require_admin),
    reset_service: PasswordResetService = Depends(get_password_reset_service),
):
    """
    Issue a one-time password reset token for a user. The plaintext token is
    returned only in this response.
    """
    reset_request = reset_request or GeneratePasswordResetRequest()
    lifetime = timedelta(minutes=reset_request.lifetime_minutes) if reset_request.lifetime_minutes else None
    result = await reset_service.generate_reset_token(
        user_id,
        created_by=admin.email,
        reason=reset_request.reason,
        lifetime=lifetime,
    )
    if not result.ok:
        raise http_error(result)
    return result.value


@router.get("/users/{user_id}/sessions", response_model=List[SessionSummary])
async def list_user_sessions(
    user_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    sessions: SessionRegistry = Depends(get_session_registry),
):
    return await sessions.list_sessions(user_id, limit=limit)


@router.post("/users/{user_id}/sessions/revoke")
async def revoke_user_session(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    sessions: SessionRegistry = Depends(get_session_registry),
):
    """
    End the user's active session; the next request with its token is rejected
    """
    user = await sessions.db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    revoked = await sessions.end_session(user_id, "revoked")
    logger.info("Admin %s revoked sessions of user %s (active session ended: %s)", admin.id, user_id, revoked)
    return {"revoked": revoked}
