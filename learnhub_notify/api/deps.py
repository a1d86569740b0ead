from fastapi import HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import uuid
import logging

from learnhub_notify.db.database import get_db
from learnhub_notify.models import User, UserRole
from learnhub_notify.core.security import verify_access_token
from learnhub_notify.repositories.user_repo import UserRepository

logger = logging.getLogger(__name__)

# Security scheme for Swagger UI
security = HTTPBearer()

PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.INSTRUCTOR)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


# =====================================================
# Get Current user
# =====================================================
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency that validates JWT token and returns current user.

    Raises:
        HTTPException 401: If token is invalid or the user is gone
        HTTPException 403: If the user is inactive
    """
    subject = verify_access_token(credentials.credentials)
    if subject is None:
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        raise _unauthorized("Invalid token subject")

    user = await UserRepository(db).get_active_by_id(user_id)
    if user is None:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )
    return user


# =====================================================
# Role checks
# =====================================================
async def require_privileged(
    current_user: User = Depends(get_current_user)
) -> User:
    """Only admins and instructors may send notifications to others."""
    if current_user.role not in PRIVILEGED_ROLES:
        logger.warning(f"User {current_user.id} ({current_user.role.value}) tried to send a notification")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only instructors and admins can send notifications"
        )
    return current_user
