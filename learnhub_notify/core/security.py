"""
Bearer token handling.

Tokens are issued by the platform's auth service. This service only
reads the user id from them; `create_access_token` exists for
service-to-service calls and tests.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from learnhub_notify.core.config import settings


TOKEN_TYPE_ACCESS = "access"


def create_access_token(user_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(user_id), "type": TOKEN_TYPE_ACCESS, "iat": now, "exp": expire}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> Optional[str]:
    """
    Return the token's subject (user id), or None if the token is
    malformed, expired or not an access token.
    """
    try:
        # jose rejects an expired "exp" claim itself
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != TOKEN_TYPE_ACCESS:
        return None
    return payload.get("sub")
