"""JWT bearer authentication.

Tokens are issued by the external identity provider and carry the user id in
``sub`` and the user's role in ``role``. ``create_access_token`` mints
compatible tokens for tooling and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from transcoder.core.config import settings
from transcoder.modules.auth.permissions import Principal, USER_ROLE


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    role: str = USER_ROLE
    exp: datetime
    iat: Optional[datetime] = None
    type: str = "access"
    jti: Optional[str] = None


def create_access_token(
    user_id: str,
    role: str = USER_ROLE,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create an access token.

    Args:
        user_id: User identifier (``sub`` claim)
        role: ``admin`` or ``user``
        expires_delta: Token lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        str: Encoded token
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenPayload]:
    """Decode and validate an access token.

    Expired tokens and tokens with a bad signature are rejected.

    Returns:
        TokenPayload | None: Decoded payload if valid, None otherwise
    """
    try:
        claims = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        payload = TokenPayload(**claims)
    except (JWTError, ValidationError):
        return None

    if payload.type != "access":
        return None
    return payload


security = HTTPBearer()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """FastAPI dependency resolving the caller from the bearer token.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(user_id=payload.sub, role=payload.role)


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal
