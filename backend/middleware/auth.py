"""
Authentication Middleware and Dependencies

Sessions come from the federated sign-in in front of this API, which issues
HS256 bearer tokens signed with JWT_SECRET_KEY and carrying the signed-in
user's email.

Provides:
- get_current_user: user from the bearer token, or None
- get_current_user_required: same, 401 without a valid token
- require_admin: 403 unless the email is in ADMIN_EMAILS
- create_access_token: issue a token (sign-in bridge, tests, tooling)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from config import ProvisioningConfig, Settings, get_provisioning_config, get_settings

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthUser(BaseModel):
    """Signed-in user"""
    email: str
    name: Optional[str] = None
    is_admin: bool = False


def create_access_token(
    email: str,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Create a JWT access token"""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": email,
        "email": email,
        "name": name,
        "type": "access",
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[dict]:
    """Decode and validate a JWT token"""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    if payload.get("type", "access") != "access" or not payload.get("email"):
        return None
    return payload


# ==================== DEPENDENCIES ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    config: ProvisioningConfig = Depends(get_provisioning_config),
) -> Optional[AuthUser]:
    """
    Extract current user from JWT token.
    Returns None if no token or invalid token.
    """
    if not credentials:
        return None

    payload = decode_token(credentials.credentials)
    if not payload:
        return None

    email = payload["email"].strip().lower()
    return AuthUser(email=email, name=payload.get("name"), is_admin=config.is_admin(email))


async def get_current_user_required(
    user: Optional[AuthUser] = Depends(get_current_user),
) -> AuthUser:
    """
    Extract current user from JWT token.
    Raises 401 if no token or invalid token.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return user


async def require_admin(
    user: AuthUser = Depends(get_current_user_required),
) -> AuthUser:
    if not user.is_admin:
        logger.warning(f"Admin access denied for {user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required"
        )
    return user
