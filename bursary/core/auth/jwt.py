from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from bursary.core.config import settings
from bursary.core.exceptions import AuthenticationError


def create_access_token(user_id: int, tenant_id: int, role: str) -> str:
    """Create JWT access token."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user_id),
        "tenant_id": tenant_id,
        "role": str(role),
        "type": "access",
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, token_type: str = "access") -> dict[str, Any]:
    """
    Decode and validate JWT token.

    Args:
        token: JWT token string
        token_type: Expected token type

    Returns:
        Decoded token payload

    Raises:
        AuthenticationError: If token is invalid, expired or lacks a tenant
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {str(e)}")

    if payload.get("type") != token_type:
        raise AuthenticationError(f"Invalid token type, expected {token_type}")

    if payload.get("tenant_id") is None:
        raise AuthenticationError("Token is not bound to a tenant")

    return payload
