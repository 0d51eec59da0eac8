"""
Security Utilities

JWT helpers for admin actor tokens. Tokens are issued by the admin console's
identity provider; this service only verifies them. `create_access_token` exists
for tooling and tests that need a signed token.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from alumni.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_TOKEN_MINUTES = 60


def create_access_token(
    subject: str,
    claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for the given subject."""
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=DEFAULT_ACCESS_TOKEN_MINUTES))
    to_encode: dict[str, Any] = dict(claims or {})
    to_encode.update({"sub": subject, "exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT.

    Returns:
        The token payload, or None if the signature, algorithm or expiry check fails
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"JWT decode failed: {e}")
        return None
