"""
Admin Authentication

FastAPI dependencies that resolve the administrator acting on a request.
Every admin decision is attributed to `AdminUser.actor`, which ends up in the
audit log.

SECURITY NOTE:
- The development bypass token is ONLY honoured when PYTHON_ENV=development
- Staging and production always require a signed JWT
"""

import logging
import os
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from alumni.core.config import settings
from alumni.core.security import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for admin actions",
)

ADMIN_ROLES = frozenset({"alumni_admin", "super_admin"})
DEV_TOKEN = "dev-token"


@dataclass
class AdminUser:
    """An authenticated administrator, populated from JWT claims."""

    id: str
    email: str
    role: str
    name: str | None = None

    @property
    def actor(self) -> str:
        """Identity recorded as `performed_by` in audit entries."""
        return self.email or self.id

    def __str__(self) -> str:
        return f"AdminUser(id={self.id}, email={self.email}, role={self.role})"


def _is_dev_mode_safe() -> bool:
    env_var = os.getenv("PYTHON_ENV", "").lower()
    return (
        settings.is_development
        and not settings.is_production
        and env_var not in ("production", "staging")
    )


_DEV_ADMIN = AdminUser(
    id="dev-admin",
    email="admin@alumni.local",
    role="super_admin",
    name="Development Admin",
)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_admin_from_token(token: str) -> AdminUser:
    """
    Validate a bearer token and build the AdminUser it represents.

    Raises:
        HTTPException 401: If the token is invalid, expired or missing claims
    """
    if token == DEV_TOKEN and _is_dev_mode_safe():
        logger.warning("SECURITY: development admin token used")
        return _DEV_ADMIN

    payload = decode_token(token)
    if payload is None:
        logger.warning("Invalid or expired admin JWT")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    subject = payload.get("sub")
    if not subject:
        raise _unauthorized("INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims.")

    if payload.get("type", "access") != "access":
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    return AdminUser(
        id=str(subject),
        email=payload.get("email", ""),
        role=payload.get("role", ""),
        name=payload.get("name"),
    )


async def get_current_admin_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AdminUser:
    """
    FastAPI dependency returning the authenticated administrator.

    Raises:
        HTTPException 401: If the token is missing, invalid or expired
        HTTPException 403: If the caller does not hold an admin role
    """
    user = resolve_admin_from_token(credentials.credentials)

    if user.role not in ADMIN_ROLES:
        logger.warning(f"Access denied: {user.id} has role '{user.role}'")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ADMIN_ACCESS_REQUIRED",
                "message": "Alumni admin access is required for this endpoint.",
            },
        )
    logger.debug(f"Authenticated admin: {user.id} ({user.email})")
    return user


__all__ = [
    "AdminUser",
    "get_current_admin_user",
    "resolve_admin_from_token",
]
