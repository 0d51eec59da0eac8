"""
Verification Tokens

Issues and validates the email-verification tokens that move an Approved
registration to Active.

Tokens come from `secrets.token_urlsafe` and only their SHA-256 hash is
stored, so a database leak does not expose usable links. The hash is kept
after activation so that a second click on the same link reports
"already verified" instead of "not found".
"""

import enum
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from alumni.core.config import settings
from alumni.modules.registrations import repository
from alumni.modules.registrations.models import Registration, RegistrationStatus

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 32  # 256 bits of entropy when using token_urlsafe


class TokenStatus(str, enum.Enum):
    VALID = "valid"
    ALREADY_VERIFIED = "already_verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenValidationResult:
    status: TokenStatus
    registration: Registration | None = None


def hash_token(token: str) -> str:
    """Hex-encoded SHA-256 of a plain token."""
    return hashlib.sha256(token.encode()).hexdigest()


def calculate_expiry(issued_at: datetime, days: int | None = None) -> datetime:
    return issued_at + timedelta(days=days if days is not None else settings.verification_token_days)


def issue_token(registration: Registration, issued_at: datetime | None = None) -> str:
    """
    Generate a token for a registration and record its hash and expiry.

    The registration is modified in place; the caller commits.

    Returns:
        The plain token, to be embedded in the verification link
    """
    issued_at = issued_at or datetime.now(UTC)
    token = secrets.token_urlsafe(TOKEN_LENGTH)
    registration.verification_token_hash = hash_token(token)
    registration.token_expiry = calculate_expiry(issued_at)
    return token


async def validate_token(
    db: AsyncSession,
    token: str,
    now: datetime | None = None,
) -> TokenValidationResult:
    """
    Resolve a plain token to its registration.

    NOT_FOUND if no Approved or Active registration holds it, ALREADY_VERIFIED
    if the holder is already Active, EXPIRED once the current time is past the
    recorded expiry, otherwise VALID.
    """
    now = now or datetime.now(UTC)

    if not token:
        return TokenValidationResult(TokenStatus.NOT_FOUND)

    registration = await repository.get_by_token_hash(db, hash_token(token))
    if registration is None:
        logger.info("Verification token not found")
        return TokenValidationResult(TokenStatus.NOT_FOUND)

    if registration.status == RegistrationStatus.ACTIVE:
        return TokenValidationResult(TokenStatus.ALREADY_VERIFIED, registration)

    if registration.status != RegistrationStatus.APPROVED:
        logger.warning(
            f"Token presented for registration {registration.id} in status {registration.status.value}"
        )
        return TokenValidationResult(TokenStatus.NOT_FOUND)

    if registration.token_expiry is None or now > registration.token_expiry:
        logger.info(f"Verification token expired for registration {registration.id}")
        return TokenValidationResult(TokenStatus.EXPIRED, registration)

    return TokenValidationResult(TokenStatus.VALID, registration)
