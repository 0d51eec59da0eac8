"""
Duplicate Detection

Normalization of the five dedup-sensitive identity fields and the advisory
duplicate check run before a registration is written. The database unique
constraints are the authority; this check exists to give the applicant a
precise message before the insert is attempted.
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from alumni.modules.registrations import repository

logger = logging.getLogger(__name__)

# Fixed priority order in which conflicts are reported
DEDUP_FIELDS: tuple[str, ...] = (
    "id_or_passport",
    "staff_number",
    "email",
    "mobile",
    "professional_network_handle",
)

FIELD_LABELS: dict[str, str] = {
    "id_or_passport": "ID or passport number",
    "staff_number": "staff number",
    "email": "email address",
    "mobile": "mobile number",
    "professional_network_handle": "LinkedIn profile",
}

_MOBILE_SEPARATORS = re.compile(r"[\s\-().]")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_identifier(value: str | None) -> str | None:
    """ID/passport and staff numbers compare uppercase and trimmed."""
    value = _clean(value)
    return value.upper() if value else None


def normalize_email(value: str | None) -> str | None:
    value = _clean(value)
    return value.lower() if value else None


def normalize_handle(value: str | None) -> str | None:
    """Professional network handles compare lowercase, without a trailing slash."""
    value = _clean(value)
    return value.lower().rstrip("/") if value else None


def normalize_mobile(
    country_code: str | None, number: str | None
) -> tuple[str | None, str | None]:
    """
    Normalize the mobile pair. A pair with a missing half is treated as absent.

    "+254" / "254" both become "+254"; separators are dropped from the number.
    """
    country_code = _clean(country_code)
    number = _clean(number)
    if not country_code or not number:
        return None, None
    country_code = "+" + country_code.lstrip("+")
    number = _MOBILE_SEPARATORS.sub("", number)
    return country_code, number or None


@dataclass(frozen=True)
class IdentityFields:
    """The dedup-sensitive fields of a candidate registration, normalized."""

    id_or_passport: str | None
    staff_number: str | None
    email: str | None
    mobile_country_code: str | None
    mobile_number: str | None
    professional_network_handle: str | None

    @classmethod
    def normalize(
        cls,
        id_or_passport: str | None = None,
        staff_number: str | None = None,
        email: str | None = None,
        mobile_country_code: str | None = None,
        mobile_number: str | None = None,
        professional_network_handle: str | None = None,
    ) -> "IdentityFields":
        country_code, number = normalize_mobile(mobile_country_code, mobile_number)
        return cls(
            id_or_passport=normalize_identifier(id_or_passport),
            staff_number=normalize_identifier(staff_number),
            email=normalize_email(email),
            mobile_country_code=country_code,
            mobile_number=number,
            professional_network_handle=normalize_handle(professional_network_handle),
        )

    def value_for(self, field: str):
        """Lookup value for one dedup field, or None when absent."""
        if field == "mobile":
            if self.mobile_country_code and self.mobile_number:
                return (self.mobile_country_code, self.mobile_number)
            return None
        return getattr(self, field)

    def as_columns(self) -> dict[str, str | None]:
        return {
            "id_or_passport": self.id_or_passport,
            "staff_number": self.staff_number,
            "email": self.email,
            "mobile_country_code": self.mobile_country_code,
            "mobile_number": self.mobile_number,
            "professional_network_handle": self.professional_network_handle,
        }


async def find_conflict(db: AsyncSession, fields: IdentityFields) -> str | None:
    """
    Return the first dedup field already held by a stored registration.

    Fields are checked in DEDUP_FIELDS order; absent fields are skipped.

    Returns:
        The conflicting field name, or None if there is no conflict
    """
    for field in DEDUP_FIELDS:
        value = fields.value_for(field)
        if value is None:
            continue
        if await repository.exists_by_field(db, field, value):
            logger.info(f"Duplicate registration detected on {field}")
            return field
    return None


def duplicate_message(field: str) -> str:
    label = FIELD_LABELS.get(field, field)
    return f"A registration with this {label} already exists."
