"""
Identity Record Lookup

Client for the external personnel registry. A lookup resolves a staff number
(preferred) or an ID/passport number to the personnel record of a former
employee.

Outcomes are values, not exceptions: FOUND, NOT_FOUND or UNAVAILABLE. Timeouts,
connection errors and unexpected responses are all UNAVAILABLE so the
scheduler retries later instead of rejecting the applicant.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol

import httpx

from alumni.core.config import MockIdentityRecord, settings

logger = logging.getLogger(__name__)


class LookupOutcome(str, enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class IdentityRecord:
    """A personnel record as returned by the registry."""

    staff_number: str | None
    full_name: str
    department: str | None = None
    exit_date: date | None = None


@dataclass(frozen=True)
class IdentityLookupResult:
    outcome: LookupOutcome
    record: IdentityRecord | None = None
    is_mock: bool = False
    error: str | None = None

    @classmethod
    def found(cls, record: IdentityRecord, is_mock: bool = False) -> "IdentityLookupResult":
        return cls(outcome=LookupOutcome.FOUND, record=record, is_mock=is_mock)

    @classmethod
    def not_found(cls, is_mock: bool = False) -> "IdentityLookupResult":
        return cls(outcome=LookupOutcome.NOT_FOUND, is_mock=is_mock)

    @classmethod
    def unavailable(cls, error: str) -> "IdentityLookupResult":
        return cls(outcome=LookupOutcome.UNAVAILABLE, error=error)


class IdentityLookup(Protocol):
    async def lookup(
        self, staff_number: str | None, id_or_passport: str | None
    ) -> IdentityLookupResult: ...


def _optional_str(value) -> str | None:
    if value is None:
        return None
    return str(value)


def _parse_exit_date(value) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable exit date from identity registry: {value!r}")
        return None


class HttpIdentityLookup:
    """Looks identities up over HTTP with a bounded timeout."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0))
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def lookup(
        self, staff_number: str | None, id_or_passport: str | None
    ) -> IdentityLookupResult:
        if staff_number:
            payload = {"staffNumber": staff_number}
        elif id_or_passport:
            payload = {"idOrPassport": id_or_passport}
        else:
            return IdentityLookupResult.not_found()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.warning(f"Identity registry timed out after {self.timeout.read}s: {e}")
            return IdentityLookupResult.unavailable("timeout")
        except httpx.RequestError as e:
            logger.warning(f"Identity registry unreachable: {e}")
            return IdentityLookupResult.unavailable(f"connection error: {e}")

        if response.status_code == 404:
            return IdentityLookupResult.not_found()
        if response.status_code != 200:
            logger.error(f"Identity registry returned HTTP {response.status_code}")
            return IdentityLookupResult.unavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            logger.error("Identity registry returned a non-JSON body")
            return IdentityLookupResult.unavailable("invalid response body")

        if not isinstance(data, dict):
            logger.error(f"Identity registry returned a {type(data).__name__} instead of an object")
            return IdentityLookupResult.unavailable("invalid response body")

        if not data.get("found") or not data.get("fullName"):
            return IdentityLookupResult.not_found()

        full_name = data["fullName"]
        if not isinstance(full_name, str):
            logger.error(f"Identity registry returned a non-string fullName: {full_name!r}")
            return IdentityLookupResult.unavailable("invalid response body")

        return IdentityLookupResult.found(
            IdentityRecord(
                staff_number=_optional_str(data.get("staffNumber")),
                full_name=full_name,
                department=_optional_str(data.get("department")),
                exit_date=_parse_exit_date(data.get("exitDate")),
            )
        )


class MockIdentityLookup:
    """
    Serves configured fake personnel records. Development and testing only.

    Records match on staff number or ID/passport, case-insensitively.
    """

    def __init__(self, records: list[MockIdentityRecord]):
        self.records = records

    async def lookup(
        self, staff_number: str | None, id_or_passport: str | None
    ) -> IdentityLookupResult:
        logger.warning("Identity mock mode enabled - using fake personnel records")

        for record in self.records:
            by_staff = staff_number and record.staff_number.upper() == staff_number.upper()
            by_id = (
                not staff_number
                and id_or_passport
                and record.id_or_passport
                and record.id_or_passport.upper() == id_or_passport.upper()
            )
            if by_staff or by_id:
                return IdentityLookupResult.found(
                    IdentityRecord(
                        staff_number=record.staff_number,
                        full_name=record.full_name,
                        department=record.department,
                        exit_date=record.exit_date,
                    ),
                    is_mock=True,
                )

        return IdentityLookupResult.not_found(is_mock=True)


def get_identity_lookup() -> IdentityLookup:
    """The lookup configured for this process."""
    if settings.identity_mock_mode:
        return MockIdentityLookup(settings.identity_mock_records)
    return HttpIdentityLookup(
        url=settings.identity_service_url,
        api_key=settings.identity_service_api_key,
        timeout_seconds=settings.identity_lookup_timeout_seconds,
    )
