"""
Verification Engine

Decides what should happen to one Pending registration by looking up the
applicant's personnel record and comparing names. The only side effect is the
single lookup call, so the engine is tested by injecting a stub lookup.
"""

import enum
import logging
from dataclasses import dataclass

from alumni.modules.registrations.identity import (
    IdentityLookup,
    IdentityRecord,
    LookupOutcome,
)
from alumni.modules.registrations.models import Registration
from alumni.modules.registrations.name_matching import similarity

logger = logging.getLogger(__name__)

DEFAULT_NAME_MATCH_THRESHOLD = 80

REASON_IDENTITY_NOT_FOUND = "identity not found"
REASON_NAME_MISMATCH = "name does not match records"
REASON_SERVICE_UNAVAILABLE = "verification service unavailable"


class Decision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUIRE_MANUAL_REVIEW = "require_manual_review"
    LOOKUP_UNAVAILABLE = "lookup_unavailable"


@dataclass(frozen=True)
class VerificationDecision:
    """What to do with a registration, plus the evidence behind it."""

    decision: Decision
    reason: str | None = None
    score: int | None = None
    record: IdentityRecord | None = None
    is_mock: bool = False


class VerificationEngine:
    """
    Approve when the personnel record's name is similar enough, reject when it
    is not, hand over to a human when no record exists.

    In mock mode the lookup is trusted and the score is always 100.
    """

    def __init__(
        self,
        lookup: IdentityLookup,
        threshold: int = DEFAULT_NAME_MATCH_THRESHOLD,
        trust_mock_records: bool = True,
    ):
        self.lookup = lookup
        self.threshold = threshold
        self.trust_mock_records = trust_mock_records

    async def verify(self, registration: Registration) -> VerificationDecision:
        result = await self.lookup.lookup(
            staff_number=registration.staff_number,
            id_or_passport=registration.id_or_passport,
        )

        if result.outcome == LookupOutcome.UNAVAILABLE:
            return VerificationDecision(
                decision=Decision.LOOKUP_UNAVAILABLE,
                reason=result.error or REASON_SERVICE_UNAVAILABLE,
            )

        if result.outcome == LookupOutcome.NOT_FOUND or result.record is None:
            return VerificationDecision(
                decision=Decision.REQUIRE_MANUAL_REVIEW,
                reason=REASON_IDENTITY_NOT_FOUND,
                is_mock=result.is_mock,
            )

        if result.is_mock and self.trust_mock_records:
            score = 100
        else:
            score = similarity(registration.full_name, result.record.full_name)

        logger.info(
            f"Registration {registration.id}: name similarity {score} "
            f"(threshold {self.threshold}, mock={result.is_mock})"
        )

        if score >= self.threshold:
            return VerificationDecision(
                decision=Decision.APPROVE,
                score=score,
                record=result.record,
                is_mock=result.is_mock,
            )

        return VerificationDecision(
            decision=Decision.REJECT,
            reason=REASON_NAME_MISMATCH,
            score=score,
            record=result.record,
            is_mock=result.is_mock,
        )
