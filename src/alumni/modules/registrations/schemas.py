"""
Alumni Registrations Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from alumni.modules.registrations.models import (
    AuditAction,
    RegistrationStatus,
)


class RegistrationCreate(BaseModel):
    """Request body for POST /registrations."""

    # Identity
    staff_number: str | None = Field(None, max_length=20)
    id_or_passport: str = Field(..., min_length=1, max_length=50)
    full_name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    mobile_country_code: str | None = Field(None, max_length=5)
    mobile_number: str | None = Field(None, max_length=20)
    professional_network_handle: str | None = Field(None, max_length=500)

    # Profile
    current_country_code: str | None = Field(None, min_length=2, max_length=2)
    current_city: str | None = Field(None, max_length=100)
    current_employer: str | None = Field(None, max_length=200)
    current_job_title: str | None = Field(None, max_length=200)
    industry: str | None = Field(None, max_length=100)
    qualifications_attained: list[str] = Field(default_factory=list)
    engagement_preferences: list[str] = Field(default_factory=list)
    consent_given: bool

    @model_validator(mode="after")
    def validate_registration(self) -> "RegistrationCreate":
        if not self.consent_given:
            raise ValueError("consent_given must be true to register")

        # Mobile is an optional pair: both parts or neither
        if bool(self.mobile_country_code) != bool(self.mobile_number):
            raise ValueError("mobile_country_code and mobile_number must be provided together")

        return self


class RegistrationSubmitResponse(BaseModel):
    """Response after submitting a registration."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: RegistrationStatus
    message: str = (
        "Registration received. We will verify your details and email you once a decision is made."
    )


class DuplicateCheckRequest(BaseModel):
    """Request body for POST /registrations/check-duplicates."""

    id_or_passport: str | None = Field(None, max_length=50)
    staff_number: str | None = Field(None, max_length=20)
    email: str | None = Field(None, max_length=255)
    mobile_country_code: str | None = Field(None, max_length=5)
    mobile_number: str | None = Field(None, max_length=20)
    professional_network_handle: str | None = Field(None, max_length=500)


class DuplicateCheckResponse(BaseModel):
    is_duplicate: bool
    field: str | None = None
    message: str | None = None


class VerifyEmailResponse(BaseModel):
    """Outcome of following a verification link."""

    outcome: str
    message: str
    registration_id: UUID | None = None


class ApproveRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    """Request body for rejecting a registration."""

    reason: str = Field(..., min_length=3, max_length=1000)
    notes: str | None = Field(None, max_length=2000)


class BulkApproveRequest(BaseModel):
    registration_ids: list[UUID] = Field(..., min_length=1, max_length=100)
    notes: str | None = Field(None, max_length=2000)


class BulkRejectRequest(BaseModel):
    registration_ids: list[UUID] = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=3, max_length=1000)
    notes: str | None = Field(None, max_length=2000)


class BulkItemResult(BaseModel):
    """Per-registration outcome of a bulk operation."""

    registration_id: UUID
    success: bool
    error: str | None = None
    notification_sent: bool = False
    notification_error: str | None = None


class BulkOperationResponse(BaseModel):
    succeeded: int
    failed: int
    results: list[BulkItemResult]


class RegistrationSummary(BaseModel):
    """Registration fields shown to administrators."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    email: str
    staff_number: str | None
    id_or_passport: str
    status: RegistrationStatus
    requires_manual_review: bool
    manual_review_reason: str | None
    manually_reviewed: bool
    verification_attempts: int
    name_similarity_score: int | None
    identity_staff_name: str | None
    identity_department: str | None
    identity_exit_date: date | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    rejection_reason: str | None
    created_at: datetime


class ManualReviewListResponse(BaseModel):
    items: list[RegistrationSummary]
    total: int
    page: int
    page_size: int


class DecisionResponse(BaseModel):
    """Response after an admin approves or rejects a registration."""

    registration: RegistrationSummary
    notification_sent: bool
    notification_error: str | None = None


class AuditLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: AuditAction
    performed_by: str
    is_automated: bool
    previous_status: RegistrationStatus | None
    new_status: RegistrationStatus
    notes: str | None
    created_at: datetime


class AuditLogResponse(BaseModel):
    registration_id: UUID
    entries: list[AuditLogEntryResponse]


class RegistrationStatusResponse(BaseModel):
    """What an applicant may see about their own registration."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    status: RegistrationStatus
    email_verified: bool
    created_at: datetime
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    email_verified_at: datetime | None = None
    message: str


class RegistrationDetail(RegistrationSummary):
    """Full registration record for administrators."""

    mobile_country_code: str | None
    mobile_number: str | None
    professional_network_handle: str | None
    current_country_code: str | None
    current_city: str | None
    current_employer: str | None
    current_job_title: str | None
    industry: str | None
    qualifications_attained: list[str]
    engagement_preferences: list[str]
    consent_given_at: datetime | None
    last_verification_attempt_at: datetime | None
    next_verification_at: datetime | None
    confirmation_email_sent: bool
    approval_email_sent: bool
    rejection_email_sent: bool
    email_verified: bool
    email_verified_at: datetime | None
    token_expiry: datetime | None
    approved_at: datetime | None
    rejected_at: datetime | None
    review_notes: str | None


class RegistrationListResponse(BaseModel):
    items: list[RegistrationSummary]
    total: int
    page: int
    page_size: int
    total_pages: int
