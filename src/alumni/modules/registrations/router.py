"""
Alumni Registrations Router

Public endpoints used by applicants. No authentication; abuse is limited by
per-client rate limits.

Endpoints:
- POST /registrations - Submit a registration
- POST /registrations/check-duplicates - Check identity fields before submitting
- GET /registrations/verify/{token} - Follow the email verification link
- GET /registrations/status - Registration status by email
- GET /registrations/{id}/status - Registration status by ID
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni.core.database import get_db
from alumni.core.rate_limit import rate_limit
from alumni.modules.registrations import service
from alumni.modules.registrations.duplicates import duplicate_message
from alumni.modules.registrations.models import Registration
from alumni.modules.registrations.schemas import (
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    RegistrationCreate,
    RegistrationStatusResponse,
    RegistrationSubmitResponse,
    VerifyEmailResponse,
)
from alumni.modules.registrations.service import (
    DuplicateIdentityError,
    RegistrationNotFoundError,
)
from alumni.modules.registrations.tokens import TokenStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=RegistrationSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Alumni Registration",
    description="""
Submit a new alumni registration.

The registration is stored as `pending` and a confirmation email is sent.
Identity is then verified in the background against personnel records; the
applicant is emailed once a decision has been made.

**Duplicate Prevention:** ID/passport, staff number, email, mobile number and
LinkedIn profile must each be unique across all registrations.
""",
    responses={
        409: {
            "description": "Duplicate identity",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "DUPLICATE_IDENTITY",
                            "message": "A registration with this email address already exists.",
                            "field": "email",
                        }
                    }
                }
            },
        },
        429: {"description": "Rate limit exceeded"},
    },
    dependencies=[Depends(rate_limit("registrations_submit", limit=5, window_seconds=60))],
)
async def submit_registration(
    data: RegistrationCreate,
    db: AsyncSession = Depends(get_db),
) -> RegistrationSubmitResponse:
    try:
        registration = await service.submit_registration(db, data)
    except DuplicateIdentityError as e:
        logger.info(f"Registration rejected as duplicate on {e.field}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": e.error_code,
                "message": e.message,
                "field": e.field,
            },
        ) from e

    return RegistrationSubmitResponse(id=registration.id, status=registration.status)


@router.post(
    "/check-duplicates",
    response_model=DuplicateCheckResponse,
    summary="Check For Duplicate Registration",
    description="""
Report the first identity field that is already registered, checked in the
order: ID/passport, staff number, email, mobile, LinkedIn profile. Empty
fields are ignored.

This is advisory; submission re-checks and the database enforces uniqueness.
""",
    dependencies=[Depends(rate_limit("registrations_check", limit=30, window_seconds=60))],
)
async def check_duplicates(
    data: DuplicateCheckRequest,
    db: AsyncSession = Depends(get_db),
) -> DuplicateCheckResponse:
    field = await service.check_duplicates(db, data)
    if field is None:
        return DuplicateCheckResponse(is_duplicate=False)
    return DuplicateCheckResponse(is_duplicate=True, field=field, message=duplicate_message(field))


_TOKEN_ERRORS = {
    TokenStatus.NOT_FOUND: (
        status.HTTP_404_NOT_FOUND,
        "INVALID_TOKEN",
        "This verification link is invalid.",
    ),
    TokenStatus.EXPIRED: (
        status.HTTP_410_GONE,
        "TOKEN_EXPIRED",
        "This verification link has expired. Please contact the alumni office.",
    ),
}


@router.get(
    "/verify/{token}",
    response_model=VerifyEmailResponse,
    summary="Verify Email",
    description="""
Verify the applicant's email address with the token from the approval email
and activate the registration.

Following the same link again reports `already_verified`.
""",
    responses={
        404: {"description": "Token not found"},
        410: {"description": "Token expired"},
        429: {"description": "Rate limit exceeded"},
    },
    dependencies=[Depends(rate_limit("registrations_verify", limit=10, window_seconds=60))],
)
async def verify_email(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> VerifyEmailResponse:
    result = await service.verify_email(db, token)

    if result.status in _TOKEN_ERRORS:
        status_code, error, message = _TOKEN_ERRORS[result.status]
        raise HTTPException(status_code=status_code, detail={"error": error, "message": message})

    if result.status == TokenStatus.ALREADY_VERIFIED:
        message = "Your email address was already verified. Your membership is active."
    else:
        message = "Email verified. Welcome to the alumni network!"

    return VerifyEmailResponse(
        outcome=result.status.value,
        message=message,
        registration_id=result.registration.id if result.registration else None,
    )


def _status_response(registration: Registration) -> RegistrationStatusResponse:
    return RegistrationStatusResponse(
        id=registration.id,
        full_name=registration.full_name,
        status=registration.status,
        email_verified=registration.email_verified,
        created_at=registration.created_at,
        approved_at=registration.approved_at,
        rejected_at=registration.rejected_at,
        email_verified_at=registration.email_verified_at,
        message=service.status_message(registration),
    )


def _not_found(e: RegistrationNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={"error": e.error_code, "message": "No registration found."},
    )


@router.get(
    "/status",
    response_model=RegistrationStatusResponse,
    summary="Registration Status By Email",
    responses={404: {"description": "No registration for this email"}},
    dependencies=[Depends(rate_limit("registrations_status", limit=20, window_seconds=60))],
)
async def get_status_by_email(
    email: str = Query(..., min_length=3, max_length=255),
    db: AsyncSession = Depends(get_db),
) -> RegistrationStatusResponse:
    try:
        registration = await service.get_registration_by_email(db, email)
    except RegistrationNotFoundError as e:
        raise _not_found(e) from e
    return _status_response(registration)


@router.get(
    "/{registration_id}/status",
    response_model=RegistrationStatusResponse,
    summary="Registration Status",
    responses={404: {"description": "Registration not found"}},
    dependencies=[Depends(rate_limit("registrations_status", limit=20, window_seconds=60))],
)
async def get_status(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> RegistrationStatusResponse:
    try:
        registration = await service.get_registration(db, registration_id)
    except RegistrationNotFoundError as e:
        raise _not_found(e) from e
    return _status_response(registration)
