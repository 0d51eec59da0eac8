"""
Alumni Registrations Admin Router

Endpoints for alumni administrators. Every endpoint requires an admin JWT;
the admin's identity is recorded on each decision and in the audit log.

Endpoints:
- GET /admin/registrations - List registrations with filters
- GET /admin/registrations/manual-review - Registrations awaiting a human decision
- POST /admin/registrations/bulk-approve - Approve many registrations
- POST /admin/registrations/bulk-reject - Reject many registrations
- GET /admin/registrations/{id} - Full registration record
- POST /admin/registrations/{id}/approve - Approve one registration
- POST /admin/registrations/{id}/reject - Reject one registration
- GET /admin/registrations/{id}/audit-log - Audit trail of one registration
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from alumni.core.auth import AdminUser, get_current_admin_user
from alumni.core.database import get_db
from alumni.core.rate_limit import RateLimitExceeded, check_rate_limit
from alumni.modules.registrations import service
from alumni.modules.registrations.models import RegistrationStatus
from alumni.modules.registrations.schemas import (
    ApproveRequest,
    AuditLogEntryResponse,
    AuditLogResponse,
    BulkApproveRequest,
    BulkOperationResponse,
    BulkRejectRequest,
    DecisionResponse,
    ManualReviewListResponse,
    RegistrationDetail,
    RegistrationListResponse,
    RegistrationSummary,
    RejectRequest,
)
from alumni.modules.registrations.service import DecisionOutcome, RegistrationServiceError

logger = logging.getLogger(__name__)

router = APIRouter()

# (requests, window seconds) per admin
RATE_LIMIT_DECIDE = (30, 60)
RATE_LIMIT_BULK = (5, 60)


async def _check_admin_rate_limit(
    admin: AdminUser,
    action: str,
    limit: int,
    window_seconds: int,
) -> None:
    key = f"admin:{action}:{admin.id}"
    if not await check_rate_limit(key, limit, window_seconds):
        logger.warning(
            f"Rate limit exceeded for admin {admin.id} on action '{action}': "
            f"{limit}/{window_seconds}s"
        )
        raise RateLimitExceeded(limit, window_seconds)


def _handle_service_error(e: RegistrationServiceError) -> HTTPException:
    """Convert a service error to an HTTPException."""
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


def _decision_response(outcome: DecisionOutcome) -> DecisionResponse:
    return DecisionResponse(
        registration=RegistrationSummary.model_validate(outcome.registration),
        notification_sent=outcome.notification.sent,
        notification_error=outcome.notification.error,
    )


def _bulk_response(results) -> BulkOperationResponse:
    succeeded = sum(1 for r in results if r.success)
    return BulkOperationResponse(
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
    )


@router.get(
    "",
    response_model=RegistrationListResponse,
    summary="List Registrations",
    description="""
List registrations, newest first, optionally filtered by status, manual review
flag and email verification. `search` matches name, email, staff number or
ID/passport.
""",
)
async def list_registrations(
    status_filter: RegistrationStatus | None = Query(None, alias="status"),
    requires_manual_review: bool | None = Query(None),
    email_verified: bool | None = Query(None),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> RegistrationListResponse:
    registrations, total = await service.list_registrations(
        db,
        status=status_filter,
        requires_manual_review=requires_manual_review,
        email_verified=email_verified,
        search=search,
        page=page,
        page_size=page_size,
    )
    logger.info(
        f"Admin {admin.id} listed registrations: total={total}, returned={len(registrations)}"
    )
    return RegistrationListResponse(
        items=[RegistrationSummary.model_validate(r) for r in registrations],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get(
    "/manual-review",
    response_model=ManualReviewListResponse,
    summary="List Registrations Awaiting Manual Review",
)
async def list_manual_review(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> ManualReviewListResponse:
    registrations, total = await service.list_manual_review(db, page=page, page_size=page_size)
    return ManualReviewListResponse(
        items=[RegistrationSummary.model_validate(r) for r in registrations],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/bulk-approve",
    response_model=BulkOperationResponse,
    summary="Bulk Approve Registrations",
    description="""
Approve up to 100 pending registrations in one operation.

All state changes are saved together. Approval emails are sent afterwards,
one per registration; a failed email is reported per item and does not undo
the approval.
""",
    responses={409: {"description": "A registration changed concurrently; nothing was saved"}},
)
async def bulk_approve(
    data: BulkApproveRequest,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> BulkOperationResponse:
    await _check_admin_rate_limit(admin, "bulk", *RATE_LIMIT_BULK)
    try:
        results = await service.bulk_approve(db, data.registration_ids, admin.actor, data.notes)
    except RegistrationServiceError as e:
        raise _handle_service_error(e) from e
    return _bulk_response(results)


@router.post(
    "/bulk-reject",
    response_model=BulkOperationResponse,
    summary="Bulk Reject Registrations",
    responses={409: {"description": "A registration changed concurrently; nothing was saved"}},
)
async def bulk_reject(
    data: BulkRejectRequest,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> BulkOperationResponse:
    await _check_admin_rate_limit(admin, "bulk", *RATE_LIMIT_BULK)
    try:
        results = await service.bulk_reject(
            db, data.registration_ids, admin.actor, data.reason, data.notes
        )
    except RegistrationServiceError as e:
        raise _handle_service_error(e) from e
    return _bulk_response(results)


@router.get(
    "/{registration_id}",
    response_model=RegistrationDetail,
    summary="Get Registration",
    responses={404: {"description": "Registration not found"}},
)
async def get_registration(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> RegistrationDetail:
    try:
        registration = await service.get_registration(db, registration_id)
    except RegistrationServiceError as e:
        raise _handle_service_error(e) from e
    return RegistrationDetail.model_validate(registration)


@router.post(
    "/{registration_id}/approve",
    response_model=DecisionResponse,
    summary="Approve Registration",
    description="""
Approve a pending registration. A verification token is issued and the
approval email is sent to the applicant.

**Access:** Alumni admin only
""",
    responses={
        404: {"description": "Registration not found"},
        409: {"description": "Already approved, not pending, or modified concurrently"},
    },
)
async def approve_registration(
    registration_id: UUID,
    data: ApproveRequest,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> DecisionResponse:
    await _check_admin_rate_limit(admin, "decide", *RATE_LIMIT_DECIDE)
    try:
        outcome = await service.admin_approve_registration(
            db, registration_id, admin.actor, data.notes
        )
    except RegistrationServiceError as e:
        logger.warning(f"Cannot approve registration {registration_id}: {e.message}")
        raise _handle_service_error(e) from e
    return _decision_response(outcome)


@router.post(
    "/{registration_id}/reject",
    response_model=DecisionResponse,
    summary="Reject Registration",
    responses={
        404: {"description": "Registration not found"},
        409: {"description": "Already rejected, not pending, or modified concurrently"},
    },
)
async def reject_registration(
    registration_id: UUID,
    data: RejectRequest,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> DecisionResponse:
    await _check_admin_rate_limit(admin, "decide", *RATE_LIMIT_DECIDE)
    try:
        outcome = await service.admin_reject_registration(
            db, registration_id, admin.actor, data.reason, data.notes
        )
    except RegistrationServiceError as e:
        logger.warning(f"Cannot reject registration {registration_id}: {e.message}")
        raise _handle_service_error(e) from e
    return _decision_response(outcome)


@router.get(
    "/{registration_id}/audit-log",
    response_model=AuditLogResponse,
    summary="Registration Audit Log",
    responses={404: {"description": "Registration not found"}},
)
async def get_audit_log(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin_user),
) -> AuditLogResponse:
    try:
        entries = await service.get_audit_log(db, registration_id)
    except RegistrationServiceError as e:
        raise _handle_service_error(e) from e
    return AuditLogResponse(
        registration_id=registration_id,
        entries=[AuditLogEntryResponse.model_validate(entry) for entry in entries],
    )
