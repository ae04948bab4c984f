"""
Physical Audit API Endpoints.

Physical inventory audit sessions: planning, counting, review and
completion. All routes are tenant scoped through the X-Tenant-ID header.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from inventory_audit.api.deps import AuditService, CurrentUserId
from inventory_audit.models.physical_audit import AuditStatus, AuditType
from inventory_audit.schemas.base import DataResponse
from inventory_audit.schemas.physical_audit import (
    PhysicalAuditCreate, PhysicalAuditUpdate, PhysicalAuditResponse,
    PhysicalAuditListResponse, PhysicalAuditFilters, PhysicalAuditSummary,
    RecordCountsRequest, CancelAuditRequest, AttachmentCreate
)

router = APIRouter()


def _session_response(session, message: str) -> DataResponse[PhysicalAuditResponse]:
    return DataResponse[PhysicalAuditResponse](
        message=message,
        data=PhysicalAuditResponse.model_validate(session),
    )


# ============================================================================
# QUERIES
# ============================================================================

@router.get(
    "",
    response_model=DataResponse[PhysicalAuditListResponse],
    summary="List Audit Sessions"
)
async def list_sessions(
    service: AuditService,
    status_filter: Optional[AuditStatus] = Query(None, alias="status"),
    type_filter: Optional[AuditType] = Query(None, alias="type"),
    store_id: Optional[UUID] = None,
    search: Optional[str] = None,
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
):
    """List audit sessions, newest first. `limit` is capped at 100."""
    sessions, pagination = await service.list_sessions(
        PhysicalAuditFilters(
            status=status_filter,
            type=type_filter,
            store_id=store_id,
            search=search,
            page=page,
            limit=limit,
        )
    )
    return DataResponse[PhysicalAuditListResponse](
        message="Audit sessions fetched successfully",
        data=PhysicalAuditListResponse(
            records=[PhysicalAuditResponse.model_validate(s) for s in sessions],
            pagination=pagination,
        ),
    )


@router.get(
    "/{session_id}",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Get Audit Session"
)
async def get_session(session_id: UUID, service: AuditService):
    session = await service.get_session(session_id)
    return _session_response(session, "Audit session retrieved")


@router.get(
    "/{session_id}/summary",
    response_model=DataResponse[PhysicalAuditSummary],
    summary="Audit Session Variance Summary"
)
async def get_session_summary(session_id: UUID, service: AuditService):
    """Counting progress and variance totals."""
    summary = await service.get_session_summary(session_id)
    return DataResponse[PhysicalAuditSummary](
        message="Audit summary retrieved",
        data=summary,
    )


# ============================================================================
# PLANNING
# ============================================================================

@router.post(
    "",
    response_model=DataResponse[PhysicalAuditResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create Audit Session"
)
async def create_session(
    data: PhysicalAuditCreate,
    service: AuditService,
    user_id: CurrentUserId,
):
    """Create a session in draft, or scheduled when scheduled_for is given."""
    session = await service.create_session(data, user_id)
    return _session_response(session, "Audit session created")


@router.put(
    "/{session_id}",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Update Audit Session"
)
async def update_session(
    session_id: UUID,
    data: PhysicalAuditUpdate,
    service: AuditService,
    user_id: CurrentUserId,
):
    """Update a draft or scheduled session."""
    session = await service.update_session(session_id, data, user_id)
    return _session_response(session, "Audit session updated")


# ============================================================================
# LIFECYCLE
# ============================================================================

@router.post(
    "/{session_id}/start",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Start Counting"
)
async def start_counting(session_id: UUID, service: AuditService, user_id: CurrentUserId):
    session = await service.start_counting(session_id, user_id)
    return _session_response(session, "Audit session started")


@router.post(
    "/{session_id}/counts",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Record Counts"
)
async def record_counts(
    session_id: UUID,
    data: RecordCountsRequest,
    service: AuditService,
    user_id: CurrentUserId,
):
    """Record counted quantities for some or all products of the session."""
    session = await service.record_counts(session_id, data, user_id)
    return _session_response(session, "Counts recorded")


@router.post(
    "/{session_id}/review",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Move To Review"
)
async def move_to_review(session_id: UUID, service: AuditService, user_id: CurrentUserId):
    session = await service.move_to_review(session_id, user_id)
    return _session_response(session, "Audit session moved to review")


@router.post(
    "/{session_id}/complete",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Complete Audit Session"
)
async def complete_session(session_id: UUID, service: AuditService, user_id: CurrentUserId):
    session = await service.complete_session(session_id, user_id)
    return _session_response(session, "Audit session completed")


@router.post(
    "/{session_id}/cancel",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Cancel Audit Session"
)
async def cancel_session(
    session_id: UUID,
    service: AuditService,
    user_id: CurrentUserId,
    data: Optional[CancelAuditRequest] = Body(None),
):
    reason = data.reason if data else None
    session = await service.cancel_session(session_id, reason, user_id)
    return _session_response(session, "Audit session cancelled")


# ============================================================================
# COUNTERS & ATTACHMENTS
# ============================================================================

@router.post(
    "/{session_id}/counters/{counter_user_id}/complete",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Mark Counter Complete"
)
async def complete_counter(
    session_id: UUID,
    counter_user_id: UUID,
    service: AuditService,
    user_id: CurrentUserId,
):
    session = await service.complete_counter(session_id, counter_user_id, user_id)
    return _session_response(session, "Counter marked complete")


@router.post(
    "/{session_id}/attachments",
    response_model=DataResponse[PhysicalAuditResponse],
    summary="Add Attachment"
)
async def add_attachment(
    session_id: UUID,
    data: AttachmentCreate,
    service: AuditService,
    user_id: CurrentUserId,
):
    session = await service.add_attachment(session_id, data, user_id)
    return _session_response(session, "Attachment added")
