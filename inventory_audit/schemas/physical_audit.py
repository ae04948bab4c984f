"""
Physical Audit Schemas.

Pydantic schemas for audit session requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from inventory_audit.models.physical_audit import (
    AuditStatus, AuditType, EntryStatus, CounterStatus
)
from inventory_audit.schemas.base import (
    BaseCreateSchema, BaseUpdateSchema, BaseResponseSchema
)


# ============================================================================
# INPUT SCHEMAS
# ============================================================================

class AuditEntryInput(BaseCreateSchema):
    """One product line to be counted."""
    product_id: str = Field(..., min_length=1, max_length=100)
    sku: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    expected_qty: Decimal


class CounterInput(BaseCreateSchema):
    """A person assigned to count."""
    user_id: UUID
    role: Optional[str] = None


class PhysicalAuditCreate(BaseCreateSchema):
    """Schema for creating an audit session."""
    name: str = Field(..., min_length=1, max_length=200)
    type: AuditType = AuditType.CYCLE
    store_id: UUID
    scheduled_for: Optional[datetime] = None
    due_date: Optional[datetime] = None
    instructions: Optional[str] = None
    counters: Optional[List[CounterInput]] = None
    # Emptiness is a business rule enforced by the service, not a schema rule
    entries: List[AuditEntryInput] = Field(default_factory=list)


class PhysicalAuditUpdate(BaseUpdateSchema):
    """Schema for updating a draft/scheduled session. Only set fields apply."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[AuditType] = None
    store_id: Optional[UUID] = None
    scheduled_for: Optional[datetime] = None
    due_date: Optional[datetime] = None
    instructions: Optional[str] = None
    counters: Optional[List[CounterInput]] = None
    entries: Optional[List[AuditEntryInput]] = None


class CountEntryInput(BaseCreateSchema):
    """A counted quantity for one product."""
    product_id: str = Field(..., min_length=1, max_length=100)
    counted_qty: Decimal
    notes: Optional[str] = None


class RecordCountsRequest(BaseCreateSchema):
    """Counts submitted by a counter; may cover only part of the session."""
    entries: List[CountEntryInput] = Field(..., min_length=1)


class CancelAuditRequest(BaseCreateSchema):
    reason: Optional[str] = None


class AttachmentCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)


class PhysicalAuditFilters(BaseModel):
    """Listing filters. Pagination values are normalised by the service."""
    status: Optional[AuditStatus] = None
    type: Optional[AuditType] = None
    store_id: Optional[UUID] = None
    search: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class AuditEntryResponse(BaseResponseSchema):
    product_id: str
    sku: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    expected_qty: Decimal
    counted_qty: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    status: EntryStatus
    notes: Optional[str] = None
    last_counted_by: Optional[UUID] = None
    last_counted_at: Optional[datetime] = None


class CounterResponse(BaseResponseSchema):
    user_id: UUID
    role: Optional[str] = None
    status: CounterStatus


class AttachmentResponse(BaseResponseSchema):
    name: str
    url: str
    uploaded_at: datetime
    uploaded_by: UUID


class TimelineResponse(BaseResponseSchema):
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class PhysicalAuditResponse(BaseResponseSchema):
    """Schema for audit session response."""
    id: UUID
    tenant_id: UUID
    name: str
    reference: str
    status: AuditStatus
    type: AuditType = Field(validation_alias=AliasChoices("audit_type", "type"))
    store_id: UUID
    scheduled_for: Optional[datetime] = None
    due_date: Optional[datetime] = None
    instructions: Optional[str] = None
    counters: List[CounterResponse] = []
    entries: List[AuditEntryResponse]
    attachments: List[AttachmentResponse] = []
    timeline: TimelineResponse
    created_by: UUID
    updated_by: Optional[UUID] = None
    updated_at: datetime
    version: int


class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class PhysicalAuditListResponse(BaseModel):
    records: List[PhysicalAuditResponse]
    pagination: PaginationMeta


class PhysicalAuditSummary(BaseModel):
    """Count progress and variance metrics for one session."""
    session_id: UUID
    reference: str
    status: AuditStatus
    total_entries: int
    pending_entries: int
    counted_entries: int
    needs_review_entries: int
    total_expected_qty: Decimal
    total_counted_qty: Decimal
    net_variance: Decimal
    absolute_variance: Decimal
    accuracy_rate: Optional[Decimal] = None
