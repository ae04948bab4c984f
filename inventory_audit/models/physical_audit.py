"""
Physical Audit Models - physical inventory count sessions.

A session is one document-shaped aggregate: counters, entries and
attachments are embedded JSON lists owned by the session row, never
addressable on their own.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, DateTime, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_audit.database import Base
from inventory_audit.db_types import JSONType, UUIDType


# ============================================================================
# ENUMS
# ============================================================================

class AuditStatus(str, Enum):
    """Lifecycle status of an audit session."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    COUNTING = "counting"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AuditType(str, Enum):
    """Kind of count. Descriptive only, lifecycle rules are the same."""
    CYCLE = "cycle"   # Regular cycle count of a subset
    BLIND = "blind"   # Counters don't see expected qty
    FULL = "full"     # Wall-to-wall count


class EntryStatus(str, Enum):
    """Status of a single product line."""
    PENDING = "pending"
    COUNTED = "counted"
    NEEDS_REVIEW = "needs_review"


class CounterStatus(str, Enum):
    """Progress of an assigned counter."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# MODELS
# ============================================================================

class PhysicalAuditSession(Base):
    """
    Physical inventory audit session.

    entries items:
        product_id, sku, name, category, expected_qty, counted_qty,
        variance, status, notes, last_counted_by, last_counted_at
    counters items:
        user_id, role, status
    attachments items:
        name, url, uploaded_at, uploaded_by

    JSON lists are always replaced, never mutated in place, so the ORM
    sees every change. `version` is the optimistic concurrency revision:
    every UPDATE checks and bumps it.
    """
    __tablename__ = "physical_audit_sessions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "reference", name="uq_pas_tenant_reference"),
        Index("idx_pas_tenant_status", "tenant_id", "status"),
        Index("idx_pas_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(UUIDType, nullable=False)

    # Identification
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuditStatus.DRAFT.value
    )
    audit_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuditType.CYCLE.value
    )
    store_id: Mapped[UUID] = mapped_column(UUIDType, nullable=False)

    # Planning
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    instructions: Mapped[Optional[str]] = mapped_column(Text)

    # Embedded collections
    counters: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    entries: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    attachments: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)

    # Timeline (each set exactly once by its transition)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Audit
    created_by: Mapped[UUID] = mapped_column(UUIDType, nullable=False)
    updated_by: Mapped[Optional[UUID]] = mapped_column(UUIDType)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def timeline(self) -> dict:
        return {
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancelled_at": self.cancelled_at,
        }

    def __repr__(self) -> str:
        return f"<PhysicalAuditSession {self.reference} ({self.status})>"
