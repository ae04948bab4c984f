"""
Physical Audit Service.

Business logic for physical inventory audit sessions: creation, planning
updates, the counting lifecycle, variance recording and listing.

One service instance serves one request for one tenant. The session
handle it receives is already scoped to that tenant by the caller; the
service never resolves or caches tenant handles itself.
"""
import logging
import math
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from inventory_audit.config import settings
from inventory_audit.core.exceptions import BadRequestError, ConflictError, NotFoundError
from inventory_audit.models.physical_audit import (
    PhysicalAuditSession, AuditStatus, EntryStatus, CounterStatus, utc_now
)
from inventory_audit.schemas.physical_audit import (
    AuditEntryInput, CounterInput, PhysicalAuditCreate, PhysicalAuditUpdate,
    RecordCountsRequest, AttachmentCreate, PhysicalAuditFilters,
    PaginationMeta, PhysicalAuditSummary
)
from inventory_audit.services.audit_state_machine import (
    AuditOperation, allowed_states, apply_transition, ensure_status
)
from inventory_audit.services.reference import current_timestamp_ms, generate_reference
from inventory_audit.services.variance import (
    apply_count, summarize_entries, to_decimal, to_json_number
)

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PhysicalAuditService:
    """Service for physical inventory audit sessions."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    # ========================================================================
    # ENTRY BUILDER
    # ========================================================================

    @staticmethod
    def build_entries(entries: Optional[List[AuditEntryInput]]) -> List[dict]:
        """
        Build pending entries from create/update input.

        Duplicate product ids are kept as separate lines (e.g. the same
        product stocked in two bins).
        """
        if not entries:
            raise BadRequestError("At least one entry is required")
        return [
            {
                "product_id": entry.product_id,
                "sku": entry.sku,
                "name": entry.name,
                "category": entry.category,
                "expected_qty": to_json_number(to_decimal(entry.expected_qty)),
                "counted_qty": None,
                "variance": None,
                "status": EntryStatus.PENDING.value,
                "notes": None,
                "last_counted_by": None,
                "last_counted_at": None,
            }
            for entry in entries
        ]

    @staticmethod
    def build_counters(counters: Optional[List[CounterInput]]) -> List[dict]:
        return [
            {
                "user_id": str(counter.user_id),
                "role": counter.role,
                "status": CounterStatus.PENDING.value,
            }
            for counter in counters or []
        ]

    # ========================================================================
    # PERSISTENCE HELPERS
    # ========================================================================

    async def _allocate_reference(self) -> str:
        """
        Pick an AUD- reference not yet used by this tenant.

        On a clash the timestamp is advanced one millisecond at a time.
        """
        base = current_timestamp_ms()
        for offset in range(settings.REFERENCE_MAX_ATTEMPTS):
            reference = generate_reference(base + offset)
            existing = await self.db.scalar(
                select(func.count()).select_from(PhysicalAuditSession).where(
                    PhysicalAuditSession.tenant_id == self.tenant_id,
                    PhysicalAuditSession.reference == reference
                )
            )
            if not existing:
                return reference
            logger.info(f"Audit reference {reference} already used by tenant {self.tenant_id}, retrying")
        raise ConflictError("Could not allocate a unique audit reference. Please retry.")

    async def _save(self, session: PhysicalAuditSession) -> PhysicalAuditSession:
        """Commit the whole aggregate; a lost version race becomes ConflictError."""
        # Read before commit: a rollback expires the instance
        session_id = session.id
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning(f"Concurrent update detected on audit session {session_id}")
            raise ConflictError(
                "Audit session was modified by another request. Reload and retry."
            )
        except IntegrityError as e:
            await self.db.rollback()
            if "reference" in str(e.orig):
                raise ConflictError("Audit reference already in use. Please retry.")
            raise

        await self.db.refresh(session)
        return session

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_session(self, session_id: UUID) -> PhysicalAuditSession:
        """Get an audit session by ID within the current tenant."""
        result = await self.db.execute(
            select(PhysicalAuditSession).where(
                PhysicalAuditSession.id == session_id,
                PhysicalAuditSession.tenant_id == self.tenant_id
            )
        )
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("Audit session not found")
        return session

    async def list_sessions(
        self,
        filters: Optional[PhysicalAuditFilters] = None
    ) -> Tuple[List[PhysicalAuditSession], PaginationMeta]:
        """List audit sessions with filters, newest first."""
        filters = filters or PhysicalAuditFilters()

        query = select(PhysicalAuditSession).where(
            PhysicalAuditSession.tenant_id == self.tenant_id
        )

        if filters.status:
            query = query.where(PhysicalAuditSession.status == filters.status.value)
        if filters.type:
            query = query.where(PhysicalAuditSession.audit_type == filters.type.value)
        if filters.store_id:
            query = query.where(PhysicalAuditSession.store_id == filters.store_id)
        if filters.search:
            query = query.where(
                PhysicalAuditSession.name.ilike(f"%{_escape_like(filters.search)}%", escape="\\")
            )

        limit = filters.limit if filters.limit is not None else settings.DEFAULT_PAGE_SIZE
        limit = min(max(limit, 1), settings.MAX_PAGE_SIZE)
        page = max(filters.page or 1, 1)

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query) or 0

        # Paginate
        query = query.order_by(
            PhysicalAuditSession.created_at.desc(),
            PhysicalAuditSession.id.desc()
        )
        query = query.offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(query)
        sessions = list(result.scalars().all())

        pagination = PaginationMeta(
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )
        return sessions, pagination

    async def get_session_summary(self, session_id: UUID) -> PhysicalAuditSummary:
        """Count progress and variance totals for a session."""
        session = await self.get_session(session_id)
        return PhysicalAuditSummary(
            session_id=session.id,
            reference=session.reference,
            status=session.status,
            **summarize_entries(session.entries),
        )

    # ========================================================================
    # CREATE / UPDATE
    # ========================================================================

    async def create_session(
        self,
        data: PhysicalAuditCreate,
        created_by: UUID
    ) -> PhysicalAuditSession:
        """Create a new audit session in draft, or scheduled when a date is given."""
        entries = self.build_entries(data.entries)
        reference = await self._allocate_reference()
        now = utc_now()

        session = PhysicalAuditSession(
            tenant_id=self.tenant_id,
            name=data.name,
            reference=reference,
            store_id=data.store_id,
            audit_type=data.type.value,
            status=(AuditStatus.SCHEDULED if data.scheduled_for else AuditStatus.DRAFT).value,
            scheduled_for=data.scheduled_for,
            due_date=data.due_date,
            instructions=data.instructions,
            counters=self.build_counters(data.counters),
            entries=entries,
            attachments=[],
            created_at=now,
            updated_at=now,
            created_by=created_by,
            updated_by=created_by,
        )

        self.db.add(session)
        await self._save(session)
        logger.info(
            f"Audit session {session.reference} created for tenant {self.tenant_id} "
            f"with {len(entries)} entries ({session.status})"
        )
        return session

    async def update_session(
        self,
        session_id: UUID,
        data: PhysicalAuditUpdate,
        updated_by: UUID
    ) -> PhysicalAuditSession:
        """
        Update planning fields of a draft or scheduled session.

        Only fields present in the request are applied. New entries replace
        the old ones completely, discarding any counts already entered.
        """
        session = await self.get_session(session_id)
        ensure_status(session.status, allowed_states(AuditOperation.UPDATE))
        entries = self.build_entries(data.entries) if data.entries is not None else None

        apply_transition(session, AuditOperation.UPDATE, updated_by)
        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("name") is not None:
            session.name = data.name
        if data.type is not None:
            session.audit_type = data.type.value
        if data.store_id is not None:
            session.store_id = data.store_id
        for field in ("scheduled_for", "due_date", "instructions"):
            if field in update_data:
                setattr(session, field, update_data[field])
        if data.counters is not None:
            session.counters = self.build_counters(data.counters)
        if entries is not None:
            session.entries = entries

        return await self._save(session)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start_counting(self, session_id: UUID, user_id: UUID) -> PhysicalAuditSession:
        """Start counting; every counter not already complete becomes active."""
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.START_COUNTING, user_id)

        session.counters = [
            {
                **counter,
                "status": counter["status"]
                if counter["status"] == CounterStatus.COMPLETE.value
                else CounterStatus.ACTIVE.value,
            }
            for counter in session.counters
        ]

        await self._save(session)
        logger.info(f"Audit session {session.reference} started counting")
        return session

    async def record_counts(
        self,
        session_id: UUID,
        data: RecordCountsRequest,
        counted_by: UUID
    ) -> PhysicalAuditSession:
        """
        Record counted quantities for the products in the request.

        Entries for products not in the request are left exactly as they
        were, so counters can submit a subset and come back for the rest.
        If a product appears twice in the request the last line wins; every
        entry for that product receives it.
        """
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.RECORD_COUNTS, counted_by)

        submitted = {item.product_id: item for item in data.entries}
        now = utc_now()
        matched = set()

        entries = []
        for entry in session.entries:
            item = submitted.get(entry["product_id"])
            if item is None:
                entries.append(entry)
                continue
            matched.add(entry["product_id"])
            entries.append(
                apply_count(entry, item.counted_qty, item.notes, str(counted_by), now)
            )

        unmatched = set(submitted) - matched
        if unmatched:
            logger.warning(
                f"Audit session {session.reference}: ignoring counts for products "
                f"not in the session: {', '.join(sorted(unmatched))}"
            )

        session.entries = entries
        return await self._save(session)

    async def move_to_review(self, session_id: UUID, user_id: UUID) -> PhysicalAuditSession:
        """Close counting and hand the discrepancies over for review."""
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.MOVE_TO_REVIEW, user_id)
        await self._save(session)
        logger.info(f"Audit session {session.reference} moved to review")
        return session

    async def complete_session(self, session_id: UUID, user_id: UUID) -> PhysicalAuditSession:
        """Complete a reviewed session."""
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.COMPLETE, user_id)
        await self._save(session)
        logger.info(f"Audit session {session.reference} completed")
        return session

    async def cancel_session(
        self,
        session_id: UUID,
        reason: Optional[str],
        user_id: UUID
    ) -> PhysicalAuditSession:
        """Cancel a session that has not started counting. The reason replaces the instructions."""
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.CANCEL, user_id)
        if reason is not None:
            session.instructions = reason
        await self._save(session)
        logger.info(f"Audit session {session.reference} cancelled")
        return session

    # ========================================================================
    # COUNTERS & ATTACHMENTS
    # ========================================================================

    async def complete_counter(
        self,
        session_id: UUID,
        counter_user_id: UUID,
        user_id: UUID
    ) -> PhysicalAuditSession:
        """Mark an assigned counter as done while counting is in progress."""
        session = await self.get_session(session_id)
        ensure_status(session.status, allowed_states(AuditOperation.COMPLETE_COUNTER))

        target = str(counter_user_id)
        if not any(counter["user_id"] == target for counter in session.counters):
            raise BadRequestError("User is not assigned as a counter on this audit")

        apply_transition(session, AuditOperation.COMPLETE_COUNTER, user_id)
        session.counters = [
            {**counter, "status": CounterStatus.COMPLETE.value}
            if counter["user_id"] == target else counter
            for counter in session.counters
        ]
        return await self._save(session)

    async def add_attachment(
        self,
        session_id: UUID,
        data: AttachmentCreate,
        uploaded_by: UUID
    ) -> PhysicalAuditSession:
        """Append an attachment (count sheet, photo) to an open session."""
        session = await self.get_session(session_id)
        apply_transition(session, AuditOperation.ADD_ATTACHMENT, uploaded_by)

        session.attachments = [
            *session.attachments,
            {
                "name": data.name,
                "url": data.url,
                "uploaded_at": utc_now().isoformat(),
                "uploaded_by": str(uploaded_by),
            },
        ]
        return await self._save(session)
