"""
Physical Audit State Machine

This module is the SINGLE SOURCE OF TRUTH for audit session status
transitions. Every lifecycle operation checks its source state here.

    draft ──────┬──> counting ──> review ──> completed
    scheduled ──┤
                └──> cancelled

There are no timers and no automatic transitions.
"""

from datetime import datetime
from typing import Dict, List, Optional

from inventory_audit.core.exceptions import BadRequestError
from inventory_audit.models.physical_audit import AuditStatus, utc_now


# =============================================================================
# OPERATIONS
# =============================================================================

class AuditOperation:
    """Operation names - use these instead of strings."""
    UPDATE = "update"
    START_COUNTING = "start_counting"
    RECORD_COUNTS = "record_counts"
    MOVE_TO_REVIEW = "move_to_review"
    COMPLETE = "complete"
    CANCEL = "cancel"
    ADD_ATTACHMENT = "add_attachment"
    COMPLETE_COUNTER = "complete_counter"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: operation -> (legal source statuses, resulting status or None if unchanged)
AUDIT_TRANSITIONS: Dict[str, tuple] = {
    AuditOperation.UPDATE: (
        [AuditStatus.DRAFT, AuditStatus.SCHEDULED], None
    ),
    AuditOperation.START_COUNTING: (
        [AuditStatus.DRAFT, AuditStatus.SCHEDULED], AuditStatus.COUNTING
    ),
    AuditOperation.RECORD_COUNTS: (
        [AuditStatus.COUNTING], None
    ),
    AuditOperation.MOVE_TO_REVIEW: (
        [AuditStatus.COUNTING], AuditStatus.REVIEW
    ),
    AuditOperation.COMPLETE: (
        [AuditStatus.REVIEW], AuditStatus.COMPLETED
    ),
    AuditOperation.CANCEL: (
        [AuditStatus.DRAFT, AuditStatus.SCHEDULED], AuditStatus.CANCELLED
    ),
    AuditOperation.ADD_ATTACHMENT: (
        [AuditStatus.DRAFT, AuditStatus.SCHEDULED, AuditStatus.COUNTING, AuditStatus.REVIEW], None
    ),
    AuditOperation.COMPLETE_COUNTER: (
        [AuditStatus.COUNTING], None
    ),
}

# Timeline column stamped when a status is entered
TIMELINE_FIELDS: Dict[AuditStatus, str] = {
    AuditStatus.COUNTING: "started_at",
    AuditStatus.COMPLETED: "completed_at",
    AuditStatus.CANCELLED: "cancelled_at",
}

TERMINAL_STATUSES = [AuditStatus.COMPLETED, AuditStatus.CANCELLED]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def allowed_states(operation: str) -> List[AuditStatus]:
    """Source statuses from which an operation may be invoked."""
    return list(AUDIT_TRANSITIONS[operation][0])


def target_state(operation: str) -> Optional[AuditStatus]:
    """Status an operation moves the session to, None if it keeps the status."""
    return AUDIT_TRANSITIONS[operation][1]


def can_perform(operation: str, status: str) -> bool:
    """Check if an operation is legal from the given status."""
    return AuditStatus(status) in AUDIT_TRANSITIONS[operation][0]


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return AuditStatus(status) in TERMINAL_STATUSES


def ensure_status(current: str, allowed: List[AuditStatus]) -> None:
    """
    Raise BadRequestError unless `current` is one of `allowed`.

    The message lists the allowed source states; API clients rely on it.
    """
    if AuditStatus(current) not in allowed:
        raise BadRequestError(
            f"Invalid state transition from {AuditStatus(current).value}. "
            f"Allowed: {', '.join(s.value for s in allowed)}"
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def apply_transition(session, operation: str, user_id=None, now: Optional[datetime] = None) -> None:
    """
    Validate and apply an operation to a session.

    This function:
    1. Validates the session's current status for the operation
    2. Moves the status if the operation changes it
    3. Stamps the matching timeline field
    4. Records the acting user in updated_by

    Raises:
        BadRequestError: If the operation is not legal from the current status
    """
    legal, target = AUDIT_TRANSITIONS[operation]
    ensure_status(session.status, legal)

    if target is not None:
        session.status = target.value
        timeline_field = TIMELINE_FIELDS.get(target)
        if timeline_field and getattr(session, timeline_field) is None:
            setattr(session, timeline_field, now or utc_now())

    if user_id is not None:
        session.updated_by = user_id
