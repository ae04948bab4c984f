from inventory_audit.models.tenant import Tenant
from inventory_audit.models.physical_audit import (
    PhysicalAuditSession,
    AuditStatus,
    AuditType,
    EntryStatus,
    CounterStatus,
)

__all__ = [
    "Tenant",
    "PhysicalAuditSession",
    "AuditStatus",
    "AuditType",
    "EntryStatus",
    "CounterStatus",
]
