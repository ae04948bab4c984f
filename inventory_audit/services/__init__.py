# Services module
from inventory_audit.services.physical_audit_service import PhysicalAuditService

__all__ = [
    "PhysicalAuditService",
]
