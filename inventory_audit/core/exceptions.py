"""
Error taxonomy for the audit workflow.

Services raise these; the API layer maps them to HTTP responses through
the handler registered in inventory_audit.main.
"""


class AuditError(Exception):
    """Base class for caller-visible audit errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(AuditError):
    """Invalid input or illegal state transition. Caller-correctable."""
    status_code = 400


class NotFoundError(AuditError):
    """Entity does not exist for the current tenant."""
    status_code = 404


class ConflictError(AuditError):
    """Concurrent modification or uniqueness clash. Safe to retry."""
    status_code = 409
