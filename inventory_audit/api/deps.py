from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_audit.core.tenant_context import require_tenant_context
from inventory_audit.database import get_db_with_tenant
from inventory_audit.services.physical_audit_service import PhysicalAuditService


logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> uuid.UUID:
    """
    Identity of the acting user.

    Authentication happens upstream (gateway / auth service), which
    forwards the verified user id in the X-User-ID header.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        logger.warning(f"Invalid user id in header: {x_user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-ID header",
        )


async def get_tenant_id(
    tenant: Annotated[dict, Depends(require_tenant_context)],
) -> uuid.UUID:
    return uuid.UUID(str(tenant["id"]))


async def get_physical_audit_service(
    db: Annotated[AsyncSession, Depends(get_db_with_tenant)],
    tenant_id: Annotated[uuid.UUID, Depends(get_tenant_id)],
) -> PhysicalAuditService:
    return PhysicalAuditService(db, tenant_id)


# Type aliases for cleaner dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
AuditService = Annotated[PhysicalAuditService, Depends(get_physical_audit_service)]
