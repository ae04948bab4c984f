"""
Tenant Context Manager for Multi-Tenant SaaS

Resolves a tenant id to an isolated data store handle (an AsyncSession
scoped to the tenant). Services receive the handle ready-made and never
resolve or cache tenants themselves.

Usage Examples:

    # In a script or job:
    async with tenant_db_context(tenant_id) as session:
        service = PhysicalAuditService(session, tenant_id)
        await service.list_sessions()

    # Getting tenant from request:
    tenant = get_tenant_from_request(request)
"""

import logging
import time
import uuid
from typing import Optional, AsyncGenerator, Dict, Tuple
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Request, HTTPException, status

from inventory_audit.config import settings

logger = logging.getLogger(__name__)

# Cache for tenant lookups (reduces DB queries): key -> (cached_at, tenant)
_tenant_cache: Dict[str, Tuple[float, dict]] = {}


class TenantNotFoundError(Exception):
    """Raised when tenant cannot be found."""
    pass


class TenantInactiveError(Exception):
    """Raised when tenant is not active."""
    pass


class NoTenantContextError(Exception):
    """Raised when code requires tenant context but none is provided."""
    pass


def _cache_get(key: str) -> Optional[dict]:
    cached = _tenant_cache.get(key)
    if cached is None:
        return None
    cached_at, tenant = cached
    if time.monotonic() - cached_at > settings.TENANT_CACHE_TTL_SECONDS:
        _tenant_cache.pop(key, None)
        return None
    return tenant


def _tenant_to_dict(tenant) -> dict:
    return {
        "id": str(tenant.id),
        "name": tenant.name,
        "subdomain": tenant.subdomain,
        "database_schema": tenant.database_schema,
        "status": tenant.status,
    }


async def get_tenant_by_id(tenant_id: uuid.UUID) -> dict:
    """
    Fetch tenant details by ID.

    Returns:
        Tenant dictionary with id, name, subdomain, database_schema, status

    Raises:
        TenantNotFoundError: If tenant doesn't exist
    """
    from inventory_audit.database import async_session_factory
    from inventory_audit.models.tenant import Tenant

    cache_key = str(tenant_id)
    cached = _cache_get(cache_key)
    if cached is not None:
        return cached

    async with async_session_factory() as session:
        result = await session.execute(
            select(Tenant).where(Tenant.id == tenant_id)
        )
        row = result.scalar_one_or_none()

    if not row:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")

    tenant = _tenant_to_dict(row)
    _tenant_cache[cache_key] = (time.monotonic(), tenant)
    return tenant


def clear_tenant_cache(tenant_id: Optional[str] = None):
    """
    Clear tenant cache.

    Args:
        tenant_id: Specific tenant to clear, or None to clear all
    """
    if tenant_id:
        _tenant_cache.pop(str(tenant_id), None)
    else:
        _tenant_cache.clear()


@asynccontextmanager
async def tenant_db_context(
    tenant_id: uuid.UUID,
    verify_active: bool = True
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager yielding a session scoped to a tenant's data.

    Commits when the block exits normally and rolls back on any error.

    Raises:
        TenantNotFoundError: If tenant doesn't exist
        TenantInactiveError: If tenant is not active and verify_active=True
    """
    from inventory_audit.database import tenant_session_scope

    tenant = await get_tenant_by_id(tenant_id)

    if verify_active and tenant["status"] != "active":
        raise TenantInactiveError(
            f"Tenant {tenant['subdomain']} is not active (status: {tenant['status']})"
        )

    async with tenant_session_scope(tenant["database_schema"]) as session:
        yield session


def get_tenant_from_request(request: Request) -> dict:
    """
    Extract tenant information from a FastAPI request.

    The tenant middleware should have already set these on request.state.

    Raises:
        NoTenantContextError: If no tenant context in request
    """
    if not hasattr(request.state, "tenant_id"):
        raise NoTenantContextError(
            "No tenant context found in request. "
            "Ensure tenant middleware is configured."
        )

    return {
        "id": getattr(request.state, "tenant_id", None),
        "subdomain": getattr(request.state, "subdomain", None),
        "schema": getattr(request.state, "schema", None),
    }


def require_tenant_context(request: Request) -> dict:
    """
    FastAPI dependency to require tenant context.

    Raises:
        HTTPException: If no tenant context
    """
    try:
        return get_tenant_from_request(request)
    except NoTenantContextError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context required. Include X-Tenant-ID header."
        )
