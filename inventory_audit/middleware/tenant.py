"""
Tenant middleware for multi-tenant request handling
"""
import logging
import uuid

from fastapi import Request, status
from fastapi.responses import JSONResponse

from inventory_audit.core.tenant_context import get_tenant_by_id, TenantNotFoundError

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"

# Routes served without tenant context
PUBLIC_ROUTES = [
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/",
]


def _error(status_code: int, message: str, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "type": "TenantError",
            "path": str(request.url.path),
            "method": request.method,
        },
    )


async def tenant_middleware(request: Request, call_next):
    """
    Middleware to inject tenant context into request

    This middleware:
    1. Identifies the tenant from the X-Tenant-ID header
    2. Injects tenant id and schema into request.state
    """
    if request.url.path in PUBLIC_ROUTES:
        return await call_next(request)

    raw_tenant_id = request.headers.get(TENANT_HEADER)
    if not raw_tenant_id:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Tenant context required. Include X-Tenant-ID header.",
            request,
        )

    try:
        tenant_id = uuid.UUID(raw_tenant_id)
    except ValueError:
        logger.warning(f"Invalid tenant id in header: {raw_tenant_id}")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid X-Tenant-ID header", request)

    try:
        tenant = await get_tenant_by_id(tenant_id)
    except TenantNotFoundError:
        logger.warning(f"Tenant not found: {tenant_id}")
        return _error(status.HTTP_404_NOT_FOUND, "Tenant not found", request)

    if tenant["status"] != "active":
        logger.warning(f"Request for inactive tenant {tenant['subdomain']}")
        return _error(status.HTTP_403_FORBIDDEN, "Tenant is not active", request)

    # Inject tenant into request state
    request.state.tenant = tenant
    request.state.tenant_id = tenant["id"]
    request.state.subdomain = tenant["subdomain"]
    request.state.schema = tenant["database_schema"]

    logger.debug(
        f"Request for tenant: {tenant['name']} ({tenant['subdomain']}) "
        f"| Schema: {tenant['database_schema']}"
    )

    return await call_next(request)
