from fastapi import APIRouter

from inventory_audit.api.v1.endpoints import physical_audits


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    physical_audits.router,
    prefix="/physical-audits",
    tags=["Physical Audits"]
)
