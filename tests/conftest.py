"""
Pytest fixtures for the audit session test suite.

Tests run against a throwaway SQLite database (aiosqlite). The URL must be
in the environment before the package is imported, since settings and
the engine are built at import time.
"""
import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="inventory_audit_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/audit_test.db"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid

import pytest

from inventory_audit import models  # noqa: F401
from inventory_audit.core.tenant_context import clear_tenant_cache
from inventory_audit.database import Base, engine, async_session_factory
from inventory_audit.models.tenant import Tenant
from inventory_audit.services.physical_audit_service import PhysicalAuditService


@pytest.fixture
async def database():
    """Fresh schema for every test."""
    clear_tenant_cache()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    clear_tenant_cache()


@pytest.fixture
async def db(database):
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def tenant_a() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def tenant_b() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def store_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def service(db, tenant_a) -> PhysicalAuditService:
    return PhysicalAuditService(db, tenant_a)


@pytest.fixture
async def registered_tenants(database, tenant_a, tenant_b):
    """Tenant registry rows for both tenants (needed by the middleware)."""
    async with async_session_factory() as session:
        session.add_all([
            Tenant(id=tenant_a, name="Tenant A", subdomain="tenant-a", status="active"),
            Tenant(id=tenant_b, name="Tenant B", subdomain="tenant-b", status="active"),
        ])
        await session.commit()
    return tenant_a, tenant_b
