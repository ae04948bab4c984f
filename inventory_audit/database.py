import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from inventory_audit.config import settings

logger = logging.getLogger(__name__)


# SQLite doesn't support pool settings, check database type
is_sqlite = settings.is_sqlite

# Convert database URL for proper driver
database_url = settings.DATABASE_URL
if database_url.startswith("postgresql+asyncpg://"):
    # Switch to psycopg for async PostgreSQL
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
elif database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+psycopg://")

# Create async engine with appropriate settings
if is_sqlite:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        future=True,
        poolclass=NullPool,  # One connection per session; no cross-event-loop reuse
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={
            "connect_timeout": 30,  # Connection timeout in seconds
        },
    )

# Create async session factory (for default/public schema)
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def init_db() -> None:
    """Initialize database tables."""
    # Import all models to register them with Base.metadata
    from inventory_audit import models  # noqa: F401

    logger.info(f"Registered {len(Base.metadata.tables)} tables")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


# ====================
# MULTI-TENANT SUPPORT
# ====================

def _search_path_sql(schema: Optional[str]):
    if schema:
        return text(f'SET search_path TO "{schema}", public')
    return text("RESET search_path")


async def _apply_search_path(conn, schema: Optional[str]) -> None:
    """Set (or with None, reset) the connection's search_path and commit it."""
    await conn.execute(_search_path_sql(schema))
    await conn.commit()


@asynccontextmanager
async def tenant_session_scope(schema: Optional[str]) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for a specific tenant schema, committed on success.

    On PostgreSQL the connection's search_path is pointed at the tenant
    schema (public stays on the path for the tenant registry). SQLite has
    no schemas, so isolation there is the tenant_id column alone.

    The search_path change is committed before the session binds, and
    reset before the connection goes back to the pool.

    Args:
        schema: Tenant database schema name (e.g., 'tenant_customer1')
    """
    if is_sqlite or not schema:
        async with async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return

    async with engine.connect() as conn:
        await _apply_search_path(conn, schema)

        async_session = AsyncSession(bind=conn, expire_on_commit=False, autoflush=False)

        try:
            yield async_session
            await async_session.commit()
        except Exception:
            await async_session.rollback()
            raise
        finally:
            await async_session.close()
            await _apply_search_path(conn, None)


async def get_db_with_tenant(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session for current tenant

    The tenant middleware has already put the tenant's schema on
    request.state.

    Usage in FastAPI routes:
        @router.get("/physical-audits")
        async def list_audits(db: AsyncSession = Depends(get_db_with_tenant)):
            ...
    """
    if not hasattr(request.state, "tenant_id"):
        raise ValueError("Tenant context not found in request. Is tenant middleware enabled?")

    schema = getattr(request.state, "schema", None)

    async with tenant_session_scope(schema) as session:
        yield session
