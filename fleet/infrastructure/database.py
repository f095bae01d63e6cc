"""
Async SQLAlchemy engine, session factory and declarative base.

Uses ``asyncpg`` as the PostgreSQL driver.  The session factory is handed
to a ``TransactionCoordinator`` per request; services never open sessions
themselves.

Constraint names are pinned through a naming convention that reproduces
PostgreSQL's own defaults, because the conflict classifier recognises
violations by constraint name (``trips_idempotency_key_key`` and the
``uq_trips_active_*`` partial indexes).
"""

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from fleet.config import settings

NAMING_CONVENTION = {
    "pk": "%(table_name)s_pkey",
    "uq": "%(table_name)s_%(column_0_name)s_key",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
}


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an engine; pool sizing only applies to server databases."""
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", settings.db_pool_size)
        kwargs.setdefault("max_overflow", settings.db_max_overflow)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=settings.db_echo, **kwargs)


engine = build_engine(settings.database_url)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
