"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from fleet.config import settings
from fleet.infrastructure.database import async_session_factory
from fleet.infrastructure.transaction import TransactionCoordinator


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session for read-only endpoints."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_coordinator() -> TransactionCoordinator:
    """Transaction coordinator for endpoints that mutate state."""
    return TransactionCoordinator(
        async_session_factory,
        default_isolation=settings.default_isolation,
        lock_nowait=settings.lock_nowait,
    )


def get_actor(x_actor: Optional[str] = Header(None, max_length=120)) -> Optional[str]:
    """Who to record in the audit log; authentication happens upstream."""
    return x_actor
