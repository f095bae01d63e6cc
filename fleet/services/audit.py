"""
Audit writer.

``write_in_tx`` appends inside the caller's transaction and propagates
failures: the transition and its record commit or roll back together.

``write_safe`` is for post-commit, best-effort records.  It opens its own
session and never raises, so it cannot mask a business outcome that has
already committed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet.domain.enums import AuditAction, EntityType
from fleet.infrastructure.models import AuditLogModel
from fleet.infrastructure.repositories import AuditLogRepository

logger = logging.getLogger(__name__)


def _entry(
    entity_type: EntityType,
    entity_id: int,
    action: AuditAction,
    performed_by: Optional[str],
    metadata: Optional[dict[str, Any]],
) -> AuditLogModel:
    return AuditLogModel(
        entity_type=EntityType(entity_type).value,
        entity_id=entity_id,
        action=AuditAction(action).value,
        performed_by=performed_by,
        details=metadata,
    )


async def write_in_tx(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    action: AuditAction,
    *,
    performed_by: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLogModel:
    entry = _entry(entity_type, entity_id, action, performed_by, metadata)
    return await AuditLogRepository(session).append(entry)


async def write_safe(
    session_factory: async_sessionmaker,
    entity_type: EntityType,
    entity_id: int,
    action: AuditAction,
    *,
    performed_by: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """Append in a separate transaction.  Returns ``False`` on failure."""
    try:
        async with session_factory() as session:
            await AuditLogRepository(session).append(
                _entry(entity_type, entity_id, action, performed_by, metadata)
            )
            await session.commit()
        return True
    except Exception:
        logger.exception(
            "Best-effort audit write failed: %s %s %s",
            EntityType(entity_type).value, entity_id, AuditAction(action).value,
        )
        return False


async def get_trail(
    session: AsyncSession, entity_type: EntityType, entity_id: int, limit: int = 50
) -> list[AuditLogModel]:
    return await AuditLogRepository(session).trail(
        EntityType(entity_type).value, entity_id, limit
    )


async def recent_events(
    session: AsyncSession, limit: int = 100, entity_type: EntityType | None = None
) -> list[AuditLogModel]:
    kind = EntityType(entity_type).value if entity_type else None
    return await AuditLogRepository(session).recent(limit, kind)
