"""
Audit endpoints
===============

GET /api/v1/audit/recent                         -- latest events, newest first
GET /api/v1/audit/{entity_type}/{entity_id}      -- one entity's trail
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleet.api.dependencies import get_db
from fleet.api.middleware import limiter
from fleet.api.schemas import AuditLogResponse
from fleet.config import settings
from fleet.domain.enums import EntityType
from fleet.services import audit

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/recent", response_model=list[AuditLogResponse], summary="Recent events")
@limiter.limit(settings.rate_limit)
async def recent(
    request: Request,
    entity_type: Optional[EntityType] = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await audit.recent_events(db, limit=limit, entity_type=entity_type)


@router.get(
    "/{entity_type}/{entity_id}",
    response_model=list[AuditLogResponse],
    summary="Audit trail for one entity",
)
@limiter.limit(settings.rate_limit)
async def trail(
    request: Request,
    entity_type: EntityType,
    entity_id: int,
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await audit.get_trail(
        db, entity_type, entity_id, limit=limit or settings.audit_trail_limit
    )
