"""
Driver endpoints
================

POST   /api/v1/drivers                    -- register a driver (starts off_duty)
GET    /api/v1/drivers                    -- list drivers
GET    /api/v1/drivers/{driver_id}        -- fetch one driver
PUT    /api/v1/drivers/{driver_id}        -- edit record (name, license, score)
PATCH  /api/v1/drivers/{driver_id}/status -- on_duty / off_duty / suspended
DELETE /api/v1/drivers/{driver_id}        -- soft delete
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleet.api.dependencies import get_actor, get_coordinator, get_db
from fleet.api.middleware import limiter
from fleet.api.schemas import (
    DriverCreateRequest,
    DriverResponse,
    DriverStatusUpdate,
    DriverUpdateRequest,
    ErrorResponse,
)
from fleet.config import settings
from fleet.domain.enums import EntityType
from fleet.domain.errors import NotFound
from fleet.infrastructure.repositories import DriverRepository
from fleet.infrastructure.transaction import TransactionCoordinator
from fleet.services import resources

router = APIRouter(prefix="/drivers", tags=["drivers"])

ERRORS = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post("", status_code=201, response_model=DriverResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def create_driver(
    request: Request,
    body: DriverCreateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        driver = await resources.create_driver(
            tx, **body.model_dump(), performed_by=actor
        )
    return driver


@router.get("", response_model=list[DriverResponse], summary="List drivers")
@limiter.limit(settings.rate_limit)
async def list_drivers(request: Request, db: AsyncSession = Depends(get_db)):
    return await DriverRepository(db).list_all()


@router.get("/{driver_id}", response_model=DriverResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def get_driver(
    request: Request,
    driver_id: int,
    db: AsyncSession = Depends(get_db),
):
    driver = await DriverRepository(db).get_by_id(driver_id)
    if not driver:
        raise NotFound.for_entity(EntityType.DRIVER, driver_id)
    return driver


@router.put("/{driver_id}", response_model=DriverResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def update_driver(
    request: Request,
    driver_id: int,
    body: DriverUpdateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        driver = await resources.update_driver(
            tx,
            driver_id,
            body.model_dump(exclude_unset=True, exclude_none=True),
            performed_by=actor,
        )
    return driver


@router.patch(
    "/{driver_id}/status",
    response_model=DriverResponse,
    summary="Change driver status",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    driver_id: int,
    body: DriverStatusUpdate,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        driver = await resources.set_driver_status(
            tx, driver_id, body.status, performed_by=actor
        )
    return driver


@router.delete("/{driver_id}", response_model=DriverResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def delete_driver(
    request: Request,
    driver_id: int,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        driver = await resources.delete_driver(tx, driver_id, performed_by=actor)
    return driver
