"""
Vehicle endpoints
=================

POST   /api/v1/vehicles                         -- register a vehicle
GET    /api/v1/vehicles                         -- list vehicles
GET    /api/v1/vehicles/{vehicle_id}            -- fetch one vehicle
PUT    /api/v1/vehicles/{vehicle_id}            -- edit descriptive fields
PATCH  /api/v1/vehicles/{vehicle_id}/status     -- direct status change
PATCH  /api/v1/vehicles/{vehicle_id}/retire     -- retire a vehicle
POST   /api/v1/vehicles/{vehicle_id}/maintenance -- log a service, send to shop
DELETE /api/v1/vehicles/{vehicle_id}            -- soft delete
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleet.api.dependencies import get_actor, get_coordinator, get_db
from fleet.api.middleware import limiter
from fleet.api.schemas import (
    ErrorResponse,
    MaintenanceCreateRequest,
    MaintenanceResponse,
    VehicleCreateRequest,
    VehicleResponse,
    VehicleStatusUpdate,
    VehicleUpdateRequest,
)
from fleet.config import settings
from fleet.domain.enums import EntityType
from fleet.domain.errors import NotFound
from fleet.infrastructure.repositories import VehicleRepository
from fleet.infrastructure.transaction import TransactionCoordinator
from fleet.services import resources

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

ERRORS = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post("", status_code=201, response_model=VehicleResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def create_vehicle(
    request: Request,
    body: VehicleCreateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        vehicle = await resources.create_vehicle(
            tx, **body.model_dump(), performed_by=actor
        )
    return vehicle


@router.get("", response_model=list[VehicleResponse], summary="List vehicles")
@limiter.limit(settings.rate_limit)
async def list_vehicles(request: Request, db: AsyncSession = Depends(get_db)):
    return await VehicleRepository(db).list_all()


@router.get("/{vehicle_id}", response_model=VehicleResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def get_vehicle(
    request: Request,
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
):
    vehicle = await VehicleRepository(db).get_by_id(vehicle_id)
    if not vehicle:
        raise NotFound.for_entity(EntityType.VEHICLE, vehicle_id)
    return vehicle


@router.put(
    "/{vehicle_id}",
    response_model=VehicleResponse,
    summary="Edit a vehicle",
    description="Updates name, class, capacity and service interval. "
    "Status and odometer have their own endpoints.",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def update_vehicle(
    request: Request,
    vehicle_id: int,
    body: VehicleUpdateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        vehicle = await resources.update_vehicle(
            tx,
            vehicle_id,
            body.model_dump(exclude_unset=True, exclude_none=True),
            performed_by=actor,
        )
    return vehicle


@router.patch(
    "/{vehicle_id}/status",
    response_model=VehicleResponse,
    summary="Change vehicle status",
    description="Moves between available, in_shop and retired. "
    "on_trip is managed by the trip endpoints only.",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    vehicle_id: int,
    body: VehicleStatusUpdate,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        vehicle = await resources.set_vehicle_status(
            tx, vehicle_id, body.status, performed_by=actor
        )
    return vehicle


@router.patch(
    "/{vehicle_id}/retire",
    response_model=VehicleResponse,
    summary="Retire a vehicle",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def retire_vehicle(
    request: Request,
    vehicle_id: int,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        vehicle = await resources.retire_vehicle(tx, vehicle_id, performed_by=actor)
    return vehicle


@router.post(
    "/{vehicle_id}/maintenance",
    status_code=201,
    response_model=MaintenanceResponse,
    summary="Log maintenance",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def log_maintenance(
    request: Request,
    vehicle_id: int,
    body: MaintenanceCreateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        log = await resources.log_maintenance(
            tx, vehicle_id, **body.model_dump(), performed_by=actor
        )
    return log


@router.delete("/{vehicle_id}", response_model=VehicleResponse, responses=ERRORS)
@limiter.limit(settings.rate_limit)
async def delete_vehicle(
    request: Request,
    vehicle_id: int,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        vehicle = await resources.delete_vehicle(tx, vehicle_id, performed_by=actor)
    return vehicle
