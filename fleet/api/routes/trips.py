"""
Trip endpoints
==============

POST /api/v1/trips                 -- create (and by default dispatch) a trip
GET  /api/v1/trips                 -- list trips, optionally by status
GET  /api/v1/trips/pending         -- list draft trips
GET  /api/v1/trips/{trip_id}       -- fetch one trip
POST /api/v1/trips/{trip_id}/dispatch -- dispatch a draft
POST /api/v1/trips/complete        -- finish a dispatched trip
POST /api/v1/trips/cancel          -- cancel a draft or dispatched trip

Every mutation runs inside one coordinator transaction; failures come
back as classified ``DispatchError`` bodies (see ``fleet.api.errors``).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fleet.api.dependencies import get_actor, get_coordinator, get_db
from fleet.api.middleware import limiter
from fleet.api.schemas import (
    ErrorResponse,
    TripCancelRequest,
    TripCompleteRequest,
    TripCreateRequest,
    TripResponse,
)
from fleet.config import settings
from fleet.domain.enums import EntityType, TripStatus
from fleet.domain.errors import NotFound
from fleet.infrastructure.repositories import TripRepository
from fleet.infrastructure.transaction import TransactionCoordinator
from fleet.services import dispatch

router = APIRouter(prefix="/trips", tags=["trips"])

ERRORS = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=TripResponse,
    summary="Create and dispatch a trip",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction(settings.dispatch_isolation) as tx:
        trip = await dispatch.create_trip(
            tx,
            vehicle_id=body.vehicle_id,
            driver_id=body.driver_id,
            cargo_weight_kg=body.cargo_weight_kg,
            dispatch=body.dispatch,
            idempotency_key=body.idempotency_key,
            performed_by=actor,
        )
    return trip


@router.get("", response_model=list[TripResponse], summary="List trips")
@limiter.limit(settings.rate_limit)
async def list_trips(
    request: Request,
    status: Optional[TripStatus] = None,
    db: AsyncSession = Depends(get_db),
):
    return await TripRepository(db).list_by_status(status)


@router.get(
    "/pending", response_model=list[TripResponse], summary="List draft trips"
)
@limiter.limit(settings.rate_limit)
async def list_pending(request: Request, db: AsyncSession = Depends(get_db)):
    return await TripRepository(db).list_by_status(TripStatus.DRAFT)


@router.post(
    "/complete",
    response_model=TripResponse,
    summary="Complete a dispatched trip",
    description=(
        "Releases the vehicle and driver, records the final odometer and, "
        "optionally, a fuel log."
    ),
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    body: TripCompleteRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        trip = await dispatch.complete_trip(
            tx,
            body.trip_id,
            body.final_odometer,
            liters=body.liters,
            fuel_cost=body.fuel_cost,
            performed_by=actor,
        )
    return trip


@router.post(
    "/cancel",
    response_model=TripResponse,
    summary="Cancel a trip",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def cancel_trip(
    request: Request,
    body: TripCancelRequest,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction() as tx:
        trip = await dispatch.cancel_trip(tx, body.trip_id, performed_by=actor)
    return trip


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: int,
    db: AsyncSession = Depends(get_db),
):
    trip = await TripRepository(db).get_by_id(trip_id)
    if not trip:
        raise NotFound.for_entity(EntityType.TRIP, trip_id)
    return trip


@router.post(
    "/{trip_id}/dispatch",
    response_model=TripResponse,
    summary="Dispatch a draft trip",
    responses=ERRORS,
)
@limiter.limit(settings.rate_limit)
async def dispatch_trip(
    request: Request,
    trip_id: int,
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    actor: Optional[str] = Depends(get_actor),
):
    async with coordinator.transaction(settings.dispatch_isolation) as tx:
        trip = await dispatch.dispatch_trip(tx, trip_id, performed_by=actor)
    return trip
