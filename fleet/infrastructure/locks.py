"""
Row-lock coordinator.

Every entity a transaction mutates is first locked here with
``SELECT ... FOR UPDATE NOWAIT``.  A held lock surfaces immediately as
``RESOURCE_LOCKED`` instead of queueing.

The global order Vehicle -> Driver -> Trip is a property of this class,
not of its callers: ``acquire`` sorts its requests, and any later attempt
to lock a lower-ranked entity than one already held raises
``LockOrderViolation``.  Locks are released by the enclosing
transaction's commit or rollback.
"""

from __future__ import annotations

import enum
from typing import NamedTuple, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from .conflicts import classify_storage_error
from .repositories import DriverRepository, TripRepository, VehicleRepository
from fleet.domain.enums import EntityType
from fleet.domain.errors import NotFound


class LockRank(enum.IntEnum):
    VEHICLE = 1
    DRIVER = 2
    TRIP = 3


RANKS = {
    EntityType.VEHICLE: LockRank.VEHICLE,
    EntityType.DRIVER: LockRank.DRIVER,
    EntityType.TRIP: LockRank.TRIP,
}

REPOSITORIES = {
    EntityType.VEHICLE: VehicleRepository,
    EntityType.DRIVER: DriverRepository,
    EntityType.TRIP: TripRepository,
}


class LockOrderViolation(RuntimeError):
    """A caller tried to lock against the global order."""


class LockNotHeld(RuntimeError):
    """A mutation was attempted on a row this transaction has not locked."""


class LockedRows(NamedTuple):
    vehicle: Optional[object] = None
    driver: Optional[object] = None
    trip: Optional[object] = None


class LockCoordinator:
    def __init__(self, session: AsyncSession, *, nowait: bool = True):
        self.session = session
        self.nowait = nowait
        self._held: dict[tuple[EntityType, int], object] = {}
        self._highest = 0

    def holds(self, entity_type: EntityType, entity_id: int) -> bool:
        return (EntityType(entity_type), entity_id) in self._held

    def require(self, entity_type: EntityType, entity_id: int) -> None:
        if not self.holds(entity_type, entity_id):
            raise LockNotHeld(
                f"{EntityType(entity_type).value} {entity_id} must be locked before mutation"
            )

    async def acquire(
        self,
        *,
        vehicle_id: int | None = None,
        driver_id: int | None = None,
        trip_id: int | None = None,
    ) -> LockedRows:
        """Lock the given rows in global order and return their fresh state."""
        requested = [
            (EntityType.VEHICLE, vehicle_id),
            (EntityType.DRIVER, driver_id),
            (EntityType.TRIP, trip_id),
        ]
        rows = {}
        for entity_type, entity_id in requested:
            if entity_id is not None:
                rows[entity_type.value] = await self._lock_one(entity_type, entity_id)
        return LockedRows(**rows)

    def adopt(self, entity_type: EntityType, row) -> None:
        """Register a row this transaction just inserted.

        Uncommitted inserts are invisible to other transactions, so the row
        is effectively held; it still has to respect the global order.
        """
        self._check_order(EntityType(entity_type))
        self._mark_held(EntityType(entity_type), row.id, row)

    async def _lock_one(self, entity_type: EntityType, entity_id: int):
        key = (entity_type, entity_id)
        if key in self._held:
            return self._held[key]

        self._check_order(entity_type)
        repo = REPOSITORIES[entity_type](self.session)
        try:
            row = await repo.lock_by_id(entity_id, nowait=self.nowait)
        except DBAPIError as exc:
            raise classify_storage_error(exc) from exc

        if row is None:
            raise NotFound.for_entity(entity_type, entity_id)
        self._mark_held(entity_type, entity_id, row)
        return row

    def _check_order(self, entity_type: EntityType) -> None:
        rank = RANKS[entity_type]
        if rank < self._highest:
            raise LockOrderViolation(
                f"cannot lock {entity_type.value} after {LockRank(self._highest).name.lower()}; "
                "order is vehicle -> driver -> trip"
            )

    def _mark_held(self, entity_type: EntityType, entity_id: int, row) -> None:
        self._held[(entity_type, entity_id)] = row
        self._highest = max(self._highest, RANKS[entity_type])
