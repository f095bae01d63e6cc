"""
Guarded state machines for vehicles, drivers and trips.

Pure functions over the adjacency tables in ``enums``; no I/O and no
mutation.  ``transition`` either returns the validated target state or
raises ``IllegalTransition``.
"""

from __future__ import annotations

import enum
from typing import Union

from .enums import (
    DRIVER_TRANSITIONS,
    TRIP_TRANSITIONS,
    VEHICLE_TRANSITIONS,
    DriverStatus,
    EntityType,
    TripStatus,
    VehicleStatus,
)
from .errors import IllegalTransition

Status = Union[VehicleStatus, DriverStatus, TripStatus]

TABLES: dict[EntityType, dict] = {
    EntityType.VEHICLE: VEHICLE_TRANSITIONS,
    EntityType.DRIVER: DRIVER_TRANSITIONS,
    EntityType.TRIP: TRIP_TRANSITIONS,
}

STATUS_TYPES: dict[EntityType, type[enum.Enum]] = {
    EntityType.VEHICLE: VehicleStatus,
    EntityType.DRIVER: DriverStatus,
    EntityType.TRIP: TripStatus,
}


def coerce_status(entity_type: EntityType, value) -> Status | None:
    """Map a raw value onto the entity's status enum; ``None`` if unknown."""
    try:
        return STATUS_TYPES[EntityType(entity_type)](value)
    except ValueError:
        return None


def allowed_next(entity_type: EntityType, current) -> frozenset:
    state = coerce_status(entity_type, current)
    if state is None:
        return frozenset()
    return TABLES[EntityType(entity_type)][state]


def is_terminal(entity_type: EntityType, current) -> bool:
    return not allowed_next(entity_type, current)


def can_transition(entity_type: EntityType, current, target) -> bool:
    target_state = coerce_status(entity_type, target)
    return target_state is not None and target_state in allowed_next(
        entity_type, current
    )


def transition(entity_type: EntityType, current, target) -> Status:
    """Validate ``current -> target`` for *entity_type*.

    Returns the target as a status enum member.  Raises
    ``IllegalTransition`` carrying the allowed next states otherwise.
    Unknown states are treated as having no outgoing edges.
    """
    entity_type = EntityType(entity_type)
    allowed = allowed_next(entity_type, current)
    target_state = coerce_status(entity_type, target)
    if target_state is None or target_state not in allowed:
        raise IllegalTransition(entity_type, current, target, allowed)
    return target_state
