"""
Applying guarded transitions to locked rows.

``apply_transition`` is the only code that writes a ``status`` column.
It requires the row to be locked by the current transaction, validates
the edge through the state machine *before* touching the row, then writes
the new status (plus any bound field changes, e.g. the odometer) and one
audit entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fleet.domain import state_machine
from fleet.domain.enums import (
    AuditAction,
    DispatchPhase,
    DriverStatus,
    EntityType,
    TripStatus,
    VehicleStatus,
)
from fleet.infrastructure.transaction import Operation, TransactionContext
from fleet.services import audit

SPECIALISED_ACTIONS = {
    (EntityType.VEHICLE, VehicleStatus.RETIRED): AuditAction.VEHICLE_RETIRED,
    (EntityType.DRIVER, DriverStatus.SUSPENDED): AuditAction.DRIVER_SUSPENDED,
    (EntityType.TRIP, TripStatus.DISPATCHED): AuditAction.TRIP_DISPATCHED,
    (EntityType.TRIP, TripStatus.COMPLETED): AuditAction.TRIP_COMPLETED,
    (EntityType.TRIP, TripStatus.CANCELLED): AuditAction.TRIP_CANCELLED,
}

GENERIC_ACTIONS = {
    EntityType.VEHICLE: AuditAction.VEHICLE_STATE_CHANGED,
    EntityType.DRIVER: AuditAction.DRIVER_STATE_CHANGED,
}


@dataclass(frozen=True)
class TransitionResult:
    entity_type: EntityType
    entity_id: int
    from_state: str
    to_state: str


def action_for(entity_type: EntityType, target) -> AuditAction:
    return SPECIALISED_ACTIONS.get(
        (entity_type, target), GENERIC_ACTIONS.get(entity_type)
    )


async def apply_transition(
    tx: TransactionContext,
    entity_type: EntityType,
    row,
    target,
    *,
    performed_by: Optional[str] = None,
    changes: Optional[dict[str, Any]] = None,
    metadata: Optional[dict[str, Any]] = None,
    op: Optional[Operation] = None,
) -> TransitionResult:
    entity_type = EntityType(entity_type)
    tx.locks.require(entity_type, row.id)

    before = state_machine.coerce_status(entity_type, row.status)
    new_state = state_machine.transition(entity_type, row.status, target)

    if op:
        op.advance(DispatchPhase.MUTATING)
    details = {"from": before.value if before else row.status, "to": new_state.value}
    row.status = new_state
    for field, value in (changes or {}).items():
        details[field] = {"from": getattr(row, field), "to": value}
        setattr(row, field, value)
    if metadata:
        details.update(metadata)

    if op:
        op.advance(DispatchPhase.AUDITING)
    await audit.write_in_tx(
        tx.session,
        entity_type,
        row.id,
        action_for(entity_type, new_state),
        performed_by=performed_by,
        metadata=details,
    )
    return TransitionResult(entity_type, row.id, details["from"], new_state.value)
