"""
Post-commit service-due warnings.

Scheduled from inside a trip transaction but executed only after it
commits, at most once, and never allowed to affect the commit outcome.
"""

from __future__ import annotations

import logging
from typing import Optional

from fleet.domain.enums import AuditAction, EntityType
from fleet.domain.preconditions import service_due
from fleet.infrastructure.transaction import TransactionContext
from fleet.services import audit

logger = logging.getLogger(__name__)


def schedule_service_due_check(
    tx: TransactionContext, vehicle, *, performed_by: Optional[str] = None
) -> None:
    # Snapshot now: the row object must not be touched after the session closes.
    vehicle_id = vehicle.id
    odometer = vehicle.odometer
    service_due_km = vehicle.service_due_km
    session_factory = tx.session_factory

    async def _check() -> None:
        await warn_if_service_due(
            session_factory,
            vehicle_id,
            odometer,
            service_due_km,
            performed_by=performed_by,
        )

    tx.after_commit(f"service_due_check:vehicle:{vehicle_id}", _check)


async def warn_if_service_due(
    session_factory,
    vehicle_id: int,
    odometer: int,
    service_due_km: Optional[int],
    *,
    performed_by: Optional[str] = None,
) -> bool:
    """Log and record a warning if the vehicle crossed its service threshold."""
    if not service_due(odometer, service_due_km):
        return False
    logger.warning(
        "Vehicle %s is due for service: odometer %s km >= service_due %s km",
        vehicle_id, odometer, service_due_km,
    )
    await audit.write_safe(
        session_factory,
        EntityType.VEHICLE,
        vehicle_id,
        AuditAction.SERVICE_DUE_WARNING,
        performed_by=performed_by,
        metadata={"odometer": odometer, "service_due_km": service_due_km},
    )
    return True
