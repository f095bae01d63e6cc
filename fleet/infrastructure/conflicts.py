"""
Conflict classifier.

Translates storage-layer failures raised during lock acquisition, flush
or commit into the stable domain taxonomy.  This is the only module that
knows the storage engine's error vocabulary (PostgreSQL SQLSTATEs and
SQLite messages).

| signal                                   | result                       |
|------------------------------------------|------------------------------|
| unique violation on an active-trip index | DOUBLE_DISPATCH_PREVENTED    |
| unique violation on an idempotency key   | CONCURRENT_MODIFICATION      |
| lock not available (NOWAIT)              | RESOURCE_LOCKED              |
| serialization failure / deadlock / stale | CONCURRENT_MODIFICATION      |
| anything else                            | UnclassifiedError            |
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fleet.domain.errors import (
    ConcurrencyConflict,
    ConflictReason,
    DispatchError,
    UnclassifiedError,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
LOCK_NOT_AVAILABLE = "55P03"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"

ACTIVE_TRIP_CONSTRAINTS = ("uq_trips_active_vehicle", "uq_trips_active_driver")
# SQLite reports the columns rather than the index name.
ACTIVE_TRIP_COLUMNS = ("trips.vehicle_id", "trips.driver_id")
IDEMPOTENCY_MARKERS = ("trips_idempotency_key_key", "trips.idempotency_key")


def _sqlstate(orig) -> str | None:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    cause = getattr(orig, "__cause__", None)
    if cause is not None and cause is not orig:
        return getattr(cause, "sqlstate", None)
    return None


def _constraint_name(orig) -> str | None:
    diag = getattr(orig, "diag", None)  # psycopg
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name
    cause = getattr(orig, "__cause__", None)  # asyncpg via the adapter
    return getattr(cause, "constraint_name", None)


def _mentions(orig, markers) -> bool:
    name = _constraint_name(orig)
    text = f"{name or ''} {orig}"
    return any(marker in text for marker in markers)


def classify_storage_error(exc: BaseException) -> DispatchError:
    """Return the domain error for *exc*; never raises."""
    if isinstance(exc, DispatchError):
        return exc

    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(
            ConflictReason.CONCURRENT_MODIFICATION,
            "The row changed underneath this transaction; retry the operation.",
        )

    if not isinstance(exc, DBAPIError):
        logger.error("Unclassified failure: %r", exc)
        return UnclassifiedError("An unexpected error occurred.")

    orig = exc.orig
    state = _sqlstate(orig)
    message = str(orig).lower()

    unique = state == UNIQUE_VIOLATION or (
        isinstance(exc, IntegrityError) and "unique constraint failed" in message
    )
    if unique:
        if _mentions(orig, ACTIVE_TRIP_CONSTRAINTS + ACTIVE_TRIP_COLUMNS):
            return ConcurrencyConflict(
                ConflictReason.DOUBLE_DISPATCH_PREVENTED,
                "Another active trip already holds this vehicle or driver.",
            )
        if _mentions(orig, IDEMPOTENCY_MARKERS):
            return ConcurrencyConflict(
                ConflictReason.CONCURRENT_MODIFICATION,
                "A request with this idempotency key is already in flight; retry.",
            )

    if state == LOCK_NOT_AVAILABLE or "database is locked" in message:
        return ConcurrencyConflict(
            ConflictReason.RESOURCE_LOCKED,
            "Another transaction is currently modifying this resource.",
        )

    if state in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
        return ConcurrencyConflict(
            ConflictReason.CONCURRENT_MODIFICATION,
            "Concurrent update detected at commit; retry the operation.",
        )

    logger.error("Unclassified storage failure (sqlstate=%s): %s", state, orig)
    return UnclassifiedError("An unexpected storage error occurred.")
