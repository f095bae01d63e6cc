"""
Business-rule checks run against *locked* row snapshots.

These run before any guarded transition so the caller gets a specific
reason (``DRIVER_SUSPENDED`` vs ``DRIVER_NOT_ON_DUTY`` and so on) rather
than the state machine's generic rejection.  Arguments are duck-typed:
ORM rows or any object with the same attributes.
"""

from __future__ import annotations

from datetime import date

from .enums import DriverStatus, TripStatus, VehicleStatus
from .errors import (
    ConcurrencyConflict,
    ConflictReason,
    IllegalStateTransition,
    PreconditionFailed,
)

VEHICLE_UNAVAILABLE_REASONS = {
    VehicleStatus.IN_SHOP: "VEHICLE_IN_SHOP",
    VehicleStatus.RETIRED: "VEHICLE_RETIRED",
}

CANCELLABLE_TRIP_STATUSES = (TripStatus.DRAFT, TripStatus.DISPATCHED)


def check_dispatch(vehicle, driver, cargo_weight_kg: float, *, today: date) -> None:
    """Raise ``PreconditionFailed`` for the first rule the pair violates.

    A vehicle or driver already ``on_trip`` lost the race to another
    dispatch, so it is reported as ``DOUBLE_DISPATCH_PREVENTED`` like the
    active-trip index would.
    """
    if cargo_weight_kg < 0:
        raise PreconditionFailed(
            "INVALID_CARGO_WEIGHT", "Cargo weight cannot be negative."
        )

    if driver.status == DriverStatus.SUSPENDED:
        raise PreconditionFailed(
            "DRIVER_SUSPENDED", f"Driver {driver.id} is suspended."
        )

    if driver.license_expiry < today:
        raise PreconditionFailed(
            "LICENSE_EXPIRED", f"License expired on {driver.license_expiry}."
        )

    if (
        driver.license_category
        and vehicle.vehicle_class
        and driver.license_category != vehicle.vehicle_class
    ):
        raise PreconditionFailed(
            "LICENSE_CATEGORY_MISMATCH",
            f"Driver category '{driver.license_category}' does not cover "
            f"vehicle class '{vehicle.vehicle_class}'.",
        )

    if vehicle.status == VehicleStatus.ON_TRIP:
        raise ConcurrencyConflict(
            ConflictReason.DOUBLE_DISPATCH_PREVENTED,
            f"Vehicle {vehicle.id} is already on an active trip.",
        )

    if vehicle.status != VehicleStatus.AVAILABLE:
        status = VehicleStatus(vehicle.status)
        raise PreconditionFailed(
            VEHICLE_UNAVAILABLE_REASONS.get(status, "VEHICLE_NOT_AVAILABLE"),
            f"Vehicle is '{status.value}'.",
        )

    if driver.status == DriverStatus.ON_TRIP:
        raise ConcurrencyConflict(
            ConflictReason.DOUBLE_DISPATCH_PREVENTED,
            f"Driver {driver.id} is already on an active trip.",
        )

    if driver.status != DriverStatus.ON_DUTY:
        raise PreconditionFailed(
            "DRIVER_NOT_ON_DUTY", f"Driver is '{DriverStatus(driver.status).value}'."
        )

    if cargo_weight_kg > vehicle.max_load_kg:
        raise PreconditionFailed(
            "CARGO_EXCEEDS_CAPACITY",
            f"Cargo {cargo_weight_kg}kg > vehicle max {vehicle.max_load_kg}kg.",
        )


def check_completion(trip, vehicle, final_odometer: int) -> None:
    if trip.status != TripStatus.DISPATCHED:
        raise IllegalStateTransition(
            "TRIP_NOT_DISPATCHED",
            f"Trip {trip.id} is '{TripStatus(trip.status).value}'; "
            "only dispatched trips can be completed.",
        )

    # Strictly increasing: zero-distance and backwards trips are rejected.
    if final_odometer <= trip.start_odometer:
        raise PreconditionFailed(
            "ODOMETER_NOT_INCREASING",
            f"Final odometer {final_odometer} must exceed start "
            f"odometer {trip.start_odometer}.",
        )

    if final_odometer < vehicle.odometer:
        raise PreconditionFailed(
            "ODOMETER_REGRESSION",
            f"Final odometer {final_odometer} is below the vehicle's "
            f"recorded {vehicle.odometer}.",
        )


def check_cancellable(trip) -> None:
    if trip.status not in CANCELLABLE_TRIP_STATUSES:
        raise IllegalStateTransition(
            "TRIP_NOT_CANCELLABLE",
            f"Trip {trip.id} is '{TripStatus(trip.status).value}'.",
        )


def service_due(odometer: int, service_due_km) -> bool:
    return service_due_km is not None and odometer >= service_due_km
