"""Domain enumerations and state-transition rules."""

import enum


class EntityType(str, enum.Enum):
    VEHICLE = "vehicle"
    DRIVER = "driver"
    TRIP = "trip"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    ON_TRIP = "on_trip"
    IN_SHOP = "in_shop"
    RETIRED = "retired"


class DriverStatus(str, enum.Enum):
    OFF_DUTY = "off_duty"
    ON_DUTY = "on_duty"
    ON_TRIP = "on_trip"
    SUSPENDED = "suspended"


class TripStatus(str, enum.Enum):
    DRAFT = "draft"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machines: maps current status -> set of valid next statuses.
# Terminal states are listed with an empty set, never omitted.
VEHICLE_TRANSITIONS: dict[VehicleStatus, frozenset[VehicleStatus]] = {
    VehicleStatus.AVAILABLE: frozenset(
        {VehicleStatus.ON_TRIP, VehicleStatus.IN_SHOP, VehicleStatus.RETIRED}
    ),
    VehicleStatus.ON_TRIP: frozenset({VehicleStatus.AVAILABLE}),
    VehicleStatus.IN_SHOP: frozenset({VehicleStatus.AVAILABLE, VehicleStatus.RETIRED}),
    VehicleStatus.RETIRED: frozenset(),
}

DRIVER_TRANSITIONS: dict[DriverStatus, frozenset[DriverStatus]] = {
    DriverStatus.OFF_DUTY: frozenset({DriverStatus.ON_DUTY}),
    DriverStatus.ON_DUTY: frozenset(
        {DriverStatus.ON_TRIP, DriverStatus.OFF_DUTY, DriverStatus.SUSPENDED}
    ),
    DriverStatus.ON_TRIP: frozenset({DriverStatus.ON_DUTY}),
    DriverStatus.SUSPENDED: frozenset(),
}

TRIP_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
    TripStatus.DRAFT: frozenset({TripStatus.DISPATCHED, TripStatus.CANCELLED}),
    TripStatus.DISPATCHED: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

# Trips in these states hold their vehicle and driver.
ACTIVE_TRIP_STATUSES = (TripStatus.DRAFT, TripStatus.DISPATCHED)


class IsolationLevel(str, enum.Enum):
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class DispatchPhase(str, enum.Enum):
    """Progress of a single protocol operation inside its transaction."""

    VALIDATING = "validating"
    LOCKING = "locking"
    GUARDING = "guarding"
    MUTATING = "mutating"
    AUDITING = "auditing"
    COMMITTED = "committed"
    ABORTED = "aborted"


class AuditAction(str, enum.Enum):
    VEHICLE_CREATED = "vehicle_created"
    VEHICLE_UPDATED = "vehicle_updated"
    VEHICLE_STATE_CHANGED = "vehicle_state_changed"
    VEHICLE_RETIRED = "vehicle_retired"
    VEHICLE_DELETED = "vehicle_deleted"
    MAINTENANCE_LOGGED = "maintenance_logged"
    SERVICE_DUE_WARNING = "service_due_warning"
    DRIVER_CREATED = "driver_created"
    DRIVER_UPDATED = "driver_updated"
    DRIVER_STATE_CHANGED = "driver_state_changed"
    DRIVER_SUSPENDED = "driver_suspended"
    DRIVER_DELETED = "driver_deleted"
    TRIP_CREATED = "trip_created"
    TRIP_DISPATCHED = "trip_dispatched"
    TRIP_COMPLETED = "trip_completed"
    TRIP_CANCELLED = "trip_cancelled"
    FUEL_LOGGED = "fuel_logged"
