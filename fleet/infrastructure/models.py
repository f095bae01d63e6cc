"""
SQLAlchemy ORM models  (maps to PostgreSQL; portable to SQLite for tests).

Tables
------
* ``vehicles``          -- fleet vehicles, soft-deleted via ``deleted_at``
* ``drivers``           -- licensed drivers, soft-deleted via ``deleted_at``
* ``trips``             -- one vehicle + one driver bound for a cargo run
* ``fuel_logs``         -- fuel recorded when a trip completes
* ``maintenance_logs``  -- service records that send a vehicle to the shop
* ``audit_logs``        -- append-only transition records

Indexes
-------
* **Partial unique** ``uq_trips_active_vehicle`` / ``uq_trips_active_driver``
  on ``trips`` where status is ``draft`` or ``dispatched``: the storage-level
  backstop guaranteeing at most one active trip per vehicle and per driver.
* **B-Tree** on ``status``, foreign keys and ``(entity_type, entity_id)``
  for the look-ups used by the API and the audit trail.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    func,
    text,
)

from .database import Base
from fleet.domain.enums import DriverStatus, TripStatus, VehicleStatus

# Same predicate for both dialects; statuses are stored by value.
ACTIVE_TRIP_PREDICATE = "status IN ('draft', 'dispatched')"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name_model = Column(String(120), nullable=False)
    license_plate = Column(String(32), unique=True, nullable=False)
    vehicle_class = Column(String(32), nullable=True)
    max_load_kg = Column(Float, nullable=False)
    odometer = Column(Integer, default=0, nullable=False)
    service_due_km = Column(Integer, nullable=True)
    status = Column(
        _status_enum(VehicleStatus, "vehicle_status"),
        default=VehicleStatus.AVAILABLE,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_vehicles_status", "status"),)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    license_expiry = Column(Date, nullable=False)
    license_category = Column(String(32), nullable=True)
    safety_score = Column(Integer, default=100, nullable=False)
    status = Column(
        _status_enum(DriverStatus, "driver_status"),
        default=DriverStatus.OFF_DUTY,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_drivers_status", "status"),)


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    cargo_weight_kg = Column(Float, nullable=False)
    status = Column(
        _status_enum(TripStatus, "trip_status"),
        default=TripStatus.DRAFT,
        nullable=False,
    )
    start_odometer = Column(Integer, nullable=False)
    end_odometer = Column(Integer, nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    created_by = Column(String(120), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_trips_active_vehicle",
            "vehicle_id",
            unique=True,
            postgresql_where=text(ACTIVE_TRIP_PREDICATE),
            sqlite_where=text(ACTIVE_TRIP_PREDICATE),
        ),
        Index(
            "uq_trips_active_driver",
            "driver_id",
            unique=True,
            postgresql_where=text(ACTIVE_TRIP_PREDICATE),
            sqlite_where=text(ACTIVE_TRIP_PREDICATE),
        ),
        Index("idx_trips_status", "status"),
        Index("idx_trips_vehicle", "vehicle_id"),
        Index("idx_trips_driver", "driver_id"),
    )


class FuelLogModel(Base):
    __tablename__ = "fuel_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    vehicle_id = Column(
        Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False
    )
    liters = Column(Float, nullable=False)
    fuel_cost = Column(Float, nullable=False)
    logged_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_fuel_logs_trip", "trip_id"),)


class MaintenanceLogModel(Base):
    __tablename__ = "maintenance_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(
        Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False
    )
    cost = Column(Float, nullable=False)
    description = Column(Text, nullable=False)
    odometer_at_service = Column(Integer, nullable=False)
    service_date = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_maintenance_logs_vehicle", "vehicle_id"),)


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(40), nullable=False)
    performed_by = Column(String(120), nullable=True)
    # ``metadata`` is reserved on declarative classes.
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_created", "created_at"),
    )


class AuditLogImmutable(RuntimeError):
    """Raised when something tries to rewrite audit history."""


@event.listens_for(AuditLogModel, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutable(f"audit_logs row {target.id} is append-only")


@event.listens_for(AuditLogModel, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutable(f"audit_logs row {target.id} is append-only")
