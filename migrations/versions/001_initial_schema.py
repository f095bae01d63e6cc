"""Initial schema: fleet resources, trips, logs and the audit trail.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_TRIP_PREDICATE = sa.text("status IN ('draft', 'dispatched')")

vehicle_status = sa.Enum(
    "available", "on_trip", "in_shop", "retired", name="vehicle_status"
)
driver_status = sa.Enum(
    "off_duty", "on_duty", "on_trip", "suspended", name="driver_status"
)
trip_status = sa.Enum(
    "draft", "dispatched", "completed", "cancelled", name="trip_status"
)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            )
        )
    return columns


def upgrade() -> None:
    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name_model", sa.String(120), nullable=False),
        sa.Column("license_plate", sa.String(32), unique=True, nullable=False),
        sa.Column("vehicle_class", sa.String(32), nullable=True),
        sa.Column("max_load_kg", sa.Float, nullable=False),
        sa.Column("odometer", sa.Integer, server_default="0", nullable=False),
        sa.Column("service_due_km", sa.Integer, nullable=True),
        sa.Column(
            "status", vehicle_status, server_default="available", nullable=False
        ),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_vehicles_status", "vehicles", ["status"])

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("license_expiry", sa.Date, nullable=False),
        sa.Column("license_category", sa.String(32), nullable=True),
        sa.Column("safety_score", sa.Integer, server_default="100", nullable=False),
        sa.Column(
            "status", driver_status, server_default="off_duty", nullable=False
        ),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column("cargo_weight_kg", sa.Float, nullable=False),
        sa.Column("status", trip_status, server_default="draft", nullable=False),
        sa.Column("start_odometer", sa.Integer, nullable=False),
        sa.Column("end_odometer", sa.Integer, nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("created_by", sa.String(120), nullable=True),
        *_timestamps(updated=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    # At most one draft/dispatched trip per vehicle and per driver.
    op.create_index(
        "uq_trips_active_vehicle",
        "trips",
        ["vehicle_id"],
        unique=True,
        postgresql_where=ACTIVE_TRIP_PREDICATE,
    )
    op.create_index(
        "uq_trips_active_driver",
        "trips",
        ["driver_id"],
        unique=True,
        postgresql_where=ACTIVE_TRIP_PREDICATE,
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_vehicle", "trips", ["vehicle_id"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])

    # ── fuel_logs ─────────────────────────────────────────────────────
    op.create_table(
        "fuel_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "trip_id",
            sa.Integer,
            sa.ForeignKey("trips.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "vehicle_id",
            sa.Integer,
            sa.ForeignKey("vehicles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("liters", sa.Float, nullable=False),
        sa.Column("fuel_cost", sa.Float, nullable=False),
        sa.Column(
            "logged_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("idx_fuel_logs_trip", "fuel_logs", ["trip_id"])

    # ── maintenance_logs ──────────────────────────────────────────────
    op.create_table(
        "maintenance_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id",
            sa.Integer,
            sa.ForeignKey("vehicles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("cost", sa.Float, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("odometer_at_service", sa.Integer, nullable=False),
        sa.Column(
            "service_date", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_maintenance_logs_vehicle", "maintenance_logs", ["vehicle_id"]
    )

    # ── audit_logs ────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.Integer, nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("performed_by", sa.String(120), nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index(
        "idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"]
    )
    op.create_index("idx_audit_logs_created", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("maintenance_logs")
    op.drop_table("fuel_logs")
    op.drop_table("trips")
    op.drop_table("drivers")
    op.drop_table("vehicles")
    op.execute("DROP TYPE IF EXISTS trip_status")
    op.execute("DROP TYPE IF EXISTS driver_status")
    op.execute("DROP TYPE IF EXISTS vehicle_status")
