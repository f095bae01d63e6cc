"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from fleet.domain.enums import DriverStatus, TripStatus, VehicleStatus


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    vehicle_id: int
    driver_id: int
    cargo_weight_kg: float = Field(..., ge=0)
    dispatch: bool = Field(
        True, description="Dispatch immediately; false saves the trip as a draft."
    )
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-dispatch on retries.",
    )


class TripCompleteRequest(BaseModel):
    trip_id: int
    final_odometer: int = Field(..., ge=0)
    liters: Optional[float] = Field(None, ge=0)
    fuel_cost: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _fuel_pair(self) -> "TripCompleteRequest":
        if (self.liters is None) != (self.fuel_cost is None):
            raise ValueError("liters and fuel_cost must be given together")
        return self


class TripCancelRequest(BaseModel):
    trip_id: int


class VehicleCreateRequest(BaseModel):
    name_model: str = Field(..., min_length=1, max_length=120)
    license_plate: str = Field(..., min_length=1, max_length=32)
    vehicle_class: Optional[str] = Field(None, max_length=32)
    max_load_kg: float = Field(..., gt=0)
    odometer: int = Field(0, ge=0)
    service_due_km: Optional[int] = Field(None, gt=0)


class VehicleUpdateRequest(BaseModel):
    """Descriptive fields only; status and odometer are rejected."""

    model_config = {"extra": "forbid"}

    name_model: Optional[str] = Field(None, min_length=1, max_length=120)
    vehicle_class: Optional[str] = Field(None, max_length=32)
    max_load_kg: Optional[float] = Field(None, gt=0)
    service_due_km: Optional[int] = Field(None, gt=0)


class VehicleStatusUpdate(BaseModel):
    status: VehicleStatus


class MaintenanceCreateRequest(BaseModel):
    cost: float = Field(..., ge=0)
    description: str = Field(..., min_length=1)
    odometer_at_service: int = Field(..., ge=0)


class DriverCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    license_expiry: date
    license_category: Optional[str] = Field(None, max_length=32)
    safety_score: int = Field(100, ge=0, le=100)


class DriverUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    license_expiry: Optional[date] = None
    license_category: Optional[str] = Field(None, max_length=32)
    safety_score: Optional[int] = Field(None, ge=0, le=100)


class DriverStatusUpdate(BaseModel):
    status: DriverStatus


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: int
    vehicle_id: int
    driver_id: int
    cargo_weight_kg: float
    status: TripStatus
    start_odometer: int
    end_odometer: Optional[int] = None
    idempotency_key: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VehicleResponse(BaseModel):
    id: int
    name_model: str
    license_plate: str
    vehicle_class: Optional[str] = None
    max_load_kg: float
    odometer: int
    service_due_km: Optional[int] = None
    status: VehicleStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    name: str
    license_expiry: date
    license_category: Optional[str] = None
    safety_score: int
    status: DriverStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MaintenanceResponse(BaseModel):
    id: int
    vehicle_id: int
    cost: float
    description: str
    odometer_at_service: int
    service_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    performed_by: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    success: bool = False
    code: str
    reason: str
    detail: Optional[str] = None
    retryable: bool = False
