"""Pydantic request / response schemas for the REST API (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from dispatch.domain.enums import RideStatus, Role, ServiceKind
from dispatch.domain.timezones import to_local_display, to_local_iso


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(CamelModel):
    customer_id: int
    service_kind: ServiceKind
    origin_lat: float = Field(..., ge=-90, le=90)
    origin_lng: float = Field(..., ge=-180, le=180)
    dest_lat: float = Field(..., ge=-90, le=90)
    dest_lng: float = Field(..., ge=-180, le=180)
    destination_name: Optional[str] = Field(None, max_length=255)
    scheduled_at: Optional[str] = Field(
        None,
        description="Local wall-clock time (ISO-8601), converted to UTC for storage.",
    )
    time_zone: Optional[str] = Field(
        None, description="IANA zone of ``scheduledAt``; defaults to the service zone."
    )
    sub_type: Optional[str] = Field(None, max_length=120)
    category_name: Optional[str] = Field(None, max_length=120)
    note: Optional[str] = Field(None, max_length=2000)

    @field_validator("service_kind", mode="before")
    @classmethod
    def _parse_kind(cls, value):
        kind = ServiceKind.parse(value)
        if kind is None:
            raise ValueError(f"unrecognised service kind: {value!r}")
        return kind

    @field_validator("scheduled_at")
    @classmethod
    def _blank_is_none(cls, value):
        return value or None


class RideEditRequest(CamelModel):
    customer_id: int
    scheduled_at: Optional[str] = None
    time_zone: Optional[str] = None
    note: Optional[str] = Field(None, max_length=2000)
    sub_type: Optional[str] = Field(None, max_length=120)
    dest_lat: Optional[float] = Field(None, ge=-90, le=90)
    dest_lng: Optional[float] = Field(None, ge=-180, le=180)
    destination_name: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def _destination_pair(self):
        if (self.dest_lat is None) != (self.dest_lng is None):
            raise ValueError("destLat and destLng must be given together")
        return self


class RateRequest(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=1000)


class LocationUpdateRequest(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    online: bool = True


class ChatMessageRequest(CamelModel):
    content: str = Field(..., min_length=1, max_length=2000)


# ── Responses ─────────────────────────────────────────────────────────


class UserSummary(CamelModel):
    id: int
    name: str
    role: Role
    phone: Optional[str] = None


class RideResponse(CamelModel):
    id: int
    customer_id: int
    driver_id: Optional[int] = None
    service_kind: ServiceKind
    sub_type: Optional[str] = None
    category_name: Optional[str] = None
    note: Optional[str] = None
    origin_lat: float
    origin_lng: float
    dest_lat: float
    dest_lng: float
    destination_name: Optional[str] = None
    status: RideStatus
    requested_at: datetime
    scheduled_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    no_show_reported_at: Optional[datetime] = None
    no_show_reported_by: Optional[int] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    scheduled_at_local: Optional[str] = None
    scheduled_at_display: Optional[str] = None

    @classmethod
    def from_model(cls, ride, zone: Optional[str] = None, **extra) -> "RideResponse":
        data = cls.model_validate(ride).model_dump()
        if zone and ride.scheduled_at is not None:
            data["scheduled_at_local"] = to_local_iso(ride.scheduled_at, zone)
            data["scheduled_at_display"] = to_local_display(ride.scheduled_at, zone)
        data.update(extra)
        return cls(**data)


class RideStatusResponse(CamelModel):
    ride_id: int
    status: str
    driver_id: Optional[int] = None
    scheduled_at: Optional[str] = None
    scheduled_at_display: Optional[str] = None


class CustomerRideResponse(RideResponse):
    driver: Optional[UserSummary] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None


class AvailableRideResponse(RideResponse):
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None


class CurrentRideResponse(CamelModel):
    ride: Optional[RideResponse] = None


class DriverResponse(CamelModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    vehicle_type: Optional[ServiceKind] = None
    is_busy: bool
    online: bool
    last_known_lat: Optional[float] = None
    last_known_lng: Optional[float] = None
    last_location_at: Optional[datetime] = None


class AdminRideResponse(RideResponse):
    customer: Optional[UserSummary] = None
    driver: Optional[UserSummary] = None
    pickup_time_zone: str = "UTC"


class NoShowCountResponse(CamelModel):
    user_id: int
    no_shows: int


class MessageResponse(CamelModel):
    id: int
    chat_id: int
    sender: UserSummary
    content: str
    sent_at: datetime


class SweepResponse(CamelModel):
    ran: bool
    examined: int = 0
    cancelled_ride_ids: list[int] = []
    skipped: int = 0
    failed: int = 0
    released_drivers: int = 0


class EnumsResponse(CamelModel):
    service_kinds: list[str]
    service_categories: dict[str, str]
    ride_statuses: list[str]
    roles: list[str]


class HealthResponse(BaseModel):
    status: str = "ok"
