"""
Ride endpoints
==============

POST  /api/v1/rides                      -- request a ride (PENDING or SCHEDULED)
GET   /api/v1/rides/current              -- bearer's current ride
GET   /api/v1/rides/{ride_id}            -- ride snapshot
PATCH /api/v1/rides/{ride_id}            -- edit a scheduled ride
GET   /api/v1/rides/{ride_id}/status     -- polling: status + schedule display
PUT   /api/v1/rides/{ride_id}/accept     -- assignment guard (?driverId=)
PUT   /api/v1/rides/{ride_id}/start      -- ACCEPTED -> IN_PROGRESS (?driverId=)
PUT   /api/v1/rides/{ride_id}/done       -- IN_PROGRESS -> COMPLETED
PUT   /api/v1/rides/{ride_id}/cancel     -- open -> CANCELLED
PUT   /api/v1/rides/{ride_id}/no-show    -- SCHEDULED -> NO_SHOW (?driverId=)
POST  /api/v1/rides/{ride_id}/rate       -- rate a completed ride once

Rejected transitions answer 400 with ``{"error": ..., "code": "CONFLICT"}``;
re-invoking a transition on a terminal ride is an error, never a silent
success.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from dispatch.api.auth import Principal, get_current_user
from dispatch.api.dependencies import get_lifecycle
from dispatch.api.middleware import limiter
from dispatch.api.schemas import (
    CurrentRideResponse,
    RateRequest,
    RideCreateRequest,
    RideEditRequest,
    RideResponse,
    RideStatusResponse,
)
from dispatch.config import settings
from dispatch.domain.entities import Location
from dispatch.services.rides import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    description=(
        "Without ``scheduledAt`` the ride is PENDING and offered to drivers "
        "immediately.  A future ``scheduledAt`` (local time) makes it SCHEDULED."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.request_ride(
        customer_id=body.customer_id,
        service_kind=body.service_kind,
        origin=Location(body.origin_lat, body.origin_lng),
        destination=Location(body.dest_lat, body.dest_lng),
        destination_name=body.destination_name,
        scheduled_at=body.scheduled_at,
        time_zone=body.time_zone,
        sub_type=body.sub_type,
        category_name=body.category_name,
        note=body.note,
    )
    return RideResponse.from_model(ride, body.time_zone or settings.local_timezone)


@router.get(
    "/current",
    response_model=CurrentRideResponse,
    summary="Current ride of the authenticated customer or driver",
)
@limiter.limit(settings.rate_limit)
async def current_ride(
    request: Request,
    principal: Principal = Depends(get_current_user),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.current_ride(principal.user_id, principal.role)
    if ride is None:
        return CurrentRideResponse()
    return CurrentRideResponse(
        ride=RideResponse.from_model(ride, settings.local_timezone)
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Ride snapshot")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.get(ride_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.patch(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Edit a scheduled ride",
)
@limiter.limit(settings.rate_limit)
async def edit_ride(
    request: Request,
    ride_id: int,
    body: RideEditRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    destination = None
    if body.dest_lat is not None and body.dest_lng is not None:
        destination = Location(body.dest_lat, body.dest_lng)
    ride = await lifecycle.edit_scheduled(
        ride_id,
        body.customer_id,
        scheduled_at=body.scheduled_at,
        time_zone=body.time_zone,
        note=body.note,
        sub_type=body.sub_type,
        destination=destination,
        destination_name=body.destination_name,
    )
    return RideResponse.from_model(ride, body.time_zone or settings.local_timezone)


@router.get(
    "/{ride_id}/status",
    response_model=RideStatusResponse,
    summary="Poll ride status",
)
@limiter.limit(settings.rate_limit)
async def ride_status(
    request: Request,
    ride_id: int,
    time_zone: Optional[str] = Query(None, alias="timeZone"),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.status_snapshot(ride_id, time_zone)


@router.put(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a ride (assignment guard)",
    responses={400: {"description": "Ride already assigned or not available."}},
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: int,
    driver_id: int = Query(..., alias="driverId"),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.accept(ride_id, driver_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.put("/{ride_id}/start", response_model=RideResponse, summary="Start a ride")
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: int,
    driver_id: int = Query(..., alias="driverId"),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.start(ride_id, driver_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.put("/{ride_id}/done", response_model=RideResponse, summary="Complete a ride")
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.complete(ride_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.put("/{ride_id}/cancel", response_model=RideResponse, summary="Cancel a ride")
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.cancel(ride_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.put(
    "/{ride_id}/no-show",
    response_model=RideResponse,
    summary="Report a customer no-show",
    description="Allowed once the scheduled time plus the grace period has passed.",
)
@limiter.limit(settings.rate_limit)
async def no_show(
    request: Request,
    ride_id: int,
    driver_id: int = Query(..., alias="driverId"),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.mark_no_show(ride_id, driver_id)
    return RideResponse.from_model(ride, settings.local_timezone)


@router.post("/{ride_id}/rate", response_model=RideResponse, summary="Rate a ride")
@limiter.limit(settings.rate_limit)
async def rate_ride(
    request: Request,
    ride_id: int,
    body: RateRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.rate(ride_id, body.rating, body.feedback)
    return RideResponse.from_model(ride, settings.local_timezone)
