"""
Driver endpoints
================

GET /api/v1/drivers/{driver_id}/rides            -- rides the driver owns / owned
GET /api/v1/drivers/{driver_id}/available-rides  -- job feed (?lat=&lng=)
PUT /api/v1/drivers/{driver_id}/location         -- position + online flag

The job feed lists unassigned rides of a compatible kind inside their
visibility window; with a position it is limited to the configured
radius and sorted nearest first.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from dispatch.api.dependencies import get_lifecycle
from dispatch.api.middleware import limiter
from dispatch.api.schemas import (
    AvailableRideResponse,
    DriverResponse,
    LocationUpdateRequest,
    RideResponse,
)
from dispatch.config import settings
from dispatch.services.rides import RideLifecycle

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/{driver_id}/rides",
    response_model=list[RideResponse],
    summary="Rides assigned to a driver",
)
@limiter.limit(settings.rate_limit)
async def driver_rides(
    request: Request,
    driver_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    rides = await lifecycle.driver_rides(driver_id)
    return [RideResponse.from_model(r, settings.local_timezone) for r in rides]


@router.get(
    "/{driver_id}/available-rides",
    response_model=list[AvailableRideResponse],
    summary="Driver job feed",
)
@limiter.limit(settings.rate_limit)
async def available_rides(
    request: Request,
    driver_id: int,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    views = await lifecycle.available_for_driver(driver_id, lat=lat, lng=lng)
    return [
        AvailableRideResponse.from_model(
            v.ride,
            settings.local_timezone,
            distance_km=v.distance_km,
            eta_minutes=v.eta_minutes,
        )
        for v in views
    ]


@router.put(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Update driver position and online flag",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    driver_id: int,
    body: LocationUpdateRequest,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    driver = await lifecycle.update_driver_location(
        driver_id, lat=body.lat, lng=body.lng, online=body.online
    )
    return DriverResponse.model_validate(driver)
