"""
Customer endpoints
==================

GET /api/v1/customers/{customer_id}/rides -- ride history, with driver ETA
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from dispatch.api.dependencies import get_lifecycle
from dispatch.api.middleware import limiter
from dispatch.api.schemas import CustomerRideResponse, UserSummary
from dispatch.config import settings
from dispatch.services.rides import RideLifecycle

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get(
    "/{customer_id}/rides",
    response_model=list[CustomerRideResponse],
    summary="Rides requested by a customer",
)
@limiter.limit(settings.rate_limit)
async def customer_rides(
    request: Request,
    customer_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    views = await lifecycle.customer_rides(customer_id)
    return [
        CustomerRideResponse.from_model(
            v.ride,
            settings.local_timezone,
            driver=UserSummary.model_validate(v.driver) if v.driver else None,
            distance_km=round(v.distance_km, 2) if v.distance_km is not None else None,
            eta_minutes=v.eta_minutes,
        )
        for v in views
    ]
