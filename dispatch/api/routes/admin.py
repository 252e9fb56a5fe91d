"""
Admin / observability endpoints
===============================

GET    /api/v1/admin/rides                       -- paged ride listing
GET    /api/v1/admin/drivers                     -- paged driver listing
GET    /api/v1/admin/customers/{id}/no-shows     -- no-show count for a customer
GET    /api/v1/admin/drivers/{id}/no-shows       -- no-shows reported by a driver
DELETE /api/v1/admin/rides/{ride_id}             -- hard delete (admin tooling only)
POST   /api/v1/admin/sweep                       -- run one cleanup sweep now
GET    /api/v1/admin/health                      -- simple health check

Everything except ``/health`` needs a bearer token with role ADMIN.
``sortBy`` is matched against an allow-list; ``limit``/``offset`` are clamped.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch.api.auth import Principal, require_admin
from dispatch.api.dependencies import get_admin_service
from dispatch.api.middleware import limiter
from dispatch.api.schemas import (
    AdminRideResponse,
    DriverResponse,
    HealthResponse,
    NoShowCountResponse,
    SweepResponse,
    UserSummary,
)
from dispatch.config import settings
from dispatch.infrastructure.database import async_session_factory
from dispatch.services.admin import AdminService
from dispatch.workers import sweeper

router = APIRouter(prefix="/admin", tags=["admin"])


def get_session_factory() -> async_sessionmaker:
    return async_session_factory


@router.get(
    "/rides",
    response_model=list[AdminRideResponse],
    summary="List rides (sortable, paged)",
)
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    _: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    rows = await admin.list_rides(
        sort_by=sort_by, order=order, limit=limit, offset=offset
    )
    return [
        AdminRideResponse.from_model(
            row.ride,
            customer=UserSummary.model_validate(row.customer) if row.customer else None,
            driver=UserSummary.model_validate(row.driver) if row.driver else None,
            pickup_time_zone=row.pickup_time_zone,
            scheduled_at_local=row.scheduled_at_local,
        )
        for row in rows
    ]


@router.get(
    "/drivers",
    response_model=list[DriverResponse],
    summary="List drivers (sortable, paged)",
)
@limiter.limit(settings.rate_limit)
async def list_drivers(
    request: Request,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    online: Optional[bool] = Query(None),
    vehicle_type: Optional[str] = Query(None, alias="vehicleType"),
    _: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    drivers = await admin.list_drivers(
        sort_by=sort_by,
        order=order,
        limit=limit,
        offset=offset,
        online=online,
        vehicle_type=vehicle_type,
    )
    return [DriverResponse.model_validate(d) for d in drivers]


@router.get(
    "/customers/{customer_id}/no-shows",
    response_model=NoShowCountResponse,
    summary="No-show count for a customer",
)
@limiter.limit(settings.rate_limit)
async def customer_no_shows(
    request: Request,
    customer_id: int,
    _: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    count = await admin.customer_no_shows(customer_id)
    return NoShowCountResponse(user_id=customer_id, no_shows=count)


@router.get(
    "/drivers/{driver_id}/no-shows",
    response_model=NoShowCountResponse,
    summary="No-shows reported by a driver",
)
@limiter.limit(settings.rate_limit)
async def driver_no_shows(
    request: Request,
    driver_id: int,
    _: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    count = await admin.driver_no_shows(driver_id)
    return NoShowCountResponse(user_id=driver_id, no_shows=count)


@router.delete("/rides/{ride_id}", status_code=204, summary="Hard-delete a ride")
@limiter.limit(settings.rate_limit)
async def delete_ride(
    request: Request,
    ride_id: int,
    _: Principal = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    await admin.delete_ride(ride_id)
    return Response(status_code=204)


@router.post("/sweep", response_model=SweepResponse, summary="Run one cleanup sweep")
@limiter.limit(settings.rate_limit)
async def run_sweep(
    request: Request,
    _: Principal = Depends(require_admin),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    report = await sweeper.run_sweep_cycle(session_factory)
    if report is None:
        return SweepResponse(ran=False)
    return SweepResponse(
        ran=True,
        examined=report.examined,
        cancelled_ride_ids=[t.ride_id for t in report.cancelled],
        skipped=report.skipped,
        failed=report.failed,
        released_drivers=report.released_drivers,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
