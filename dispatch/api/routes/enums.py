"""GET /api/v1/enums -- closed value sets the clients render in forms."""

from fastapi import APIRouter

from dispatch.api.schemas import EnumsResponse
from dispatch.domain.enums import SERVICE_CATEGORY, RideStatus, Role, ServiceKind

router = APIRouter(tags=["enums"])


@router.get("/enums", response_model=EnumsResponse, summary="Enumerations")
async def enums():
    return EnumsResponse(
        service_kinds=[k.value for k in ServiceKind],
        service_categories={k.value: c.value for k, c in SERVICE_CATEGORY.items()},
        ride_statuses=[s.value for s in RideStatus],
        roles=[r.value for r in Role],
    )
