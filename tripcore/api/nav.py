from __future__ import annotations

from fastapi import APIRouter, Depends

from tripcore.core.contracts import TripComputeRequest, TripComputeResponse
from tripcore.core.errors import (
    MalformedResponse,
    RoutingUnavailable,
    ValidationFailed,
    bad_gateway,
    bad_request,
    service_unavailable,
)
from tripcore.services.trip import TripPlanner, apply_route_order

router = APIRouter(prefix="/nav")


def get_trip_planner() -> TripPlanner:
    raise RuntimeError("TripPlanner must be provided by app dependency override")


@router.post("/trip", response_model=TripComputeResponse)
async def nav_trip(
    req: TripComputeRequest,
    planner: TripPlanner = Depends(get_trip_planner),
) -> TripComputeResponse:
    try:
        route = await planner.compute(req.start, req.stops)
    except ValidationFailed as e:
        bad_request(e.code, str(e))
    except RoutingUnavailable as e:
        service_unavailable(e.code, str(e))
    except MalformedResponse as e:
        bad_gateway(e.code, str(e))

    return TripComputeResponse(route=route, itinerary=apply_route_order(req.stops, route))
