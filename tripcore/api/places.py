from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from tripcore.core.contracts import (
    CategoryPlacesRequest,
    GeocodeRequest,
    GeocodeResult,
    NearbyRequest,
    NearbyResponse,
    PlacesResponse,
    ViewportPlacesRequest,
)
from tripcore.core.errors import EndpointsExhausted, ValidationFailed, bad_request, service_unavailable
from tripcore.services.failover import EndpointFailoverClient
from tripcore.services.geocoding import Geocoder
from tripcore.services.proximity import ProximityFetchController
from tripcore.services.viewport import fetch_viewport_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/places")


def get_query_client() -> EndpointFailoverClient:
    raise RuntimeError("EndpointFailoverClient must be provided by app dependency override")


def get_geocoder() -> Geocoder:
    raise RuntimeError("Geocoder must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# /places/viewport, /places/category
# ──────────────────────────────────────────────────────────────

@router.post("/viewport", response_model=PlacesResponse)
async def places_viewport(
    req: ViewportPlacesRequest,
    client: EndpointFailoverClient = Depends(get_query_client),
) -> PlacesResponse:
    try:
        items = await fetch_viewport_category(client, "places", req.viewport, small_towns=req.small_towns)
    except EndpointsExhausted as e:
        service_unavailable(e.code, str(e))
    return PlacesResponse(category="places", items=items or [], gated=items is None)


@router.post("/category", response_model=PlacesResponse)
async def places_category(
    req: CategoryPlacesRequest,
    client: EndpointFailoverClient = Depends(get_query_client),
) -> PlacesResponse:
    try:
        items = await fetch_viewport_category(client, req.category, req.viewport)
    except EndpointsExhausted as e:
        service_unavailable(e.code, str(e))
    return PlacesResponse(category=req.category, items=items or [], gated=items is None)


# ──────────────────────────────────────────────────────────────
# /places/nearby
# ──────────────────────────────────────────────────────────────

@router.post("/nearby", response_model=NearbyResponse)
async def places_nearby(
    req: NearbyRequest,
    client: EndpointFailoverClient = Depends(get_query_client),
) -> NearbyResponse:
    if not req.stops:
        bad_request("bad_nearby_request", "stops must contain at least 1 stop")

    proximity = ProximityFetchController(client, radius_m=req.radius_m, enabled=req.categories)
    amenities = await proximity.update_stops(req.stops)

    logger.info(
        "places_nearby: stops=%d categories=%s failed=%s",
        len(req.stops),
        ",".join(req.categories),
        ",".join(proximity.errors) or "-",
    )
    return NearbyResponse(radius_m=int(proximity.radius_m), amenities=amenities, errors=dict(proximity.errors))


# ──────────────────────────────────────────────────────────────
# /places/geocode
# ──────────────────────────────────────────────────────────────

@router.post("/geocode", response_model=list[GeocodeResult])
async def places_geocode(
    req: GeocodeRequest,
    geocoder: Geocoder = Depends(get_geocoder),
) -> list[GeocodeResult]:
    try:
        return await geocoder.search(req.query, country=req.country, proximity=req.proximity, limit=req.limit)
    except ValidationFailed as e:
        bad_request(e.code, str(e))
    except RuntimeError as e:
        logger.error("geocode_failed: %s", e)
        service_unavailable("geocoding_unavailable", str(e))
