from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, TypeVar

import httpx
from pydantic import ValidationError

from tripcore.core.contracts import (
    LatLon,
    OsrmTripResponse,
    Route,
    StartLocation,
    TripLeg,
    TripRequest,
)
from tripcore.core.errors import MalformedResponse, RoutingUnavailable, ValidationFailed
from tripcore.core.settings import settings
from tripcore.core.time import utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ──────────────────────────────────────────────────────────────
# Request building
# ──────────────────────────────────────────────────────────────

def build_trip_request(start: Optional[StartLocation], stops: Sequence[Any]) -> TripRequest:
    """
    Start first, then stops in their current array order. Stops only need
    ``lat``/``lon`` attributes. Raises ValidationFailed before any I/O.
    """
    if start is None:
        raise ValidationFailed("choose a start location before computing a route")
    if not stops:
        raise ValidationFailed("itinerary has no stops")

    coords: List[LatLon] = [(float(start.lat), float(start.lon))]
    coords.extend((float(s.lat), float(s.lon)) for s in stops)

    return TripRequest(
        coordinates=coords,
        params={
            "source": "first",
            "destination": "any",
            "roundtrip": "false",
            "overview": "full",
            "geometries": "geojson",
            "steps": "false",
        },
    )


# ──────────────────────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────────────────────

def _swap(lon_lat: Sequence[float]) -> LatLon:
    if len(lon_lat) < 2:
        raise MalformedResponse(f"coordinate has {len(lon_lat)} components")
    return float(lon_lat[1]), float(lon_lat[0])


def reconcile_trip(raw: Dict[str, Any], stops: Sequence[Any]) -> Route:
    """
    Map an OSRM /trip response back onto the caller's stop identities.

    Input index 0 is the start and input index k (k >= 1) is ``stops[k-1]``.
    Each returned waypoint says where its input landed in the optimized
    order (``waypoint_index``); inverting that gives, per visiting position,
    the input it came from. Nothing is reconciled from a partial response.
    """
    try:
        resp = OsrmTripResponse.model_validate(raw)
    except ValidationError as e:
        raise MalformedResponse(f"unreadable trip response: {e.error_count()} validation errors") from e

    if resp.code != "Ok":
        raise MalformedResponse(f"trip service returned code={resp.code}: {resp.message or ''}".strip())
    if not resp.trips:
        raise MalformedResponse("trip service returned no trips")
    if not resp.waypoints:
        raise MalformedResponse("trip service returned no waypoints")

    trip = resp.trips[0]
    if trip.legs is None:
        raise MalformedResponse("trip has no legs")
    if trip.geometry is None:
        raise MalformedResponse("trip has no geometry")

    n = len(stops) + 1
    if len(resp.waypoints) != n:
        raise MalformedResponse(f"expected {n} waypoints, got {len(resp.waypoints)}")
    if len(trip.legs) != n - 1:
        raise MalformedResponse(f"expected {n - 1} legs, got {len(trip.legs)}")

    trip_to_input: List[Optional[int]] = [None] * n
    for pos, wp in enumerate(resp.waypoints):
        if wp.trips_index != 0:
            raise MalformedResponse("stops were split across several trips")
        input_idx = wp.input_index if wp.input_index is not None else pos
        if not (0 <= wp.waypoint_index < n) or not (0 <= input_idx < n):
            raise MalformedResponse(f"waypoint index out of range: trip={wp.waypoint_index} input={input_idx}")
        if trip_to_input[wp.waypoint_index] is not None:
            raise MalformedResponse(f"duplicate trip index {wp.waypoint_index}")
        trip_to_input[wp.waypoint_index] = input_idx

    if sorted(i for i in trip_to_input if i is not None) != list(range(n)):
        raise MalformedResponse("waypoint input indices are not a permutation")
    if trip_to_input[0] != 0:
        raise MalformedResponse("trip does not begin at the start location")

    by_input = {
        (wp.input_index if wp.input_index is not None else pos): wp
        for pos, wp in enumerate(resp.waypoints)
    }

    ordered_ids = [str(stops[i - 1].id) for i in trip_to_input[1:]]  # type: ignore[operator]
    waypoints = [_swap(by_input[i].location) for i in trip_to_input]  # type: ignore[index]

    return Route(
        coordinates=[_swap(c) for c in trip.geometry.coordinates],
        legs=[TripLeg(distance_m=leg.distance, duration_s=leg.duration) for leg in trip.legs],
        ordered_place_ids=ordered_ids,
        waypoints=waypoints,
        distance_m=float(trip.distance),
        duration_s=float(trip.duration),
        computed_at=utc_now_iso(),
    )


def apply_route_order(items: Sequence[T], route: Route) -> List[T]:
    """
    Reorder the caller's itinerary into visiting order. Items the route does
    not mention keep their relative order at the end.
    """
    by_id = {str(getattr(it, "id")): it for it in items}
    ordered = [by_id[pid] for pid in route.ordered_place_ids if pid in by_id]
    placed = set(route.ordered_place_ids)
    rest = [it for it in items if str(getattr(it, "id")) not in placed]
    return ordered + rest


# ──────────────────────────────────────────────────────────────
# Trip service
# ──────────────────────────────────────────────────────────────

class TripPlanner:
    """
    One OSRM /trip call per compute. Stateless: single-flight per itinerary
    is the caller's job, and a failure never yields a partial Route.
    """

    def __init__(
        self,
        *,
        osrm_base_url: str | None = None,
        osrm_profile: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.osrm_base_url = (osrm_base_url or settings.osrm_base_url).rstrip("/")
        self.osrm_profile = osrm_profile or settings.osrm_profile
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=float(settings.osrm_timeout_s))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def compute(self, start: Optional[StartLocation], stops: Sequence[Any]) -> Route:
        req = build_trip_request(start, stops)
        url = f"{self.osrm_base_url}/trip/v1/{self.osrm_profile}/{req.coords_path()}"

        try:
            r = await self.client.get(url, params=req.params)
        except httpx.HTTPError as e:
            raise RoutingUnavailable(f"OSRM request failed: {e!r}") from e

        if r.status_code != 200:
            raise RoutingUnavailable(f"OSRM returned {r.status_code}: {r.text[:500]}")

        try:
            data = r.json()
        except ValueError as e:
            raise MalformedResponse("OSRM returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise MalformedResponse("OSRM returned a non-object body")

        try:
            route = reconcile_trip(data, stops)
        except MalformedResponse as e:
            logger.warning("trip_reconcile_failed stops=%d err=%s", len(stops), e)
            raise

        logger.info(
            "trip_computed stops=%d legs=%d distance_m=%.0f duration_s=%.0f",
            len(stops),
            len(route.legs),
            route.distance_m,
            route.duration_s,
        )
        return route
