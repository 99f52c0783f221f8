"""Trip request building, OSRM reconciliation and planner tests."""

from __future__ import annotations

import asyncio
import urllib.parse

import httpx
import pytest
from pydantic import ValidationError

from tripcore.core.contracts import ItineraryStop, Route, StartLocation, TripLeg
from tripcore.core.errors import MalformedResponse, RoutingUnavailable, ValidationFailed
from tripcore.services.trip import TripPlanner, apply_route_order, build_trip_request, reconcile_trip

ADELAIDE = StartLocation(lat=-34.9285, lon=138.6007, name="Adelaide")
SYDNEY = ItineraryStop(id="node/syd", lat=-33.8688, lon=151.2093, name="Sydney")
MELBOURNE = ItineraryStop(id="node/mel", lat=-37.8136, lon=144.9631, name="Melbourne")


def _osrm_response(stops, start, trip_order, *, leg=(100.0, 60.0)) -> dict:
    """
    OSRM-shaped body. ``trip_order[k]`` is the visiting position of input k
    (input 0 is the start); waypoints are listed in input order.
    """
    inputs = [(start.lat, start.lon)] + [(s.lat, s.lon) for s in stops]
    visiting = sorted(range(len(inputs)), key=lambda k: trip_order[k])
    return {
        "code": "Ok",
        "trips": [
            {
                "geometry": {
                    "type": "LineString",
                    "coordinates": [[inputs[k][1], inputs[k][0]] for k in visiting],
                },
                "legs": [{"distance": leg[0], "duration": leg[1], "steps": []} for _ in stops],
                "distance": leg[0] * len(stops),
                "duration": leg[1] * len(stops),
            }
        ],
        "waypoints": [
            {
                "location": [lon, lat],
                "waypoint_index": trip_order[k],
                "trips_index": 0,
                "name": "",
                "hint": "x",
            }
            for k, (lat, lon) in enumerate(inputs)
        ],
    }


# ──────────────────────────────────────────────────────────────
# build_trip_request
# ──────────────────────────────────────────────────────────────

def test_request_requires_start_and_stops() -> None:
    with pytest.raises(ValidationFailed):
        build_trip_request(None, [SYDNEY])
    with pytest.raises(ValidationFailed):
        build_trip_request(ADELAIDE, [])


def test_request_puts_start_first_and_fixes_trip_flags() -> None:
    req = build_trip_request(ADELAIDE, [SYDNEY, MELBOURNE])

    assert req.coordinates == [(-34.9285, 138.6007), (-33.8688, 151.2093), (-37.8136, 144.9631)]
    assert req.coords_path() == "138.6007,-34.9285;151.2093,-33.8688;144.9631,-37.8136"
    assert req.params == {
        "source": "first",
        "destination": "any",
        "roundtrip": "false",
        "overview": "full",
        "geometries": "geojson",
        "steps": "false",
    }


# ──────────────────────────────────────────────────────────────
# reconcile_trip
# ──────────────────────────────────────────────────────────────

def test_identity_order() -> None:
    stops = [SYDNEY, MELBOURNE]
    route = reconcile_trip(_osrm_response(stops, ADELAIDE, [0, 1, 2]), stops)

    assert route.ordered_place_ids == ["node/syd", "node/mel"]
    assert route.waypoints[0] == (-34.9285, 138.6007)


def test_adelaide_melbourne_sydney() -> None:
    stops = [SYDNEY, MELBOURNE]
    # Sydney (input 1) is visited last, Melbourne (input 2) first
    route = reconcile_trip(_osrm_response(stops, ADELAIDE, [0, 2, 1]), stops)

    assert route.ordered_place_ids == ["node/mel", "node/syd"]
    assert route.waypoints == [
        (-34.9285, 138.6007),
        (-37.8136, 144.9631),
        (-33.8688, 151.2093),
    ]
    assert route.coordinates[0] == (-34.9285, 138.6007)
    assert route.coordinates[-1] == (-33.8688, 151.2093)
    assert route.distance_m == 200.0
    assert route.computed_at is not None


def test_reversed_permutation_on_longer_itinerary() -> None:
    stops = [ItineraryStop(id=f"node/{i}", lat=-30.0 - i, lon=135.0 + i) for i in range(1, 5)]
    route = reconcile_trip(_osrm_response(stops, ADELAIDE, [0, 4, 3, 2, 1]), stops)

    assert route.ordered_place_ids == ["node/4", "node/3", "node/2", "node/1"]
    assert route.waypoints[1] == (-34.0, 139.0)


def test_lengths_line_up() -> None:
    stops = [SYDNEY, MELBOURNE]
    route = reconcile_trip(_osrm_response(stops, ADELAIDE, [0, 2, 1]), stops)

    assert len(route.waypoints) == len(route.legs) + 1
    assert len(route.ordered_place_ids) == len(route.waypoints) - 1
    assert route.legs[0] == TripLeg(distance_m=100.0, duration_s=60.0)


def test_explicit_input_index_is_honoured() -> None:
    stops = [SYDNEY, MELBOURNE]
    body = _osrm_response(stops, ADELAIDE, [0, 2, 1])
    # same trip, waypoints listed in visiting order with their input index
    body["waypoints"] = [
        {**body["waypoints"][0], "input_index": 0},
        {**body["waypoints"][2], "input_index": 2},
        {**body["waypoints"][1], "input_index": 1},
    ]

    route = reconcile_trip(body, stops)

    assert route.ordered_place_ids == ["node/mel", "node/syd"]


def _break(mutate):
    body = _osrm_response([SYDNEY, MELBOURNE], ADELAIDE, [0, 2, 1])
    mutate(body)
    return body


@pytest.mark.parametrize(
    "body",
    [
        _break(lambda b: b.update(code="NoTrips", message="no trips")),
        _break(lambda b: b.update(trips=[])),
        _break(lambda b: b.pop("waypoints")),
        _break(lambda b: b["waypoints"].pop()),
        _break(lambda b: b["trips"][0]["legs"].pop()),
        _break(lambda b: b["trips"][0].pop("legs")),
        _break(lambda b: b["trips"][0].pop("geometry")),
        _break(lambda b: b["waypoints"][1].update(waypoint_index=1)),
        _break(lambda b: b["waypoints"][1].update(waypoint_index=7)),
        _break(lambda b: b["waypoints"][2].update(trips_index=1)),
        _break(lambda b: [b["waypoints"][0].update(waypoint_index=1), b["waypoints"][2].update(waypoint_index=0)]),
        _break(lambda b: b["waypoints"][0].update(location=[138.6])),
        _break(lambda b: b["waypoints"][0].pop("waypoint_index")),
    ],
)
def test_malformed_responses_are_rejected(body) -> None:
    with pytest.raises(MalformedResponse):
        reconcile_trip(body, [SYDNEY, MELBOURNE])


def test_route_rejects_mismatched_lengths() -> None:
    with pytest.raises(ValidationError):
        Route(
            coordinates=[],
            legs=[TripLeg(distance_m=1, duration_s=1)],
            ordered_place_ids=["a"],
            waypoints=[(0.0, 0.0)],
        )


# ──────────────────────────────────────────────────────────────
# apply_route_order
# ──────────────────────────────────────────────────────────────

def test_apply_route_order_reorders_and_keeps_unlisted_items_last() -> None:
    a = ItineraryStop(id="a", lat=0, lon=0)
    b = ItineraryStop(id="b", lat=0, lon=1)
    c = ItineraryStop(id="c", lat=0, lon=2)
    route = Route(
        coordinates=[],
        legs=[TripLeg(distance_m=1, duration_s=1), TripLeg(distance_m=1, duration_s=1)],
        ordered_place_ids=["c", "a"],
        waypoints=[(0.0, 0.0), (0.0, 2.0), (0.0, 0.0)],
    )

    assert [s.id for s in apply_route_order([a, b, c], route)] == ["c", "a", "b"]


# ──────────────────────────────────────────────────────────────
# TripPlanner
# ──────────────────────────────────────────────────────────────

def _plan(handler, start=ADELAIDE, stops=(SYDNEY, MELBOURNE)):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            planner = TripPlanner(osrm_base_url="https://osrm.example/", osrm_profile="driving", client=http)
            return await planner.compute(start, list(stops))

    return asyncio.run(scenario())


def test_planner_calls_trip_service_and_reconciles() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["host"] = request.url.host
        seen["path"] = urllib.parse.unquote(request.url.path)
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=_osrm_response([SYDNEY, MELBOURNE], ADELAIDE, [0, 2, 1]))

    route = _plan(handler)

    assert seen["host"] == "osrm.example"
    assert seen["path"] == "/trip/v1/driving/138.6007,-34.9285;151.2093,-33.8688;144.9631,-37.8136"
    assert seen["params"]["source"] == "first"
    assert seen["params"]["roundtrip"] == "false"
    assert seen["params"]["geometries"] == "geojson"
    assert route.ordered_place_ids == ["node/mel", "node/syd"]


def test_planner_validates_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ValidationFailed):
        _plan(handler, start=None)
    with pytest.raises(ValidationFailed):
        _plan(handler, stops=())


def test_planner_maps_transport_and_status_failures() -> None:
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def overloaded(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    with pytest.raises(RoutingUnavailable):
        _plan(refused)
    with pytest.raises(RoutingUnavailable):
        _plan(overloaded)


def test_planner_rejects_garbage_bodies() -> None:
    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html></html>")

    def no_trips(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoTrips", "message": "Trip not found"})

    with pytest.raises(MalformedResponse):
        _plan(html)
    with pytest.raises(MalformedResponse):
        _plan(no_trips)
