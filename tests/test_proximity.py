"""Proximity (itinerary amenities) controller tests."""

from __future__ import annotations

import asyncio

import pytest

from stubs import StubQueryClient, node, wait_for_queries, way
from tripcore.core.contracts import ItineraryStop
from tripcore.services.proximity import ProximityFetchController
from tripcore.services.query_builder import around_spatial

PORT_AUGUSTA = ItineraryStop(id="node/10", lat=-32.49, lon=137.77, name="Port Augusta")
WOOMERA = ItineraryStop(id="node/11", lat=-31.2, lon=136.82, name="Woomera")
COOBER_PEDY = ItineraryStop(id="node/12", lat=-29.01, lon=134.75, name="Coober Pedy")


def _near(stop: ItineraryStop, query: str, radius_m: float = 10_000) -> bool:
    return around_spatial(stop.lat, stop.lon, radius_m) in query


def test_amenities_seen_from_several_stops_are_deduplicated() -> None:
    def respond(query: str) -> dict:
        if _near(PORT_AUGUSTA, query):
            return {"elements": [node(1, -32.49, 137.76, name="BP"), node(2, -32.0, 137.3)]}
        return {"elements": [node(2, -32.0, 137.3), way(3, -31.2, 136.8, name="Woomera Fuel")]}

    async def scenario():
        client = StubQueryClient(respond)
        ctrl = ProximityFetchController(client, enabled=("fuel",))
        result = await ctrl.update_stops([PORT_AUGUSTA, WOOMERA])
        return client, ctrl, result

    client, ctrl, result = asyncio.run(scenario())

    assert list(result) == ["fuel"]
    assert [p.id for p in result["fuel"]] == ["node/1", "node/2", "way/3"]
    # unnamed records get the category label
    assert [p.name for p in result["fuel"]] == ["BP", "Fuel", "Woomera Fuel"]
    assert all(p.category == "fuel" for p in result["fuel"])
    assert len(client.queries) == 2


def test_one_request_per_stop_and_category() -> None:
    async def scenario():
        client = StubQueryClient(lambda q: {"elements": []})
        ctrl = ProximityFetchController(client, radius_m=5_000)
        await ctrl.update_stops([PORT_AUGUSTA, WOOMERA, COOBER_PEDY])
        return client

    client = asyncio.run(scenario())

    assert len(client.queries) == 9
    for stop in (PORT_AUGUSTA, WOOMERA, COOBER_PEDY):
        assert sum(_near(stop, q, 5_000) for q in client.queries) == 3


def test_failed_category_is_isolated() -> None:
    def respond(query: str) -> dict:
        if "drinking_water" in query:
            raise RuntimeError("mirror down")
        if "sanitary_dump_station" in query:
            return {"elements": [node(20, -32.5, 137.7)]}
        return {"elements": [node(1, -32.49, 137.76, name="BP")]}

    async def scenario():
        client = StubQueryClient(respond)
        errors: list = []
        ctrl = ProximityFetchController(client, on_error=lambda c, e: errors.append(c))
        result = await ctrl.update_stops([PORT_AUGUSTA])
        return ctrl, result, errors

    ctrl, result, errors = asyncio.run(scenario())

    assert errors == ["water"]
    assert result["water"] == []
    assert ctrl.errors == {"water": "mirror down"}
    assert [p.id for p in result["fuel"]] == ["node/1"]
    assert [p.name for p in result["dump_station"]] == ["Dump point"]


def test_disabling_category_clears_it() -> None:
    async def scenario():
        client = StubQueryClient(lambda q: {"elements": [node(1, -32.49, 137.76, name="BP")]})
        updates: list = []
        ctrl = ProximityFetchController(
            client,
            enabled=("fuel",),
            on_update=lambda c, places: updates.append((c, len(places))),
        )
        await ctrl.update_stops([PORT_AUGUSTA])
        await ctrl.set_enabled("fuel", False)
        return ctrl, updates

    ctrl, updates = asyncio.run(scenario())

    assert updates == [("fuel", 1), ("fuel", 0)]
    assert ctrl.results["fuel"] == []


def test_enabling_category_fetches_current_stops() -> None:
    async def scenario():
        client = StubQueryClient(lambda q: {"elements": [node(5, -31.2, 136.82, name="Tap")]})
        ctrl = ProximityFetchController(client, enabled=())
        await ctrl.update_stops([WOOMERA])
        assert client.queries == []
        await ctrl.set_enabled("water", True)
        return client, ctrl

    client, ctrl = asyncio.run(scenario())

    assert len(client.queries) == 1
    assert [p.id for p in ctrl.results["water"]] == ["node/5"]


def test_results_for_an_old_itinerary_are_discarded() -> None:
    async def scenario():
        release = asyncio.Event()

        async def respond(query: str) -> dict:
            if _near(PORT_AUGUSTA, query):
                await release.wait()
                return {"elements": [node(1, -32.49, 137.76, name="Old")]}
            return {"elements": [node(2, -31.2, 136.82, name="New")]}

        client = StubQueryClient(respond)
        ctrl = ProximityFetchController(client, enabled=("fuel",))

        old = asyncio.create_task(ctrl.update_stops([PORT_AUGUSTA]))
        await wait_for_queries(client, 1)
        await ctrl.update_stops([WOOMERA])
        release.set()
        await old
        return ctrl

    ctrl = asyncio.run(scenario())

    assert [p.name for p in ctrl.results["fuel"]] == ["New"]


def test_empty_itinerary_clears_without_requests() -> None:
    async def scenario():
        client = StubQueryClient(lambda q: {"elements": [node(1, 0.0, 0.0, name="BP")]})
        ctrl = ProximityFetchController(client, enabled=("fuel",))
        await ctrl.update_stops([PORT_AUGUSTA])
        result = await ctrl.update_stops([])
        return client, result

    client, result = asyncio.run(scenario())

    assert result == {"fuel": []}
    assert len(client.queries) == 1


def test_unknown_category_is_rejected() -> None:
    client = StubQueryClient(lambda q: {})

    with pytest.raises(KeyError):
        ProximityFetchController(client, enabled=("toilets",))
    with pytest.raises(KeyError):
        asyncio.run(ProximityFetchController(client).set_enabled("toilets", True))
