"""Overpass query builder tests."""

from __future__ import annotations

import pytest

from tripcore.core.contracts import Viewport
from tripcore.services.query_builder import (
    build_amenity_query,
    build_category_query,
    build_places_query,
    place_clauses,
)


def _viewport(zoom: int) -> Viewport:
    return Viewport(south=-35.0, west=138.5, north=-34.5, east=139.0, zoom=zoom)


def test_places_query_is_gated_below_min_zoom() -> None:
    assert build_places_query(_viewport(3)) is None
    assert build_places_query(_viewport(0), small_towns=True) is None


def test_coarsest_tier_asks_only_for_big_cities() -> None:
    query = build_places_query(_viewport(4))

    assert query is not None
    rendered = query.render()
    assert '["place"="city"]["population"~"[0-9]{6,}"]' in rendered
    assert '"town"' not in rendered
    assert '"village"' not in rendered


def test_place_clauses_only_grow_with_zoom() -> None:
    for small_towns in (False, True):
        for zoom in range(0, 18):
            lower = set(place_clauses(zoom, small_towns=small_towns))
            higher = set(place_clauses(zoom + 1, small_towns=small_towns))
            assert lower <= higher, f"zoom {zoom} -> {zoom + 1} dropped clauses (small_towns={small_towns})"


def test_finest_tier_adds_attractions_for_every_element_kind() -> None:
    rendered = build_places_query(_viewport(12)).render()

    for kind in ("node", "way", "relation"):
        assert f'{kind}["tourism"="attraction"]' in rendered
    assert '["place"~"^(hamlet|suburb|locality)$"]' in rendered


def test_small_towns_flag_unions_small_settlements_at_every_fetching_tier() -> None:
    small = '["place"~"^(village|hamlet|locality)$"]'

    for zoom in (4, 5, 6, 7, 8, 12):
        assert small in build_places_query(_viewport(zoom), small_towns=True).render(), zoom
    assert small not in build_places_query(_viewport(6), small_towns=False).render()
    assert small not in build_places_query(_viewport(8), small_towns=False).render()
    assert build_places_query(_viewport(3), small_towns=True) is None


def test_render_wraps_clauses_in_envelope_with_bbox() -> None:
    rendered = build_places_query(_viewport(10)).render()

    assert rendered.startswith("[out:json][timeout:25];(")
    assert rendered.endswith(");out center;")
    assert "(-35.0,138.5,-34.5,139.0);" in rendered


def test_category_queries_respect_their_own_zoom_gate() -> None:
    assert build_category_query("campsites", _viewport(7)) is None
    assert build_category_query("trails", _viewport(9)) is None
    assert build_category_query("tracks", _viewport(9)) is None

    campsites = build_category_query("campsites", _viewport(8)).render()
    assert '["tourism"="camp_site"]' in campsites
    assert '["tourism"="caravan_site"]' in campsites

    trails = build_category_query("trails", _viewport(10)).render()
    assert 'relation["route"="hiking"]' in trails

    tracks = build_category_query("tracks", _viewport(10)).render()
    assert 'way["highway"="track"]["4wd_only"="yes"]' in tracks


def test_unknown_category_is_rejected() -> None:
    with pytest.raises(KeyError):
        build_category_query("ferries", _viewport(12))
    with pytest.raises(KeyError):
        build_amenity_query("toilets", lat=0.0, lon=0.0, radius_m=1000)


def test_amenity_query_uses_around_circle() -> None:
    rendered = build_amenity_query("fuel", lat=-34.9285, lon=138.6007, radius_m=10_000).render()

    assert '(around:10000,-34.928500,138.600700);' in rendered
    assert 'node["amenity"="fuel"]' in rendered
    assert 'way["amenity"="fuel"]' in rendered


def test_water_query_includes_drinkable_taps() -> None:
    rendered = build_amenity_query("water", lat=-34.0, lon=138.0, radius_m=500).render()

    assert '["amenity"="drinking_water"]' in rendered
    assert '["man_made"="water_tap"]["drinking_water"="yes"]' in rendered
