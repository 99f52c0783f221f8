"""
Overpass QL builders.

Every query is a union of *clauses*, each one element kind + tag filters +
spatial constraint (viewport bbox or ``around`` circle), wrapped in the
``[out:json][timeout:N];( ... );out center;`` envelope so way/relation
records come back with a pre-computed centroid.

The generic places query is zoom-tiered: coarse zoom asks only for big
cities, each finer tier adds smaller settlement kinds, and the finest tier
adds attractions. Tiers are cumulative, so the clause set for a zoom is
always a superset of the clause set for any lower zoom.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from tripcore.core.contracts import BBox, Viewport
from tripcore.core.settings import settings


# ──────────────────────────────────────────────────────────────
# Clauses
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Clause:
    element: str                    # node | way | relation
    filters: Tuple[str, ...]        # e.g. ('["place"="city"]', '["population"~"[0-9]{6,}"]')

    def render(self, spatial: str) -> str:
        return f'{self.element}{"".join(self.filters)}{spatial};'


@dataclass(frozen=True)
class SpatialQuery:
    clauses: Tuple[Clause, ...]
    spatial: str                    # "(s,w,n,e)" or "(around:r,lat,lon)"
    timeout_s: int

    def render(self) -> str:
        body = "".join(c.render(self.spatial) for c in self.clauses)
        return f"[out:json][timeout:{self.timeout_s}];({body});out center;"


def _node(*filters: str) -> Clause:
    return Clause("node", filters)


def _nwr(*filters: str) -> List[Clause]:
    return [Clause(kind, filters) for kind in ("node", "way", "relation")]


def bbox_spatial(b: BBox) -> str:
    return f"({b.south},{b.west},{b.north},{b.east})"


def around_spatial(lat: float, lon: float, radius_m: float) -> str:
    return f"(around:{radius_m:.0f},{lat:.6f},{lon:.6f})"


def _dedup(clauses: Sequence[Clause]) -> Tuple[Clause, ...]:
    seen = set()
    out: List[Clause] = []
    for c in clauses:
        if c not in seen:
            seen.add(c)
            out.append(c)
    return tuple(out)


# ──────────────────────────────────────────────────────────────
# Generic places: zoom tiers
# ──────────────────────────────────────────────────────────────
# (min_zoom, clauses added at that tier)

_PLACE_TIERS: List[Tuple[int, List[Clause]]] = [
    (4, [_node('["place"="city"]', '["population"~"[0-9]{6,}"]')]),
    (6, [
        _node('["place"="city"]'),
        _node('["place"="town"]', '["population"~"[0-9]{5,}"]'),
    ]),
    (8, [
        _node('["place"="town"]'),
        _node('["place"="village"]', '["population"~"[0-9]{4,}"]'),
    ]),
    (10, [_node('["place"="village"]')]),
    (12, [
        _node('["place"~"^(hamlet|suburb|locality)$"]'),
        *_nwr('["tourism"="attraction"]'),
    ]),
]

_SMALL_SETTLEMENT_CLAUSES: List[Clause] = [
    _node('["place"~"^(village|hamlet|locality)$"]'),
]


def place_clauses(zoom: int, *, small_towns: bool = False) -> Tuple[Clause, ...]:
    out: List[Clause] = []
    for min_zoom, clauses in _PLACE_TIERS:
        if zoom >= min_zoom:
            out.extend(clauses)
    # any tier that fetches at all can surface small settlements on request
    if small_towns and out:
        out.extend(_SMALL_SETTLEMENT_CLAUSES)
    return _dedup(out)


def build_places_query(viewport: Viewport, *, small_towns: bool = False) -> Optional[SpatialQuery]:
    """Return None when the viewport is too far out to fetch anything."""
    if viewport.zoom < settings.places_min_zoom:
        return None
    clauses = place_clauses(viewport.zoom, small_towns=small_towns)
    if not clauses:
        return None
    return SpatialQuery(
        clauses=clauses,
        spatial=bbox_spatial(viewport),
        timeout_s=int(settings.overpass_timeout_s),
    )


# ──────────────────────────────────────────────────────────────
# Viewport categories
# ──────────────────────────────────────────────────────────────

_CATEGORY_CLAUSES: Dict[str, List[Clause]] = {
    "campsites": [
        *_nwr('["tourism"="camp_site"]'),
        *_nwr('["tourism"="caravan_site"]'),
    ],
    "trails": [
        Clause("relation", ('["route"="hiking"]',)),
        Clause("way", ('["highway"="path"]', '["sac_scale"]', '["name"]')),
    ],
    "tracks": [
        Clause("way", ('["highway"="track"]', '["4wd_only"="yes"]')),
        Clause("way", ('["highway"="track"]', '["tracktype"="grade5"]', '["name"]')),
    ],
}


def category_min_zoom(category: str) -> int:
    return {
        "places": settings.places_min_zoom,
        "campsites": settings.campsites_min_zoom,
        "trails": settings.trails_min_zoom,
        "tracks": settings.tracks_min_zoom,
    }[category]


def build_category_query(category: str, viewport: Viewport) -> Optional[SpatialQuery]:
    if category not in _CATEGORY_CLAUSES:
        raise KeyError(f"unknown viewport category: {category}")
    if viewport.zoom < category_min_zoom(category):
        return None
    return SpatialQuery(
        clauses=tuple(_CATEGORY_CLAUSES[category]),
        spatial=bbox_spatial(viewport),
        timeout_s=int(settings.overpass_timeout_s),
    )


# ──────────────────────────────────────────────────────────────
# Nearby amenities (around one itinerary stop)
# ──────────────────────────────────────────────────────────────

_AMENITY_CLAUSES: Dict[str, List[Clause]] = {
    "fuel": [_node('["amenity"="fuel"]'), Clause("way", ('["amenity"="fuel"]',))],
    "dump_station": [
        _node('["amenity"="sanitary_dump_station"]'),
        Clause("way", ('["amenity"="sanitary_dump_station"]',)),
    ],
    "water": [_node('["amenity"="drinking_water"]'), _node('["man_made"="water_tap"]', '["drinking_water"="yes"]')],
}


def build_amenity_query(category: str, *, lat: float, lon: float, radius_m: float) -> SpatialQuery:
    if category not in _AMENITY_CLAUSES:
        raise KeyError(f"unknown amenity category: {category}")
    return SpatialQuery(
        clauses=tuple(_AMENITY_CLAUSES[category]),
        spatial=around_spatial(lat, lon, radius_m),
        timeout_s=int(settings.overpass_timeout_s),
    )
