from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Sequence

from tripcore.core.contracts import AMENITY_CATEGORIES, ItineraryStop, Place
from tripcore.core.settings import settings
from tripcore.services.classifier import classify_elements, elements_of
from tripcore.services.query_builder import build_amenity_query
from tripcore.services.viewport import QueryClient

logger = logging.getLogger(__name__)

# amenity category -> (marker category, label for unnamed records)
_AMENITY_MARKERS: Dict[str, tuple] = {
    "fuel": ("fuel", "Fuel"),
    "dump_station": ("dump_station", "Dump point"),
    "water": ("water", "Drinking water"),
}


class ProximityFetchController:
    """
    Amenities (fuel, dump stations, drinking water) within ``radius_m`` of
    every itinerary stop, one deduplicated list per category.

    There is no "union of circles" query, so each category costs one request
    per stop. Stops are walked sequentially; categories run concurrently and
    fail independently. Requests are never cancelled: a per-category
    generation counter discards results that finish after the itinerary
    changed or the category was switched off.
    """

    def __init__(
        self,
        client: QueryClient,
        *,
        radius_m: float | None = None,
        enabled: Iterable[str] = AMENITY_CATEGORIES,
        on_update: Callable[[str, List[Place]], None] | None = None,
        on_error: Callable[[str, BaseException], None] | None = None,
    ):
        self.client = client
        self.radius_m = float(radius_m or settings.proximity_radius_m)
        self.enabled = set(enabled)
        unknown = self.enabled - set(AMENITY_CATEGORIES)
        if unknown:
            raise KeyError(f"unknown amenity categories: {sorted(unknown)}")
        self.on_update = on_update
        self.on_error = on_error

        self.results: Dict[str, List[Place]] = {c: [] for c in AMENITY_CATEGORIES}
        self.errors: Dict[str, str] = {}
        self._generation: Dict[str, int] = {c: 0 for c in AMENITY_CATEGORIES}
        self._stops: List[ItineraryStop] = []

    # ──────────────────────────────────────────────────────────
    # Events
    # ──────────────────────────────────────────────────────────

    async def update_stops(self, stops: Sequence[ItineraryStop]) -> Dict[str, List[Place]]:
        self._stops = list(stops)
        cats = [c for c in AMENITY_CATEGORIES if c in self.enabled]
        await asyncio.gather(*(self._refresh(c) for c in cats))
        return {c: self.results[c] for c in cats}

    async def set_enabled(self, category: str, enabled: bool) -> None:
        if category not in _AMENITY_MARKERS:
            raise KeyError(f"unknown amenity category: {category}")
        if enabled == (category in self.enabled):
            return
        if not enabled:
            self.enabled.discard(category)
            self._generation[category] += 1
            self.errors.pop(category, None)
            self._apply(category, [])
            return
        self.enabled.add(category)
        await self._refresh(category)

    # ──────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────

    def _apply(self, category: str, places: List[Place]) -> None:
        self.results[category] = places
        if self.on_update is not None:
            self.on_update(category, places)

    async def _collect(self, category: str, stops: Sequence[ItineraryStop]) -> List[Place]:
        marker, label = _AMENITY_MARKERS[category]
        merged: Dict[str, Place] = {}
        for stop in stops:
            query = build_amenity_query(category, lat=stop.lat, lon=stop.lon, radius_m=self.radius_m)
            data = await self.client.fetch(query.render())
            for p in classify_elements(elements_of(data), category=marker, fallback_name=label):
                # visible from several stops -> keep the first sighting
                merged.setdefault(p.id, p)
        return list(merged.values())

    async def _refresh(self, category: str) -> None:
        self._generation[category] += 1
        gen = self._generation[category]
        stops = list(self._stops)

        if not stops:
            self.errors.pop(category, None)
            self._apply(category, [])
            return

        try:
            places = await self._collect(category, stops)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if gen != self._generation[category]:
                return
            logger.warning("proximity_fetch_failed category=%s stops=%d err=%r", category, len(stops), e)
            self.errors[category] = str(e)
            self._apply(category, [])
            if self.on_error is not None:
                self.on_error(category, e)
            return

        if gen != self._generation[category] or category not in self.enabled:
            logger.debug("proximity_fetch_stale category=%s gen=%d", category, gen)
            return

        logger.info("proximity_fetch category=%s stops=%d items=%d", category, len(stops), len(places))
        self.errors.pop(category, None)
        self._apply(category, places)
