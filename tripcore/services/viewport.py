from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from tripcore.core.contracts import VIEWPORT_CATEGORIES, Place, Viewport
from tripcore.core.settings import settings
from tripcore.services.classifier import classify_elements, elements_of
from tripcore.services.filtering import filter_small_settlements
from tripcore.services.query_builder import SpatialQuery, build_category_query, build_places_query

logger = logging.getLogger(__name__)


class QueryClient(Protocol):
    async def fetch(self, query: str) -> Dict[str, Any]: ...


UpdateCallback = Callable[[str, List[Place]], None]
ErrorCallback = Callable[[str, BaseException], None]


# ──────────────────────────────────────────────────────────────
# Per-category query + parse
# ──────────────────────────────────────────────────────────────

def _places_query(viewport: Viewport, small_towns: bool) -> Optional[SpatialQuery]:
    return build_places_query(viewport, small_towns=small_towns)


def _places_parse(data: Dict[str, Any], small_towns: bool) -> List[Place]:
    return filter_small_settlements(classify_elements(elements_of(data)), small_towns)


def _category_query(category: str) -> Callable[[Viewport, bool], Optional[SpatialQuery]]:
    def build(viewport: Viewport, _small_towns: bool) -> Optional[SpatialQuery]:
        return build_category_query(category, viewport)

    return build


def _marker_parse(category: str, label: str | None) -> Callable[[Dict[str, Any], bool], List[Place]]:
    def parse(data: Dict[str, Any], _small_towns: bool) -> List[Place]:
        return classify_elements(elements_of(data), category=category, fallback_name=label)

    return parse


# category -> (query builder, response parser)
_FEEDS: Dict[str, tuple] = {
    "places": (_places_query, _places_parse),
    "campsites": (_category_query("campsites"), _marker_parse("campsite", "Campsite")),
    "trails": (_category_query("trails"), _marker_parse("trail", None)),
    "tracks": (_category_query("tracks"), _marker_parse("track", "4WD track")),
}


async def fetch_viewport_category(
    client: QueryClient,
    category: str,
    viewport: Viewport,
    *,
    small_towns: bool = False,
) -> Optional[List[Place]]:
    """One-shot fetch without debounce/supersession. None means gated by zoom."""
    build, parse = _FEEDS[category]
    query = build(viewport, small_towns)
    if query is None:
        return None
    data = await client.fetch(query.render())
    return parse(data, small_towns)


# ──────────────────────────────────────────────────────────────
# Controller
# ──────────────────────────────────────────────────────────────

class FetchState(str, enum.Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"


@dataclass
class CategoryFeed:
    name: str
    enabled: bool = False
    state: FetchState = FetchState.IDLE
    places: List[Place] = field(default_factory=list)
    generation: int = 0
    last_error: Optional[BaseException] = None
    task: Optional[asyncio.Task] = None


class ViewportFetchController:
    """
    Turns viewport settle events into per-category place lists.

    Each category runs ``IDLE -> DEBOUNCING -> IN_FLIGHT -> IDLE`` inside a
    single asyncio task; a newer viewport cancels that task (timer or request,
    whichever phase it is in) before scheduling the next one. Results are only
    applied when the task's generation is still current, so a response that
    slips past cancellation can never overwrite a newer viewport's results.

    Categories are independent: a failure in one is reported through
    ``on_error`` and leaves the others untouched.

    Event methods (:meth:`on_viewport`, :meth:`set_enabled`,
    :meth:`set_small_towns`) must be called from the running event loop.
    """

    def __init__(
        self,
        client: QueryClient,
        *,
        debounce_s: float | None = None,
        enabled: Iterable[str] = ("places",),
        small_towns: bool = False,
        on_update: UpdateCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.client = client
        self.debounce_s = float(settings.viewport_debounce_s if debounce_s is None else debounce_s)
        self.small_towns = small_towns
        self.on_update = on_update
        self.on_error = on_error
        self.feeds: Dict[str, CategoryFeed] = {name: CategoryFeed(name=name) for name in VIEWPORT_CATEGORIES}
        for name in enabled:
            self.feeds[name].enabled = True
        self._last_viewport: Optional[Viewport] = None

    @property
    def last_viewport(self) -> Optional[Viewport]:
        return self._last_viewport

    def places(self, category: str) -> List[Place]:
        return self.feeds[category].places

    def state(self, category: str) -> FetchState:
        return self.feeds[category].state

    # ──────────────────────────────────────────────────────────
    # Events
    # ──────────────────────────────────────────────────────────

    def on_viewport(self, viewport: Viewport) -> None:
        self._last_viewport = viewport
        for feed in self.feeds.values():
            if feed.enabled:
                self._schedule(feed, viewport, delay=self.debounce_s)

    def set_enabled(self, category: str, enabled: bool) -> None:
        feed = self.feeds[category]
        if feed.enabled == enabled:
            return
        feed.enabled = enabled
        if not enabled:
            self._supersede(feed)
            self._apply(feed, [])
        elif self._last_viewport is not None:
            # Toggled on late: fetch for the cached viewport right away.
            self._schedule(feed, self._last_viewport, delay=0.0)

    def set_small_towns(self, small_towns: bool) -> None:
        if self.small_towns == small_towns:
            return
        self.small_towns = small_towns
        feed = self.feeds["places"]
        if feed.enabled and self._last_viewport is not None:
            self._schedule(feed, self._last_viewport, delay=0.0)

    # ──────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────

    def _supersede(self, feed: CategoryFeed) -> None:
        feed.generation += 1
        if feed.task is not None and not feed.task.done():
            logger.debug("viewport_fetch_superseded category=%s", feed.name)
            feed.task.cancel()
        feed.task = None
        feed.state = FetchState.IDLE

    def _apply(self, feed: CategoryFeed, places: List[Place]) -> None:
        feed.places = list(places)
        feed.last_error = None
        if self.on_update is not None:
            self.on_update(feed.name, feed.places)

    def _schedule(self, feed: CategoryFeed, viewport: Viewport, *, delay: float) -> None:
        self._supersede(feed)

        build, _ = _FEEDS[feed.name]
        query = build(viewport, self.small_towns)
        if query is None:
            # Below the category's zoom gate: clear, don't leave stale markers.
            self._apply(feed, [])
            return

        gen = feed.generation
        feed.state = FetchState.DEBOUNCING if delay > 0 else FetchState.IN_FLIGHT
        loop = asyncio.get_running_loop()
        feed.task = loop.create_task(self._run(feed, query, gen, delay))

    async def _run(self, feed: CategoryFeed, query: SpatialQuery, gen: int, delay: float) -> None:
        _, parse = _FEEDS[feed.name]
        small_towns = self.small_towns
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            feed.state = FetchState.IN_FLIGHT
            logger.info("viewport_fetch category=%s clauses=%d gen=%d", feed.name, len(query.clauses), gen)
            data = await self.client.fetch(query.render())
            places = parse(data, small_towns)
        except asyncio.CancelledError:
            logger.debug("viewport_fetch_cancelled category=%s gen=%d", feed.name, gen)
            raise
        except Exception as e:
            if gen != feed.generation:
                return
            feed.state = FetchState.IDLE
            feed.task = None
            feed.last_error = e
            logger.warning("viewport_fetch_failed category=%s err=%r", feed.name, e)
            if self.on_error is not None:
                self.on_error(feed.name, e)
            return

        if gen != feed.generation:
            logger.debug("viewport_fetch_stale category=%s gen=%d current=%d", feed.name, gen, feed.generation)
            return

        feed.state = FetchState.IDLE
        feed.task = None
        self._apply(feed, places)

    # ──────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────

    async def drain(self) -> None:
        """Wait until no category has a pending timer or request."""
        while True:
            pending = [f.task for f in self.feeds.values() if f.task is not None and not f.task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = [f.task for f in self.feeds.values() if f.task is not None]
        for feed in self.feeds.values():
            self._supersede(feed)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
