from __future__ import annotations

from typing import List, Optional

from tripcore.core.contracts import Place
from tripcore.core.settings import settings

# Kinds that are small by construction when population is not tagged.
# A town or city without a population tag is as likely a big place the
# data never annotated, so those are dropped.
_SMALL_BY_KIND = frozenset({"village", "hamlet", "locality"})


def is_small_settlement(
    place: Place,
    *,
    min_population: Optional[int] = None,
    max_population: int = 10_000,
) -> bool:
    if place.category == "attraction":
        return True
    if place.population is None:
        return place.category in _SMALL_BY_KIND
    if min_population is not None and place.population < min_population:
        return False
    return 0 <= place.population <= max_population


def filter_small_settlements(
    places: List[Place],
    enabled: bool,
    *,
    min_population: Optional[int] = None,
    max_population: Optional[int] = None,
) -> List[Place]:
    if not enabled:
        return places
    lo = min_population if min_population is not None else settings.small_town_min_population
    hi = max_population if max_population is not None else settings.small_town_max_population
    return [p for p in places if is_small_settlement(p, min_population=lo, max_population=hi)]
