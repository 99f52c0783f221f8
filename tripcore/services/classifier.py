from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from tripcore.core.contracts import (
    OverpassElement,
    OverpassNode,
    Place,
)

logger = logging.getLogger(__name__)

_element_adapter: TypeAdapter = TypeAdapter(OverpassElement)

_POPULATION_RE = re.compile(r"^\d+$")


# ──────────────────────────────────────────────────────────────
# Field accessors
# ──────────────────────────────────────────────────────────────

def _display_name(el) -> Optional[str]:
    return el.tag("name") or el.tag("name:en")


def _coordinates(el) -> Optional[Tuple[float, float]]:
    """
    Nodes carry lat/lon directly. Ways and relations only count when the
    server sent a ``center`` (``out center``); no centroid is computed here.
    """
    if isinstance(el, OverpassNode):
        if el.lat is None or el.lon is None:
            return None
        return el.lat, el.lon
    c = el.center
    if c is None or c.lat is None or c.lon is None:
        return None
    return c.lat, c.lon


def parse_population(raw: Any) -> Optional[int]:
    """Base-10 non-negative integer, or None. Garbage is absent, never zero."""
    if raw is None:
        return None
    s = str(raw).strip()
    if not _POPULATION_RE.match(s):
        return None
    return int(s, 10)


def infer_category(tags: Dict[str, Any]) -> str:
    if tags.get("tourism") == "attraction":
        return "attraction"
    kind = tags.get("place")
    if isinstance(kind, str) and kind.strip():
        return kind.strip()
    return "locality"


# ──────────────────────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────────────────────

def classify_element(
    raw: Dict[str, Any],
    *,
    category: str | None = None,
    fallback_name: str | None = None,
) -> Optional[Place]:
    """
    Map one raw Overpass record into a Place, or None when it is unusable.

    ``category`` pins the category for marker fetchers (campsite, fuel, ...)
    instead of inferring it from tags. ``fallback_name`` labels marker records
    that carry no name of their own; settlement records never get one.
    """
    try:
        el = _element_adapter.validate_python(raw)
    except ValidationError:
        logger.debug("overpass_record_dropped reason=shape raw_type=%r", raw.get("type") if isinstance(raw, dict) else None)
        return None

    name = _display_name(el) or fallback_name
    if not name:
        return None

    coords = _coordinates(el)
    if coords is None:
        return None

    return Place(
        id=el.native_id,
        name=name,
        category=category or infer_category(el.tags),
        lat=float(coords[0]),
        lon=float(coords[1]),
        population=parse_population(el.tags.get("population")),
    )


def classify_elements(
    elements: Iterable[Dict[str, Any]],
    *,
    category: str | None = None,
    fallback_name: str | None = None,
) -> List[Place]:
    out: List[Place] = []
    for raw in elements:
        p = classify_element(raw, category=category, fallback_name=fallback_name)
        if p is not None:
            out.append(p)
    return out


def elements_of(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    els = data.get("elements")
    return [e for e in els if isinstance(e, dict)] if isinstance(els, list) else []
