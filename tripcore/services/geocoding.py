"""
Mapbox Geocoding v5 forward search, used to pick a start location or find a
place by name.

Docs: https://docs.mapbox.com/api/search/geocoding/

Candidates are handed back as the provider ranked them; no merging or
re-ranking happens here.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, List

import httpx

from tripcore.core.contracts import GeocodeResult, StartLocation
from tripcore.core.errors import ValidationFailed
from tripcore.core.settings import settings

logger = logging.getLogger(__name__)

# Country and postcode are rarely what someone typing "Coober Pedy" wants.
_DEFAULT_TYPES = "poi,poi.landmark,address,place,locality,neighborhood,district,region"


def _feature_to_result(feat: dict[str, Any]) -> GeocodeResult | None:
    center = feat.get("center")
    if not center or len(center) < 2:
        return None

    lon, lat = float(center[0]), float(center[1])
    name = feat.get("text") or feat.get("place_name") or ""
    if not name:
        return None

    return GeocodeResult(
        id=f"mapbox:{feat.get('id', '')}",
        name=name,
        place_name=feat.get("place_name") or "",
        lat=lat,
        lon=lon,
        place_type=list(feat.get("place_type") or []),
    )


class Geocoder:
    """Thin wrapper around Mapbox forward search."""

    BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"

    def __init__(self, *, token: str | None = None, country: str | None = None, client: httpx.AsyncClient | None = None):
        self.token: str = settings.mapbox_token if token is None else token
        self.country: str = settings.mapbox_country if country is None else country
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def search(
        self,
        query: str,
        *,
        country: str | None = None,
        proximity: StartLocation | None = None,
        limit: int = 5,
    ) -> List[GeocodeResult]:
        query = (query or "").strip()
        if not query:
            raise ValidationFailed("search text is empty")
        if not self.token:
            raise RuntimeError("MAPBOX_TOKEN is not set. Add it to your .env or environment variables.")

        params: dict[str, str] = {
            "access_token": self.token,
            "autocomplete": "true",
            "limit": str(max(1, min(limit, 10))),  # Mapbox hard-caps at 10
            "types": _DEFAULT_TYPES,
        }

        bias = country if country is not None else self.country
        if bias:
            params["country"] = bias

        # Mapbox wants "lon,lat"
        if proximity:
            params["proximity"] = f"{proximity.lon},{proximity.lat}"

        url = f"{self.BASE_URL}/{urllib.parse.quote(query, safe='')}.json"

        logger.info("mapbox_geocode query=%r country=%s limit=%s", query, bias, params["limit"])

        try:
            resp = await self.client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "mapbox_geocode_http_error status=%d body=%s",
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise RuntimeError(f"Mapbox geocoding failed: HTTP {exc.response.status_code}") from exc
        except httpx.TimeoutException as exc:
            logger.error("mapbox_geocode_timeout query=%r", query)
            raise RuntimeError("Mapbox geocoding timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("mapbox_geocode_transport_error query=%r err=%r", query, exc)
            raise RuntimeError(f"Mapbox geocoding failed: {exc!r}") from exc

        out: List[GeocodeResult] = []
        for feat in data.get("features") or []:
            item = _feature_to_result(feat)
            if item:
                out.append(item)

        logger.info("mapbox_geocode results=%d", len(out))
        return out
