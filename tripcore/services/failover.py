from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import orjson

from tripcore.core.errors import EndpointsExhausted
from tripcore.core.settings import settings

logger = logging.getLogger(__name__)


class EndpointFailoverClient:
    """
    Sends one Overpass query to an ordered list of interchangeable mirrors.

    The first mirror that answers 2xx with a JSON object body wins. A non-2xx
    status, a transport error or an unparseable body moves on to the next
    mirror. Cancellation is never treated as a mirror failure: the awaiting
    task is the cancellation token, and ``asyncio.CancelledError`` propagates
    out of :meth:`fetch` immediately without touching the remaining mirrors.
    """

    def __init__(
        self,
        *,
        endpoints: Sequence[str] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_s: float | None = None,
    ):
        self.endpoints: List[str] = list(endpoints if endpoints is not None else settings.overpass_endpoints)
        timeout = float(timeout_s or settings.overpass_timeout_s)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout + 5.0, connect=10.0))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _fetch_one(self, url: str, query: str) -> Dict[str, Any]:
        r = await self.client.post(
            url,
            content=query.encode("utf-8"),
            headers={"Content-Type": "text/plain", "User-Agent": "tripcore/overpass"},
        )
        r.raise_for_status()
        data = orjson.loads(r.content)
        if not isinstance(data, dict):
            raise ValueError(f"unexpected body type {type(data).__name__}")
        return data

    async def fetch(self, query: str) -> Dict[str, Any]:
        attempts: List[Tuple[str, BaseException]] = []
        for url in self.endpoints:
            try:
                data = await self._fetch_one(url, query)
            except asyncio.CancelledError:
                logger.debug("overpass_fetch_cancelled url=%s", url)
                raise
            except (httpx.HTTPError, orjson.JSONDecodeError, ValueError) as e:
                logger.warning("overpass_endpoint_failed url=%s err=%r", url, e)
                attempts.append((url, e))
                continue

            if attempts:
                logger.info("overpass_failover_ok url=%s skipped=%d", url, len(attempts))
            return data

        last: Optional[BaseException] = attempts[-1][1] if attempts else None
        raise EndpointsExhausted(attempts) from last
