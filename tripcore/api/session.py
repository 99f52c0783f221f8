"""
Per-connection orchestration session.

One websocket = one map session: it owns a ViewportFetchController and a
ProximityFetchController, feeds them the client's explicit events (viewport
settled, category toggled, itinerary changed) and pushes every result list
back as it lands. Nothing outlives the connection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

import orjson
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from tripcore.core.contracts import AmenityCategory, ItineraryStop, Place, Viewport, ViewportCategory
from tripcore.services.failover import EndpointFailoverClient
from tripcore.services.proximity import ProximityFetchController
from tripcore.services.viewport import ViewportFetchController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session")


def get_query_client() -> EndpointFailoverClient:
    raise RuntimeError("EndpointFailoverClient must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# Client -> server messages
# ──────────────────────────────────────────────────────────────

class ViewportMsg(BaseModel):
    type: Literal["viewport"]
    viewport: Viewport


class ToggleMsg(BaseModel):
    type: Literal["toggle"]
    category: ViewportCategory
    enabled: bool


class SmallTownsMsg(BaseModel):
    type: Literal["small_towns"]
    enabled: bool


class ItineraryMsg(BaseModel):
    type: Literal["itinerary"]
    stops: List[ItineraryStop] = Field(default_factory=list)


class AmenityToggleMsg(BaseModel):
    type: Literal["amenity_toggle"]
    category: AmenityCategory
    enabled: bool


SessionMessage = Annotated[
    Union[ViewportMsg, ToggleMsg, SmallTownsMsg, ItineraryMsg, AmenityToggleMsg],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter = TypeAdapter(SessionMessage)


def _items(places: List[Place]) -> List[Dict[str, Any]]:
    return [p.model_dump() for p in places]


# ──────────────────────────────────────────────────────────────
# /session/ws
# ──────────────────────────────────────────────────────────────

@router.websocket("/ws")
async def session_ws(
    ws: WebSocket,
    client: EndpointFailoverClient = Depends(get_query_client),
) -> None:
    await ws.accept()

    outbox: asyncio.Queue = asyncio.Queue()
    background: Set[asyncio.Task] = set()

    def push_places(category: str, places: List[Place]) -> None:
        outbox.put_nowait({"type": "places", "category": category, "items": _items(places)})

    def push_amenities(category: str, places: List[Place]) -> None:
        outbox.put_nowait({"type": "amenities", "category": category, "items": _items(places)})

    def push_error(category: str, exc: BaseException) -> None:
        outbox.put_nowait({"type": "error", "category": category, "message": str(exc)})

    viewport = ViewportFetchController(client, on_update=push_places, on_error=push_error)
    proximity = ProximityFetchController(client, enabled=(), on_update=push_amenities, on_error=push_error)

    def spawn(coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        background.add(task)
        task.add_done_callback(background.discard)
        return task

    async def pump() -> None:
        while True:
            msg = await outbox.get()
            await ws.send_text(orjson.dumps(msg).decode("utf-8"))

    sender = asyncio.get_running_loop().create_task(pump())
    itinerary_task: Optional[asyncio.Task] = None
    logger.info("session_open client=%s", ws.client)

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            text = message.get("text")
            if text is None:
                outbox.put_nowait({"type": "error", "category": None, "message": "bad message (expected a text frame)"})
                continue
            try:
                msg = _message_adapter.validate_json(text)
            except ValidationError as e:
                outbox.put_nowait({"type": "error", "category": None, "message": f"bad message ({e.error_count()} errors)"})
                continue

            if isinstance(msg, ViewportMsg):
                viewport.on_viewport(msg.viewport)
            elif isinstance(msg, ToggleMsg):
                viewport.set_enabled(msg.category, msg.enabled)
            elif isinstance(msg, SmallTownsMsg):
                viewport.set_small_towns(msg.enabled)
            elif isinstance(msg, ItineraryMsg):
                # the new itinerary replaces the old one; its per-stop requests are no longer wanted
                if itinerary_task is not None and not itinerary_task.done():
                    logger.debug("session_itinerary_superseded client=%s", ws.client)
                    itinerary_task.cancel()
                itinerary_task = spawn(proximity.update_stops(msg.stops))
            elif isinstance(msg, AmenityToggleMsg):
                spawn(proximity.set_enabled(msg.category, msg.enabled))
    except WebSocketDisconnect:
        logger.info("session_closed client=%s", ws.client)
    finally:
        await viewport.aclose()
        pending = list(background) + [sender]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
