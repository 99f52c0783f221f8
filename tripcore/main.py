# tripcore/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

# Load <repo>/.env (main.py is <repo>/tripcore/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from tripcore.core.settings import settings
from tripcore.api import api_router

from tripcore.services.failover import EndpointFailoverClient
from tripcore.services.geocoding import Geocoder
from tripcore.services.trip import TripPlanner

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Trip Core", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# Shared outbound clients
# ──────────────────────────────────────────────────────────────

_query_client = EndpointFailoverClient()
_trip_planner = TripPlanner()
_geocoder = Geocoder()

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_query_client() -> EndpointFailoverClient:
    return _query_client


def provide_trip_planner() -> TripPlanner:
    return _trip_planner


def provide_geocoder() -> Geocoder:
    return _geocoder


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from tripcore.api import nav as nav_api
from tripcore.api import places as places_api
from tripcore.api import session as session_api

# Spatial queries
app.dependency_overrides[places_api.get_query_client] = provide_query_client
app.dependency_overrides[session_api.get_query_client] = provide_query_client

# Geocoding
app.dependency_overrides[places_api.get_geocoder] = provide_geocoder

# Trips
app.dependency_overrides[nav_api.get_trip_planner] = provide_trip_planner

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Shutdown
# ──────────────────────────────────────────────────────────────

@app.on_event("shutdown")
async def shutdown():
    logger.info("[app] Shutting down, closing outbound clients")
    for closer in (_query_client.aclose, _trip_planner.aclose, _geocoder.aclose):
        try:
            await closer()
        except Exception as e:
            logger.warning(f"[app] Error closing client: {e}")
