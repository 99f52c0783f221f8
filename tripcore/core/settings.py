from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # ──────────────────────────────────────────────────────────────
    # Spatial query service (Overpass): interchangeable public mirrors,
    # tried in order. Comma-separated.
    # ──────────────────────────────────────────────────────────────

    overpass_urls: str = Field(
        default=(
            "https://overpass-api.de/api/interpreter,"
            "https://lz4.overpass-api.de/api/interpreter,"
            "https://overpass.kumi.systems/api/interpreter"
        ),
        alias="OVERPASS_URLS",
    )
    overpass_timeout_s: int = Field(default=25, alias="OVERPASS_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # Viewport fetching
    # ──────────────────────────────────────────────────────────────

    viewport_debounce_s: float = Field(default=0.4, alias="VIEWPORT_DEBOUNCE_S")

    places_min_zoom: int = Field(default=4, alias="PLACES_MIN_ZOOM")
    campsites_min_zoom: int = Field(default=8, alias="CAMPSITES_MIN_ZOOM")
    trails_min_zoom: int = Field(default=10, alias="TRAILS_MIN_ZOOM")
    tracks_min_zoom: int = Field(default=10, alias="TRACKS_MIN_ZOOM")

    # Small-settlement band. Lower bound is optional (unset = no lower bound).
    small_town_min_population: int | None = Field(default=None, alias="SMALL_TOWN_MIN_POPULATION")
    small_town_max_population: int = Field(default=10_000, alias="SMALL_TOWN_MAX_POPULATION")

    # ──────────────────────────────────────────────────────────────
    # Proximity amenities
    # ──────────────────────────────────────────────────────────────

    proximity_radius_m: int = Field(default=10_000, alias="PROXIMITY_RADIUS_M")

    # ──────────────────────────────────────────────────────────────
    # OSRM trip service
    # ──────────────────────────────────────────────────────────────

    osrm_base_url: str = Field(default="https://router.project-osrm.org", alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="driving", alias="OSRM_PROFILE")
    osrm_timeout_s: float = Field(default=30.0, alias="OSRM_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # Geocoding (Mapbox forward search)
    # ──────────────────────────────────────────────────────────────

    mapbox_token: str = Field(default="", alias="MAPBOX_TOKEN")
    mapbox_country: str = Field(default="au", alias="MAPBOX_COUNTRY")

    @property
    def overpass_endpoints(self) -> List[str]:
        return [u.strip() for u in self.overpass_urls.split(",") if u.strip()]


settings = Settings()
