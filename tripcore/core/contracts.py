from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ──────────────────────────────────────────────────────────────
# Shared
# ──────────────────────────────────────────────────────────────

# (lat, lon): domain axis order everywhere outside the wire codecs
LatLon = Tuple[float, float]


class BBox(BaseModel):
    south: float
    west: float
    north: float
    east: float


class Viewport(BBox):
    """Map bounds + zoom captured on a pan/zoom settle event. Immutable."""

    model_config = ConfigDict(frozen=True)

    zoom: int = Field(ge=0)


# ──────────────────────────────────────────────────────────────
# Places: category taxonomy
# ──────────────────────────────────────────────────────────────
# Settlement kinds come through verbatim from the place=* tag, so
# Place.category is a plain string. The names below are the ones the
# query builders ask for, plus the ad hoc marker categories.
#
# SETTLEMENTS   city, town, village, hamlet, suburb, locality
# SIGHTSEEING   attraction
# MARKERS       campsite, trail, track            (viewport categories)
#               fuel, dump_station, water         (proximity amenities)
# ──────────────────────────────────────────────────────────────

ViewportCategory = Literal["places", "campsites", "trails", "tracks"]
AmenityCategory = Literal["fuel", "dump_station", "water"]

VIEWPORT_CATEGORIES: Tuple[str, ...] = ("places", "campsites", "trails", "tracks")
AMENITY_CATEGORIES: Tuple[str, ...] = ("fuel", "dump_station", "water")


class Place(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str                         # "<type>/<id>", e.g. "node/123"
    name: str
    category: str
    lat: float
    lon: float
    population: Optional[int] = Field(default=None, ge=0)
    visited_at: Optional[str] = None
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class ItineraryStop(BaseModel):
    """The part of an itinerary item the trip and proximity paths read."""

    id: str
    lat: float
    lon: float
    name: Optional[str] = None


class StartLocation(BaseModel):
    lat: float
    lon: float
    name: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Spatial query service (Overpass): raw records
# ──────────────────────────────────────────────────────────────
# Every field past type/id is optional: mirrors return whatever the
# underlying OSM data has, and records are dropped downstream rather
# than rejected here.

class OverpassCenter(BaseModel):
    lat: Optional[float] = None
    lon: Optional[float] = None


class _OverpassElementBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    tags: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    def tag(self, key: str) -> Optional[str]:
        v = self.tags.get(key)
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @property
    def native_id(self) -> str:
        return f"{self.type}/{self.id}"  # type: ignore[attr-defined]


class OverpassNode(_OverpassElementBase):
    type: Literal["node"]
    lat: Optional[float] = None
    lon: Optional[float] = None


class OverpassWay(_OverpassElementBase):
    type: Literal["way"]
    center: Optional[OverpassCenter] = None


class OverpassRelation(_OverpassElementBase):
    type: Literal["relation"]
    center: Optional[OverpassCenter] = None


OverpassElement = Annotated[
    Union[OverpassNode, OverpassWay, OverpassRelation],
    Field(discriminator="type"),
]


# ──────────────────────────────────────────────────────────────
# Trip service (OSRM /trip): response shape
# ──────────────────────────────────────────────────────────────

class OsrmWaypoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    location: List[float]           # [lon, lat]: OSRM convention
    waypoint_index: int             # position in the optimized visiting order
    trips_index: int = 0
    name: str = ""
    # Not sent by OSRM (input index is the array position); honoured when present.
    input_index: Optional[int] = None


class OsrmLeg(BaseModel):
    model_config = ConfigDict(extra="ignore")

    distance: float = 0.0
    duration: float = 0.0


class OsrmGeometry(BaseModel):
    type: str = "LineString"
    coordinates: List[List[float]] = Field(default_factory=list)   # [[lon, lat], ...]


class OsrmTrip(BaseModel):
    model_config = ConfigDict(extra="ignore")

    geometry: Optional[OsrmGeometry] = None
    legs: Optional[List[OsrmLeg]] = None
    distance: float = 0.0
    duration: float = 0.0


class OsrmTripResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = "Ok"
    message: Optional[str] = None
    trips: List[OsrmTrip] = Field(default_factory=list)
    waypoints: Optional[List[OsrmWaypoint]] = None


class TripRequest(BaseModel):
    """Coordinate sequence (start first) + trip flags, ready for the routing service."""

    coordinates: List[LatLon]
    params: Dict[str, str]

    def coords_path(self) -> str:
        # OSRM expects lon,lat
        return ";".join(f"{lon},{lat}" for lat, lon in self.coordinates)


# ──────────────────────────────────────────────────────────────
# Trip: reconciled route
# ──────────────────────────────────────────────────────────────

class TripLeg(BaseModel):
    distance_m: float = Field(ge=0)
    duration_s: float = Field(ge=0)


class Route(BaseModel):
    coordinates: List[LatLon]               # polyline, (lat, lon)
    legs: List[TripLeg]                     # visiting order
    ordered_place_ids: List[str]            # itinerary ids, visiting order
    waypoints: List[LatLon]                 # start first, visiting order
    distance_m: float = 0.0
    duration_s: float = 0.0
    computed_at: Optional[str] = None

    @model_validator(mode="after")
    def _check_lengths(self) -> "Route":
        if len(self.waypoints) != len(self.legs) + 1:
            raise ValueError("waypoints must have exactly one more entry than legs")
        if len(self.ordered_place_ids) != len(self.waypoints) - 1:
            raise ValueError("ordered_place_ids must exclude only the start waypoint")
        return self


# ──────────────────────────────────────────────────────────────
# HTTP request / response bodies
# ──────────────────────────────────────────────────────────────

class ViewportPlacesRequest(BaseModel):
    viewport: Viewport
    small_towns: bool = False


class CategoryPlacesRequest(BaseModel):
    viewport: Viewport
    category: Literal["campsites", "trails", "tracks"]


class PlacesResponse(BaseModel):
    category: str
    items: List[Place]
    gated: bool = False             # zoom below the category's minimum


class NearbyRequest(BaseModel):
    stops: List[ItineraryStop]
    categories: List[AmenityCategory] = Field(default_factory=lambda: list(AMENITY_CATEGORIES))
    radius_m: Optional[int] = Field(default=None, gt=0)


class NearbyResponse(BaseModel):
    radius_m: int
    amenities: Dict[str, List[Place]]
    errors: Dict[str, str] = Field(default_factory=dict)


class GeocodeRequest(BaseModel):
    query: str
    country: Optional[str] = None
    proximity: Optional[StartLocation] = None
    limit: int = Field(default=5, ge=1, le=10)


class GeocodeResult(BaseModel):
    id: str
    name: str
    place_name: str = ""
    lat: float
    lon: float
    place_type: List[str] = Field(default_factory=list)


class TripComputeRequest(BaseModel):
    start: Optional[StartLocation] = None
    stops: List[ItineraryStop] = Field(default_factory=list)


class TripComputeResponse(BaseModel):
    route: Route
    itinerary: List[ItineraryStop]  # reordered into visiting order
