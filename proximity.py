"""
ProximityService: composition root for geocoding and nearby amenities.

Wires the caches, the geocoder chain, the Overpass engine, and the ranker,
and produces the JSON-ready payloads the HTTP layer returns verbatim.

Degradation policy: upstream exhaustion is never an error to the client.
A failed nearby search returns an empty successful list with a message;
a failed geocode returns success=false with "Address not found". Only
malformed input raises (InvalidInputError → HTTP 400).

Two TTL caches, both owned by the service instance:
  - amenity results, keyed by rounded coordinates + radius (5 min)
  - raw Overpass responses, keyed by a hash of the query text (10 min)
"""

import logging
import math
import os
from typing import Any, Dict, Optional, Union

from amenity_ranker import DEFAULT_QUERY_FILTER, AmenityRanker
from errors import AllProvidersExhaustedError, InvalidInputError
from geocoding import DEFAULT_COUNTRY, GeoProviderChain, build_search_query
from models import Coordinate
from overpass_http import SpatialQueryEngine
from px_trace import get_trace
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_RADIUS_KM = 2
MAX_RADIUS_KM = 3

# 3 decimals ≈ 110 m: nearby requests share a cache entry.
CACHE_KEY_PRECISION = 3

AMENITY_CACHE_TTL = int(os.environ.get("AMENITY_CACHE_TTL", "300"))
AMENITY_CACHE_MAX_SIZE = int(os.environ.get("AMENITY_CACHE_MAX_SIZE", "1000"))
OVERPASS_CACHE_TTL = int(os.environ.get("OVERPASS_CACHE_TTL", "600"))
OVERPASS_CACHE_MAX_SIZE = int(os.environ.get("OVERPASS_CACHE_MAX_SIZE", "1000"))
CACHE_SWEEP_INTERVAL = float(os.environ.get("CACHE_SWEEP_INTERVAL", "60"))

GEOCODE_COUNTRY = os.environ.get("GEOCODE_COUNTRY", DEFAULT_COUNTRY)

UNAVAILABLE_MESSAGE = "Nearby places temporarily unavailable"
NOT_FOUND_ERROR = "Address not found"

Number = Union[int, float]


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def _parse_number(raw: Any, field_name: str) -> float:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidInputError(f"{field_name} is required")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field_name} must be a number")
    if not math.isfinite(value):
        raise InvalidInputError(f"{field_name} must be a finite number")
    return value


def parse_coordinate(lat_raw: Any, lng_raw: Any) -> Coordinate:
    """Validate raw lat/lng query values into a Coordinate.

    Raises InvalidInputError when either is missing, non-numeric,
    non-finite, or out of range.
    """
    if lat_raw in (None, "") or lng_raw in (None, ""):
        raise InvalidInputError("lat and lng are required")
    lat = _parse_number(lat_raw, "lat")
    lng = _parse_number(lng_raw, "lng")
    try:
        return Coordinate(lat, lng)
    except ValueError as e:
        raise InvalidInputError(f"Invalid coordinates: {e}")


def parse_radius(raw: Any) -> Number:
    """Search radius in km: default 2, clamped to 3, must be positive."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return DEFAULT_RADIUS_KM
    radius = _parse_number(raw, "radius")
    if radius <= 0:
        raise InvalidInputError("radius must be greater than 0")
    radius = min(radius, MAX_RADIUS_KM)
    # Whole numbers stay ints so the payload and cache key read "2", not "2.0".
    return int(radius) if float(radius).is_integer() else radius


def nearby_cache_key(center: Coordinate, radius_km: Number) -> str:
    return f"{center.rounded(CACHE_KEY_PRECISION)}_{radius_km}"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ProximityService:
    """Geocode and nearby-amenity lookups with caching and graceful degradation."""

    def __init__(
        self,
        geocoder: GeoProviderChain,
        spatial_engine: SpatialQueryEngine,
        ranker: AmenityRanker,
        amenity_cache: TTLCache,
        spatial_cache: TTLCache,
        country: Optional[str] = GEOCODE_COUNTRY,
    ):
        self.geocoder = geocoder
        self.spatial_engine = spatial_engine
        self.ranker = ranker
        self.amenity_cache = amenity_cache
        self.spatial_cache = spatial_cache
        self.country = country

    @classmethod
    def from_env(cls) -> "ProximityService":
        """Production wiring from environment configuration."""
        return cls(
            geocoder=GeoProviderChain(),
            spatial_engine=SpatialQueryEngine(),
            ranker=AmenityRanker(),
            amenity_cache=TTLCache(
                max_size=AMENITY_CACHE_MAX_SIZE,
                ttl_seconds=AMENITY_CACHE_TTL,
                name="amenities",
                sweep_interval=CACHE_SWEEP_INTERVAL,
            ),
            spatial_cache=TTLCache(
                max_size=OVERPASS_CACHE_MAX_SIZE,
                ttl_seconds=OVERPASS_CACHE_TTL,
                name="overpass",
                sweep_interval=CACHE_SWEEP_INTERVAL,
            ),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the cache sweepers (idempotent)."""
        self.amenity_cache.start_sweeper()
        self.spatial_cache.start_sweeper()

    def shutdown(self) -> None:
        """Stop the cache sweepers."""
        self.amenity_cache.stop_sweeper()
        self.spatial_cache.stop_sweeper()

    def invalidate(self, pattern: str) -> int:
        """Drop cached amenity results whose key contains *pattern*."""
        return self.amenity_cache.invalidate(pattern)

    def cache_stats(self):
        return [self.amenity_cache.stats(), self.spatial_cache.stats()]

    # ------------------------------------------------------------------
    # Geocode
    # ------------------------------------------------------------------

    def geocode(self, address: Optional[str], city: Optional[str]) -> Dict[str, Any]:
        """Resolve address/city to coordinates.

        Raises InvalidInputError when neither is given. Provider exhaustion
        returns success=false, not an exception.
        """
        address = (address or "").strip()
        city = (city or "").strip()
        if not address and not city:
            raise InvalidInputError("Address or city required")

        query = build_search_query(address, city, self.country)
        result = self.geocoder.resolve(query)
        if result is None:
            return {"success": False, "coordinates": None, "error": NOT_FOUND_ERROR}

        logger.info("Geocoded %r via %s", query, result.provider)
        return {
            "success": True,
            "coordinates": result.coordinate.to_dict(),
            "displayName": result.display_name,
        }

    # ------------------------------------------------------------------
    # Nearby
    # ------------------------------------------------------------------

    def nearby(self, lat: Any, lng: Any, radius: Any = None) -> Dict[str, Any]:
        """Nearby amenities payload for raw lat/lng/radius query values."""
        center = parse_coordinate(lat, lng)
        radius_km = parse_radius(radius)
        return self.nearby_amenities(center, radius_km)

    def nearby_amenities(self, center: Coordinate, radius_km: Number) -> Dict[str, Any]:
        trace = get_trace()
        cache_key = nearby_cache_key(center, radius_km)
        cached = self.amenity_cache.get(cache_key)
        if trace:
            trace.record_cache(self.amenity_cache.name, cached is not None)
        if cached is not None:
            return cached

        try:
            raw_points = self.spatial_engine.query(
                center, radius_km * 1000, DEFAULT_QUERY_FILTER, cache=self.spatial_cache
            )
        except AllProvidersExhaustedError as e:
            logger.error(
                "Overpass unavailable for %s (radius=%skm): %s", cache_key, radius_km, e
            )
            return {
                "success": True,
                "amenities": [],
                "searchRadius": radius_km,
                "totalFound": 0,
                "message": UNAVAILABLE_MESSAGE,
            }

        # totalFound counts every candidate kept after the per-category cap.
        retained = self.ranker.reduce(center, raw_points)
        result = {
            "success": True,
            "amenities": [c.to_dict() for c in self.ranker.rank(center, raw_points)],
            "searchRadius": radius_km,
            "totalFound": sum(len(group) for group in retained.values()),
        }
        self.amenity_cache.set(cache_key, result)
        return result
