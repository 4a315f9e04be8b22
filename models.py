"""
Value types shared by the geocoding, Overpass, and ranking layers.

All types are frozen dataclasses created per request and discarded once
the response is produced. Coordinates are validated on construction so
nothing downstream ever sees NaN or out-of-range values.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point. Raises ValueError when out of range or non-finite."""
    latitude: float
    longitude: float

    def __post_init__(self):
        lat = float(self.latitude)
        lng = float(self.longitude)
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise ValueError(f"Non-finite coordinate: ({lat}, {lng})")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Latitude out of range: {lat}")
        if not -180.0 <= lng <= 180.0:
            raise ValueError(f"Longitude out of range: {lng}")
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lng)

    def rounded(self, places: int = 3) -> str:
        """``"lat_lng"`` rounded to *places* decimals (3 places is ~110 m)."""
        return f"{self.latitude:.{places}f}_{self.longitude:.{places}f}"

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}


def parse_map_location(map_location: Any) -> Optional[Coordinate]:
    """Parse a ``"lat, lng"`` string as stored on listings.

    Returns None for anything that is not exactly two valid numbers.
    """
    if not isinstance(map_location, str):
        return None
    parts = [p.strip() for p in map_location.split(",")]
    if len(parts) != 2:
        return None
    try:
        return Coordinate(float(parts[0]), float(parts[1]))
    except ValueError:
        return None


@dataclass(frozen=True)
class GeocodeResult:
    """First usable result from a geocoding provider."""
    coordinate: Coordinate
    display_name: str
    provider: str = ""


@dataclass(frozen=True)
class RawPoint:
    """One Overpass element, reduced to tags and a position.

    Nodes carry ``lat``/``lon`` directly; ways only have a ``center``
    (present when the query ends in ``out center``).
    """
    tags: Mapping[str, str] = field(default_factory=dict)
    coordinate: Optional[Coordinate] = None
    bounding_center: Optional[Coordinate] = None

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def position(self) -> Optional[Coordinate]:
        return self.coordinate or self.bounding_center

    @classmethod
    def from_element(cls, element: Any) -> Optional["RawPoint"]:
        """Build a RawPoint from an Overpass element dict.

        Returns None when the element is not a dict or has no usable
        position (way without center data, garbage coordinates).
        """
        if not isinstance(element, dict):
            return None
        tags = element.get("tags") or {}
        if not isinstance(tags, dict):
            return None

        coordinate = _coordinate_or_none(element.get("lat"), element.get("lon"))
        center = element.get("center")
        bounding_center = None
        if isinstance(center, dict):
            bounding_center = _coordinate_or_none(center.get("lat"), center.get("lon"))

        if coordinate is None and bounding_center is None:
            return None
        return cls(
            tags={str(k): str(v) for k, v in tags.items()},
            coordinate=coordinate,
            bounding_center=bounding_center,
        )


def _coordinate_or_none(lat: Any, lng: Any) -> Optional[Coordinate]:
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return None
    try:
        return Coordinate(float(lat), float(lng))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class AmenityCandidate:
    """A ranked nearby place, ready for the response payload."""
    name: str
    category: str           # key into the amenity category table, e.g. "hospital"
    label: str              # display type, e.g. "Hospital"
    distance_km: float
    formatted_distance: str  # "450m" or "1.2 km"
    icon: str = ""
    color: str = ""
    icon_color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape consumed by the listing page."""
        return {
            "name": self.name,
            "type": self.label,
            "distance": self.formatted_distance,
            "distanceValue": self.distance_km,
            "icon": self.icon,
            "color": self.color,
            "iconColor": self.icon_color,
        }
