"""
Nearby-amenity ranking: raw Overpass points → a short, stable list.

  1. Classify each point by tag precedence (amenity → shop → railway/
     subway station → leisure). Unmatched points are dropped.
  2. Haversine distance from the anchor on a 6371 km sphere.
  3. Keep the 2 closest per category, so one dense category (restaurants)
     cannot crowd out variety.
  4. Flatten, sort by distance, keep the global top 10.

The reduction is a pure fold over immutable tuples: no accumulator is
shared between calls, so concurrent requests cannot interfere.
"""

import math
from dataclasses import dataclass
from functools import reduce
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from models import AmenityCandidate, Coordinate, RawPoint

EARTH_RADIUS_KM = 6371.0

PER_CATEGORY_CAP = 2
MAX_RESULTS = 10


@dataclass(frozen=True)
class AmenityCategory:
    key: str
    label: str
    icon: str
    color: str
    icon_color: str


def _category(key: str, label: str, icon: str, color: str, icon_color: str) -> Tuple[str, AmenityCategory]:
    return key, AmenityCategory(key, label, icon, color, icon_color)


# Presentation tokens match the listing page's icon set and palette.
AMENITY_CATEGORIES: Mapping[str, AmenityCategory] = MappingProxyType(dict([
    _category("hospital", "Hospital", "Stethoscope", "from-red-100 to-orange-100", "text-red-700"),
    _category("clinic", "Clinic", "Stethoscope", "from-red-100 to-orange-100", "text-red-700"),
    _category("pharmacy", "Pharmacy", "Cross", "from-teal-100 to-cyan-100", "text-teal-700"),
    _category("school", "School", "Building2", "from-yellow-100 to-amber-100", "text-yellow-700"),
    _category("college", "College", "Building2", "from-yellow-100 to-amber-100", "text-yellow-700"),
    _category("university", "University", "Building2", "from-yellow-100 to-amber-100", "text-yellow-700"),
    _category("bank", "Bank", "CreditCard", "from-gray-100 to-slate-100", "text-gray-700"),
    _category("atm", "ATM", "CreditCard", "from-gray-100 to-slate-100", "text-gray-700"),
    _category("restaurant", "Restaurant", "UtensilsCrossed", "from-orange-100 to-red-100", "text-orange-700"),
    _category("cafe", "Cafe", "UtensilsCrossed", "from-orange-100 to-red-100", "text-orange-700"),
    _category("fast_food", "Fast Food", "UtensilsCrossed", "from-orange-100 to-red-100", "text-orange-700"),
    _category("supermarket", "Supermarket", "ShoppingBag", "from-pink-100 to-rose-100", "text-pink-700"),
    _category("mall", "Mall", "ShoppingBag", "from-pink-100 to-rose-100", "text-pink-700"),
    _category("marketplace", "Market", "ShoppingBag", "from-pink-100 to-rose-100", "text-pink-700"),
    _category("bus_station", "Bus Station", "Bike", "from-blue-100 to-cyan-100", "text-blue-700"),
    _category("railway_station", "Railway Station", "Bike", "from-blue-100 to-cyan-100", "text-blue-700"),
    _category("metro_station", "Metro Station", "Bike", "from-blue-100 to-cyan-100", "text-blue-700"),
    _category("park", "Park", "Landmark", "from-green-100 to-emerald-100", "text-green-700"),
    _category("garden", "Garden", "Landmark", "from-green-100 to-emerald-100", "text-green-700"),
    _category("gym", "Gym", "Dumbbell", "from-indigo-100 to-purple-100", "text-indigo-700"),
    _category("fitness_centre", "Fitness Center", "Dumbbell", "from-indigo-100 to-purple-100", "text-indigo-700"),
    _category("place_of_worship", "Temple/Mosque", "Landmark", "from-purple-100 to-indigo-100", "text-purple-700"),
    _category("police", "Police Station", "Building2", "from-blue-100 to-indigo-100", "text-blue-700"),
    _category("post_office", "Post Office", "Building2", "from-orange-100 to-amber-100", "text-orange-700"),
]))

# Tag filter sent to Overpass for the nearby search. Kept narrower than
# the category table to limit mirror load.
DEFAULT_QUERY_FILTER: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "amenity": (
        "hospital", "pharmacy", "school", "bank", "restaurant",
        "supermarket", "bus_station", "park", "gym", "police",
    ),
    "shop": ("supermarket",),
    "railway": ("station",),
})


# =============================================================================
# Geometry
# =============================================================================

def haversine_km(origin: Coordinate, dest: Coordinate) -> float:
    """Great-circle distance in kilometres."""
    lat1, lon1 = math.radians(origin.latitude), math.radians(origin.longitude)
    lat2, lon2 = math.radians(dest.latitude), math.radians(dest.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def format_distance(distance_km: float) -> str:
    """``"450m"`` below 1 km, else ``"1.2 km"``."""
    if distance_km < 1:
        return f"{int(round(distance_km * 1000))}m"
    return f"{distance_km:.1f} km"


# =============================================================================
# Ranking
# =============================================================================

Retained = Mapping[str, Tuple[AmenityCandidate, ...]]


class AmenityRanker:
    """Classifies, measures, and reduces raw points to a bounded list."""

    def __init__(
        self,
        categories: Mapping[str, AmenityCategory] = AMENITY_CATEGORIES,
        per_category_cap: int = PER_CATEGORY_CAP,
        max_results: int = MAX_RESULTS,
    ):
        self.categories = categories
        self.per_category_cap = per_category_cap
        self.max_results = max_results

    def classify(self, tags: Mapping[str, str]) -> Optional[AmenityCategory]:
        """Map OSM tags to a category, or None if nothing matches.

        An explicit amenity tag wins over a shop tag, which wins over the
        railway/subway/leisure special cases.
        """
        amenity = tags.get("amenity")
        if amenity and amenity in self.categories:
            return self.categories[amenity]
        shop = tags.get("shop")
        if shop and shop in self.categories:
            return self.categories[shop]
        if tags.get("railway") == "station":
            return self.categories.get("railway_station")
        if tags.get("station") == "subway":
            return self.categories.get("metro_station")
        if tags.get("leisure") == "park":
            return self.categories.get("park")
        if tags.get("leisure") == "fitness_centre":
            return self.categories.get("fitness_centre")
        return None

    def candidate_for(self, anchor: Coordinate, point: RawPoint) -> Optional[AmenityCandidate]:
        category = self.classify(point.tags)
        position = point.position
        if category is None or position is None:
            return None
        distance = haversine_km(anchor, position)
        return AmenityCandidate(
            name=point.tags.get("name") or category.label,
            category=category.key,
            label=category.label,
            distance_km=distance,
            formatted_distance=format_distance(distance),
            icon=category.icon,
            color=category.color,
            icon_color=category.icon_color,
        )

    def _retain(self, acc: Retained, candidate: AmenityCandidate) -> Retained:
        """Fold step: return a new mapping with *candidate* admitted if it ranks."""
        current = acc.get(candidate.category, ())
        if len(current) < self.per_category_cap:
            kept = current + (candidate,)
        elif candidate.distance_km < current[-1].distance_km:
            # Strictly closer than the current last place replaces it.
            kept = current[:-1] + (candidate,)
        else:
            return acc
        updated = dict(acc)
        updated[candidate.category] = tuple(sorted(kept, key=lambda c: c.distance_km))
        return updated

    def reduce(self, anchor: Coordinate, raw_points: Iterable[RawPoint]) -> Retained:
        """Per-category closest candidates, each tuple sorted by distance."""
        candidates = (self.candidate_for(anchor, p) for p in raw_points)
        return reduce(self._retain, (c for c in candidates if c is not None), {})

    @staticmethod
    def flatten(retained: Retained) -> List[AmenityCandidate]:
        """All retained candidates, globally sorted by distance."""
        merged = [c for group in retained.values() for c in group]
        return sorted(merged, key=lambda c: c.distance_km)

    def rank(self, anchor: Coordinate, raw_points: Iterable[RawPoint]) -> List[AmenityCandidate]:
        """The globally closest ``max_results`` candidates across categories."""
        return self.flatten(self.reduce(anchor, raw_points))[: self.max_results]
