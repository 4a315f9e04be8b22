"""Unit tests for amenity_ranker.py: classification, distance, and ranking."""

import math
import random

import pytest

from amenity_ranker import (
    AMENITY_CATEGORIES,
    AmenityRanker,
    format_distance,
    haversine_km,
)
from models import Coordinate, RawPoint

ANCHOR = Coordinate(23.0271, 72.5586)


def _north_of(anchor, km):
    """Point *km* due north of *anchor* (meridian arc, so haversine is exact)."""
    return Coordinate(anchor.latitude + math.degrees(km / 6371.0), anchor.longitude)


def _point(km, **tags):
    return RawPoint(tags=tags, coordinate=_north_of(ANCHOR, km))


# =========================================================================
# Geometry
# =========================================================================

class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(ANCHOR, ANCHOR) == 0

    def test_meridian_arc(self):
        assert haversine_km(ANCHOR, _north_of(ANCHOR, 1.5)) == pytest.approx(1.5)

    def test_known_city_pair(self):
        # Ahmedabad → Mumbai, roughly 440 km great-circle.
        mumbai = Coordinate(19.0760, 72.8777)
        assert 430 < haversine_km(ANCHOR, mumbai) < 450

    def test_symmetric(self):
        other = Coordinate(23.05, 72.60)
        assert haversine_km(ANCHOR, other) == pytest.approx(haversine_km(other, ANCHOR))


class TestFormatDistance:
    @pytest.mark.parametrize("km,expected", [
        (0.0, "0m"),
        (0.2, "200m"),
        (0.4567, "457m"),
        (0.999, "999m"),
        (1.0, "1.0 km"),
        (1.234, "1.2 km"),
        (2.96, "3.0 km"),
    ])
    def test_format(self, km, expected):
        assert format_distance(km) == expected


# =========================================================================
# Classification
# =========================================================================

class TestClassify:
    ranker = AmenityRanker()

    def test_amenity_tag(self):
        assert self.ranker.classify({"amenity": "hospital"}).label == "Hospital"

    def test_shop_tag(self):
        assert self.ranker.classify({"shop": "supermarket"}).key == "supermarket"

    def test_amenity_wins_over_shop(self):
        assert self.ranker.classify({"amenity": "pharmacy", "shop": "supermarket"}).key == "pharmacy"

    def test_unknown_amenity_falls_through_to_shop(self):
        assert self.ranker.classify({"amenity": "bench", "shop": "mall"}).key == "mall"

    def test_railway_station(self):
        assert self.ranker.classify({"railway": "station"}).key == "railway_station"

    def test_subway_station(self):
        assert self.ranker.classify({"station": "subway"}).key == "metro_station"

    def test_leisure(self):
        assert self.ranker.classify({"leisure": "park"}).key == "park"
        assert self.ranker.classify({"leisure": "fitness_centre"}).label == "Fitness Center"

    def test_unmatched(self):
        assert self.ranker.classify({"highway": "bus_stop"}) is None
        assert self.ranker.classify({}) is None

    def test_presentation_tokens(self):
        category = AMENITY_CATEGORIES["pharmacy"]
        assert category.icon == "Cross"
        assert category.color == "from-teal-100 to-cyan-100"
        assert category.icon_color == "text-teal-700"


# =========================================================================
# Ranking
# =========================================================================

class TestRank:
    def test_per_category_cap_and_global_sort(self):
        points = [
            _point(0.4, amenity="hospital", name="Civil Hospital"),
            _point(1.5, amenity="hospital", name="Far Hospital"),
            _point(0.8, amenity="hospital", name="City Hospital"),
            _point(0.2, amenity="pharmacy", name="Apollo Pharmacy"),
        ]
        ranked = AmenityRanker().rank(ANCHOR, points)

        assert [c.name for c in ranked] == ["Apollo Pharmacy", "Civil Hospital", "City Hospital"]
        assert [c.formatted_distance for c in ranked] == ["200m", "400m", "800m"]

    def test_closer_candidate_replaces_farthest(self):
        points = [
            _point(0.9, amenity="bank", name="A"),
            _point(0.7, amenity="bank", name="B"),
            _point(0.1, amenity="bank", name="C"),
        ]
        retained = AmenityRanker().reduce(ANCHOR, points)
        assert [c.name for c in retained["bank"]] == ["C", "B"]

    def test_equal_distance_does_not_replace(self):
        points = [
            _point(0.5, amenity="atm", name="First"),
            _point(0.7, amenity="atm", name="Second"),
            _point(0.7, amenity="atm", name="Third"),
        ]
        retained = AmenityRanker().reduce(ANCHOR, points)
        assert [c.name for c in retained["atm"]] == ["First", "Second"]

    def test_missing_name_uses_label(self):
        ranked = AmenityRanker().rank(ANCHOR, [_point(0.3, amenity="atm")])
        assert ranked[0].name == "ATM"

    def test_unclassified_and_positionless_points_dropped(self):
        points = [
            _point(0.3, highway="bus_stop"),
            RawPoint(tags={"amenity": "bank"}),
        ]
        assert AmenityRanker().rank(ANCHOR, points) == []

    def test_way_center_used_as_position(self):
        point = RawPoint(tags={"leisure": "park"}, bounding_center=_north_of(ANCHOR, 0.6))
        ranked = AmenityRanker().rank(ANCHOR, [point])
        assert ranked[0].distance_km == pytest.approx(0.6)

    def test_reduce_does_not_share_state(self):
        ranker = AmenityRanker()
        first = ranker.reduce(ANCHOR, [_point(0.3, amenity="bank")])
        second = ranker.reduce(ANCHOR, [_point(0.4, amenity="cafe")])
        assert set(first) == {"bank"}
        assert set(second) == {"cafe"}

    def test_bounds_hold_for_random_input(self):
        rng = random.Random(7)
        keys = list(AMENITY_CATEGORIES)
        points = [
            _point(rng.uniform(0, 3), amenity=rng.choice(keys), name=f"p{i}")
            for i in range(300)
        ]
        ranked = AmenityRanker().rank(ANCHOR, points)

        assert len(ranked) <= 10
        distances = [c.distance_km for c in ranked]
        assert distances == sorted(distances)
        counts = {}
        for c in ranked:
            counts[c.category] = counts.get(c.category, 0) + 1
        assert max(counts.values()) <= 2

    def test_to_dict_shape(self):
        ranked = AmenityRanker().rank(ANCHOR, [_point(0.2, amenity="pharmacy", name="Apollo")])
        d = ranked[0].to_dict()
        assert d == {
            "name": "Apollo",
            "type": "Pharmacy",
            "distance": "200m",
            "distanceValue": pytest.approx(0.2),
            "icon": "Cross",
            "color": "from-teal-100 to-cyan-100",
            "iconColor": "text-teal-700",
        }
