"""Tests for models.py value types."""

import math

import pytest

from models import AmenityCandidate, Coordinate, RawPoint, parse_map_location


class TestCoordinate:
    def test_coerces_to_float(self):
        c = Coordinate(23, 72)
        assert isinstance(c.latitude, float)
        assert c.to_dict() == {"lat": 23.0, "lng": 72.0}

    @pytest.mark.parametrize("lat,lng", [
        (91, 0), (-90.5, 0), (0, 180.1), (0, -181),
        (math.nan, 0), (0, math.inf),
    ])
    def test_rejects_invalid(self, lat, lng):
        with pytest.raises(ValueError):
            Coordinate(lat, lng)

    def test_zero_is_valid(self):
        assert Coordinate(0.0, 0.0).to_dict() == {"lat": 0.0, "lng": 0.0}

    def test_rounded(self):
        assert Coordinate(23.02714, 72.55861).rounded() == "23.027_72.559"
        assert Coordinate(23.02714, 72.55861).rounded(1) == "23.0_72.6"

    def test_frozen(self):
        c = Coordinate(1, 2)
        with pytest.raises(Exception):
            c.latitude = 5


class TestParseMapLocation:
    def test_valid(self):
        assert parse_map_location("23.0271, 72.5586") == Coordinate(23.0271, 72.5586)

    @pytest.mark.parametrize("raw", [None, "", "23.0", "a, b", "1, 2, 3", "95, 10", 42])
    def test_invalid(self, raw):
        assert parse_map_location(raw) is None


class TestRawPoint:
    def test_node(self):
        p = RawPoint.from_element({"lat": 23.0, "lon": 72.5, "tags": {"amenity": "bank"}})
        assert p.position == Coordinate(23.0, 72.5)
        assert p.bounding_center is None

    def test_way_center(self):
        p = RawPoint.from_element({"center": {"lat": 23.0, "lon": 72.5}, "tags": {}})
        assert p.coordinate is None
        assert p.position == Coordinate(23.0, 72.5)

    def test_no_position(self):
        assert RawPoint.from_element({"type": "way", "tags": {"amenity": "park"}}) is None

    def test_boolean_coordinates_rejected(self):
        assert RawPoint.from_element({"lat": True, "lon": False}) is None

    def test_tags_stringified_and_read_only(self):
        p = RawPoint.from_element({"lat": 1, "lon": 2, "tags": {"level": 3}})
        assert p.tags["level"] == "3"
        with pytest.raises(TypeError):
            p.tags["level"] = "4"

    def test_non_dict_tags(self):
        assert RawPoint.from_element({"lat": 1, "lon": 2, "tags": ["x"]}) is None


class TestAmenityCandidate:
    def test_to_dict(self):
        c = AmenityCandidate(
            name="SBI", category="bank", label="Bank",
            distance_km=1.23, formatted_distance="1.2 km",
            icon="CreditCard", color="from-gray-100 to-slate-100", icon_color="text-gray-700",
        )
        assert c.to_dict() == {
            "name": "SBI",
            "type": "Bank",
            "distance": "1.2 km",
            "distanceValue": 1.23,
            "icon": "CreditCard",
            "color": "from-gray-100 to-slate-100",
            "iconColor": "text-gray-700",
        }
