"""Tests for spot_handoff.services.geo_math."""

import math

import pytest

from spot_handoff.services.geo_math import (
    EARTH_RADIUS_METERS,
    distance_meters,
    meters_to_miles,
    miles_to_meters,
)


class TestDistance:
    def test_same_point_is_zero(self):
        assert distance_meters(37.7749, -122.4194, 37.7749, -122.4194) == 0.0

    def test_symmetric(self):
        a = distance_meters(37.7749, -122.4194, 37.8044, -122.2712)
        b = distance_meters(37.8044, -122.2712, 37.7749, -122.4194)
        assert a == pytest.approx(b)

    def test_one_degree_of_latitude(self):
        # pi * R / 180 along a meridian
        expected = math.pi * EARTH_RADIUS_METERS / 180
        assert distance_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-9)

    def test_short_hop_in_meters(self):
        # ~0.00055 deg of latitude is ~61 m
        d = distance_meters(37.7749, -122.4194, 37.77545, -122.4194)
        assert 60.0 < d < 62.0

    def test_antipodal_points_do_not_blow_up(self):
        d = distance_meters(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(math.pi * EARTH_RADIUS_METERS)

    def test_san_francisco_to_oakland(self):
        d = distance_meters(37.7749, -122.4194, 37.8044, -122.2712)
        assert 13_000 < d < 13_500


class TestUnits:
    def test_half_mile(self):
        assert miles_to_meters(0.5) == pytest.approx(804.672)

    def test_round_trip(self):
        assert meters_to_miles(miles_to_meters(3.0)) == pytest.approx(3.0)
