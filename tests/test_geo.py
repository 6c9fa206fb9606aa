from __future__ import annotations

import math

import pytest

from geo import (
    bearing,
    cardinal_direction,
    estimate_route,
    format_distance,
    format_duration,
    haversine_km,
    midpoint,
    valid_coordinates,
)


def test_haversine_one_degree_of_longitude_at_equator() -> None:
    assert haversine_km(0, 0, 0, 1) == pytest.approx(111.195, abs=0.01)


def test_haversine_same_point_is_zero() -> None:
    assert haversine_km(14.0818, -87.2068, 14.0818, -87.2068) == 0


@pytest.mark.parametrize(
    ("lat", "lng", "ok"),
    [(0, 0, True), (90, 180, True), (-90, -180, True), (90.1, 0, False), (0, -180.5, False), (math.nan, 0, False)],
)
def test_valid_coordinates(lat: float, lng: float, ok: bool) -> None:
    assert valid_coordinates(lat, lng) is ok


def test_bearing_cardinal_points() -> None:
    assert bearing(0, 0, 1, 0) == pytest.approx(0.0)
    assert bearing(0, 0, 0, 1) == pytest.approx(90.0)
    assert bearing(0, 0, -1, 0) == pytest.approx(180.0)
    assert bearing(0, 0, 0, -1) == pytest.approx(270.0)


def test_midpoint_on_equator() -> None:
    lat, lng = midpoint(0, 0, 0, 2)
    assert lat == pytest.approx(0.0, abs=1e-9)
    assert lng == pytest.approx(1.0)


@pytest.mark.parametrize(("deg", "label"), [(0, "N"), (44, "NE"), (90, "E"), (200, "S"), (350, "N"), (300, "NW")])
def test_cardinal_direction(deg: float, label: str) -> None:
    assert cardinal_direction(deg) == label


def test_format_distance() -> None:
    assert format_distance(0.5) == "500 m"
    assert format_distance(12.5) == "12.50 km"


def test_format_duration() -> None:
    assert format_duration(45) == "45 min"
    assert format_duration(120) == "2 h"
    assert format_duration(135) == "2 h 15 min"


def test_estimate_route_interpolates_straight_line() -> None:
    route = estimate_route(14.0818, -87.2068, 14.0950, -87.2150)

    assert len(route.points) == 11
    assert (route.points[0].lat, route.points[0].lng) == (14.0818, -87.2068)
    assert route.points[-1].lat == pytest.approx(14.0950)
    assert route.points[-1].lng == pytest.approx(-87.2150)
    assert route.points[5].lat == pytest.approx((14.0818 + 14.0950) / 2)
    assert route.distance_km == pytest.approx(haversine_km(14.0818, -87.2068, 14.0950, -87.2150))
    assert route.duration_min == int(route.distance_km / 50 * 60)
    assert route.direction in {"N", "NW"}


def test_estimate_route_long_trip_duration() -> None:
    # ~111 km at 50 km/h
    route = estimate_route(0, 0, 0, 1)
    assert route.duration_min == 133
