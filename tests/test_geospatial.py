import math

import pytest

from fieldroute.errors import InvalidConfiguration
from fieldroute.models.domain import Coordinate
from fieldroute.services.geospatial import (
    bearing_degrees,
    convex_hull,
    distance_km,
    distance_matrix_km,
    haversine_km,
    mean_coordinate,
    travel_time_minutes,
)

ONE_DEGREE_AT_EQUATOR_KM = 6371.0 * math.pi / 180


def test_haversine_one_degree_of_longitude_at_equator():
    assert haversine_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(ONE_DEGREE_AT_EQUATOR_KM)


def test_distance_is_symmetric_and_zero_only_for_same_point():
    a = Coordinate(18.4655, -66.1057)
    b = Coordinate(18.0113, -66.6140)

    assert distance_km(a, b) == pytest.approx(distance_km(b, a))
    assert distance_km(a, a) == 0.0
    assert distance_km(a, b) > 0


def test_travel_time_minutes_uses_average_speed():
    assert travel_time_minutes(35.0, 35.0) == pytest.approx(60.0)
    assert travel_time_minutes(10.0, 60.0) == pytest.approx(10.0)
    assert travel_time_minutes(0.0, 35.0) == 0.0


@pytest.mark.parametrize("speed", [0, -5.0])
def test_travel_time_minutes_rejects_non_positive_speed(speed):
    with pytest.raises(InvalidConfiguration):
        travel_time_minutes(10.0, speed)


def test_distance_matrix_matches_pairwise_haversine():
    points = [Coordinate(18.40, -66.16), Coordinate(18.01, -66.61), Coordinate(18.23, -66.03)]

    matrix = distance_matrix_km(points)

    assert matrix.shape == (3, 3)
    for i, a in enumerate(points):
        assert matrix[i, i] == 0.0
        for j, b in enumerate(points):
            assert matrix[i, j] == pytest.approx(distance_km(a, b))
            assert matrix[i, j] == matrix[j, i]


def test_distance_matrix_empty():
    assert distance_matrix_km([]).shape == (0, 0)


def test_bearing_due_east_and_north():
    assert bearing_degrees(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0)
    assert bearing_degrees(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0)


def test_mean_coordinate():
    center = mean_coordinate([Coordinate(18.0, -66.0), Coordinate(18.2, -66.4)])

    assert center.latitude == pytest.approx(18.1)
    assert center.longitude == pytest.approx(-66.2)


def test_convex_hull_is_closed_ring():
    square = [
        Coordinate(18.0, -66.0),
        Coordinate(18.0, -66.1),
        Coordinate(18.1, -66.1),
        Coordinate(18.1, -66.0),
        Coordinate(18.05, -66.05),
    ]

    hull = convex_hull(square)

    assert len(hull) == 5
    assert hull[0] == hull[-1]
    assert (18.05, -66.05) not in hull


def test_coordinate_validity():
    assert Coordinate(18.0, -66.0).is_valid()
    assert not Coordinate(math.nan, -66.0).is_valid()
    assert not Coordinate(18.0, math.inf).is_valid()
    assert not Coordinate(91.0, 0.0).is_valid()
