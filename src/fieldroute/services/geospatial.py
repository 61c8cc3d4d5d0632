"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np
from shapely.geometry import MultiPoint, Polygon

from ..errors import InvalidConfiguration
from ..models.domain import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def travel_time_minutes(distance: float, average_speed_kmh: float) -> float:
    """Minutes needed to cover ``distance`` kilometres at ``average_speed_kmh``."""

    if average_speed_kmh <= 0:
        raise InvalidConfiguration(f"average_speed_kmh must be > 0 (got {average_speed_kmh})")
    return distance / average_speed_kmh * 60.0


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def mean_coordinate(coordinates: Iterable[Coordinate]) -> Coordinate:
    points = list(coordinates)
    if not points:
        raise ValueError("mean_coordinate requires at least one coordinate")
    lat = sum(point.latitude for point in points) / len(points)
    lon = sum(point.longitude for point in points) / len(points)
    return Coordinate(latitude=lat, longitude=lon)


def distance_matrix_km(coordinates: Sequence[Coordinate]) -> np.ndarray:
    """Pairwise haversine distances as an (n, n) array.

    The diagonal is exactly zero and the matrix is symmetric.
    """

    if not coordinates:
        return np.zeros((0, 0))
    lat = np.radians(np.array([point.latitude for point in coordinates], dtype=float))
    lon = np.radians(np.array([point.longitude for point in coordinates], dtype=float))

    d_phi = lat[None, :] - lat[:, None]
    d_lambda = lon[None, :] - lon[:, None]
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat[:, None]) * np.cos(lat[None, :]) * np.sin(d_lambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    matrix = EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    matrix = (matrix + matrix.T) / 2
    np.fill_diagonal(matrix, 0.0)
    return matrix


def convex_hull(coordinates: Sequence[Coordinate]) -> list[tuple[float, float]]:
    """Closed outline around the points as (lat, lon) pairs.

    Fewer than three distinct points produce a degenerate outline (a point or a
    segment), which is returned as-is.
    """

    if not coordinates:
        return []
    hull = MultiPoint([(point.longitude, point.latitude) for point in coordinates]).convex_hull
    if isinstance(hull, Polygon):
        return [(lat, lng) for lng, lat in hull.exterior.coords]
    return [(lat, lng) for lng, lat in hull.coords]
