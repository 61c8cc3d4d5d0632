"""Named service regions used to label clusters for display."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ...models.domain import Coordinate
from ..geospatial import distance_km

UNKNOWN_REGION = "Unknown"


@dataclass(slots=True, frozen=True)
class NamedRegion:
    name: str
    center: Coordinate
    radius_degrees: float

    def contains(self, point: Coordinate) -> bool:
        """Whether ``point`` lies inside the region's circle, measured in degrees."""
        return math.hypot(
            point.latitude - self.center.latitude,
            point.longitude - self.center.longitude,
        ) <= self.radius_degrees


PUERTO_RICO_REGIONS: tuple[NamedRegion, ...] = (
    NamedRegion("San Juan Metro", Coordinate(18.4655, -66.1057), 0.1),
    NamedRegion("Bayamon", Coordinate(18.3989, -66.1614), 0.08),
    NamedRegion("Carolina", Coordinate(18.3809, -65.9528), 0.08),
    NamedRegion("Guaynabo", Coordinate(18.4178, -66.1075), 0.06),
    NamedRegion("Caguas", Coordinate(18.2342, -66.0356), 0.1),
    NamedRegion("Arecibo", Coordinate(18.4506, -66.7320), 0.1),
    NamedRegion("Mayaguez", Coordinate(18.2013, -67.1397), 0.1),
    NamedRegion("Ponce", Coordinate(18.0113, -66.6140), 0.1),
    NamedRegion("Humacao", Coordinate(18.1494, -65.8272), 0.08),
    NamedRegion("Aguadilla", Coordinate(18.4282, -67.1541), 0.08),
)


def nearest_named_region(
    point: Coordinate,
    regions: Sequence[NamedRegion] = PUERTO_RICO_REGIONS,
) -> Optional[NamedRegion]:
    """Region whose center is closest to ``point``; earlier table entries win ties."""

    nearest = None
    min_distance = float("inf")
    for region in regions:
        distance = distance_km(point, region.center)
        if distance < min_distance:
            min_distance = distance
            nearest = region
    return nearest


def nearest_region(point: Coordinate, regions: Sequence[NamedRegion] = PUERTO_RICO_REGIONS) -> str:
    region = nearest_named_region(point, regions)
    return region.name if region is not None else UNKNOWN_REGION
