"""Geographic clustering services."""

from .kmeans import GeoClusterer
from .regions import PUERTO_RICO_REGIONS, NamedRegion, nearest_named_region, nearest_region

__all__ = ["GeoClusterer", "NamedRegion", "PUERTO_RICO_REGIONS", "nearest_named_region", "nearest_region"]
