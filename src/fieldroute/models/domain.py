"""Domain models for jobs, technicians and coordinates."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional
import math


@dataclass(slots=True, frozen=True)
class Coordinate:
    """A point on the map in decimal degrees."""

    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )


class JobPriority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def parse(cls, value: "str | int | JobPriority") -> "JobPriority":
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown job priority '{value}'") from exc

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(slots=True)
class Job:
    """A unit of field work at a customer location."""

    id: str
    name: str
    priority: JobPriority
    estimated_duration_minutes: int
    coordinate: Optional[Coordinate]
    customer_id: str
    assigned_technician_id: Optional[str] = None
    cluster_id: Optional[int] = None


@dataclass(slots=True)
class Technician:
    """A field technician available for a day's run."""

    id: str
    name: str
    home_base: Coordinate
    specialized_regions: frozenset[str] = field(default_factory=frozenset)
    excluded: bool = False


@dataclass(slots=True, frozen=True)
class InvalidRecord:
    """A job or technician left out of a run, with the reason."""

    record_id: str
    record_type: str
    reason: str
