"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from ...models.domain import InvalidRecord, Job
from ..balancing.models import AutoAssignmentResult
from ..clustering.models import JobCluster


@dataclass(slots=True)
class RouteStop:
    job_id: str
    sequence: int
    distance_from_prev_km: float
    travel_min: float
    arrival_time: datetime
    departure_time: datetime


@dataclass(slots=True)
class OptimizedRoute:
    route: List[Job]
    total_distance_km: float
    total_time_minutes: float
    estimated_completion_time: datetime
    start_time: datetime
    travel_time_minutes: float = 0.0
    service_time_minutes: float = 0.0
    stops: List[RouteStop] = field(default_factory=list)
    initial_distance_km: float = 0.0
    two_opt_iterations: int = 0
    timed_out: bool = False
    cancelled: bool = False
    fuel_cost: float = 0.0

    @property
    def job_ids(self) -> list[str]:
        return [job.id for job in self.route]


@dataclass(slots=True)
class RunSummary:
    """Totals across every technician route in a run."""

    total_technicians: int = 0
    total_jobs: int = 0
    total_distance_km: float = 0.0
    total_time_minutes: float = 0.0
    total_fuel_cost: float = 0.0
    average_jobs_per_technician: float = 0.0
    average_distance_per_technician: float = 0.0


@dataclass(slots=True, frozen=True)
class SavedRoute:
    id: str
    route_name: str
    route: OptimizedRoute
    saved_at: datetime
    share_token: Optional[str] = None


@dataclass(slots=True)
class OptimizationResult:
    """Everything one run produced, keyed for downstream consumers."""

    date: date
    clusters: List[JobCluster]
    assignment: AutoAssignmentResult
    routes: Dict[str, OptimizedRoute]
    unclusterable: List[Job] = field(default_factory=list)
    invalid_records: List[InvalidRecord] = field(default_factory=list)
    cancelled: bool = False
    timed_out_technicians: List[str] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)
    metadata: dict = field(default_factory=dict)

    @property
    def status(self) -> str:
        if self.cancelled or self.timed_out_technicians:
            return "completed_best_effort"
        return "completed"
