"""Workload balancing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from ...models.domain import Job, Technician
from ..clustering.models import JobCluster


@dataclass(slots=True)
class TechnicianWorkload:
    """Running load of one technician while clusters are handed out."""

    technician: Technician
    assigned_jobs: List[Job] = field(default_factory=list)
    clusters: List[JobCluster] = field(default_factory=list)
    assigned_regions: List[str] = field(default_factory=list)
    total_duration_minutes: int = 0

    def take(self, cluster: JobCluster) -> None:
        self.clusters.append(cluster)
        self.assigned_jobs.extend(cluster.jobs)
        self.total_duration_minutes += cluster.total_duration_minutes
        if cluster.region_label not in self.assigned_regions:
            self.assigned_regions.append(cluster.region_label)


@dataclass(slots=True, frozen=True)
class TechnicianAssignment:
    technician: Technician
    clusters: tuple[JobCluster, ...]
    jobs: tuple[Job, ...]
    regions: tuple[str, ...]
    total_duration_minutes: int


@dataclass(slots=True, frozen=True)
class AutoAssignmentResult:
    assignments: tuple[TechnicianAssignment, ...]
    balance_score: float
    workloads: tuple[TechnicianAssignment, ...] = ()

    def jobs_for(self, technician_id: str) -> tuple[Job, ...]:
        for assignment in self.assignments:
            if assignment.technician.id == technician_id:
                return assignment.jobs
        return ()
