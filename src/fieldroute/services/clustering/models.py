"""Clustering domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from ...models.domain import Coordinate, Job, JobPriority


def average_priority(jobs: list[Job]) -> JobPriority:
    if not jobs:
        return JobPriority.LOW
    avg = sum(int(job.priority) for job in jobs) / len(jobs)
    if avg >= 2.5:
        return JobPriority.HIGH
    if avg >= 1.5:
        return JobPriority.MEDIUM
    return JobPriority.LOW


@dataclass(slots=True)
class JobCluster:
    id: int
    centroid: Coordinate
    region_label: str
    jobs: List[Job]
    total_duration_minutes: int
    within_region: bool = True

    @property
    def job_count(self) -> int:
        return len(self.jobs)

    @property
    def average_priority(self) -> JobPriority:
        return average_priority(self.jobs)


@dataclass(slots=True)
class ClusteringResult:
    clusters: List[JobCluster]
    unclusterable: List[Job]
    requested_k: int
    effective_k: int
    dropped_empty_clusters: int = 0
    iterations: int = 0
    converged: bool = True
    metadata: dict = field(default_factory=dict)
