"""Workload balancing for cluster-to-technician assignment."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np

from ...config import settings
from ...errors import NoAvailableTechnicians
from ...models.domain import Technician
from ..clustering.models import JobCluster
from .models import AutoAssignmentResult, TechnicianAssignment, TechnicianWorkload

logger = logging.getLogger(__name__)


def balance_score(loads: Sequence[float]) -> float:
    """Score how evenly ``loads`` are spread, from 0 (uneven) to 100 (even).

    Computed as ``100 * (1 - stddev / mean)`` over the population standard
    deviation. A single technician, or every technician at zero, scores 100.
    """

    if len(loads) <= 1:
        return 100.0
    values = np.asarray(loads, dtype=float)
    mean = float(values.mean())
    if mean == 0:
        return 100.0
    score = 100.0 * (1.0 - float(values.std()) / mean)
    return min(100.0, max(0.0, score))


def _is_general(technician: Technician, general_markers: Iterable[str]) -> bool:
    regions = set(technician.specialized_regions)
    return not regions or bool(regions & set(general_markers))


def _least_loaded(workloads: Iterable[TechnicianWorkload]) -> TechnicianWorkload | None:
    return min(workloads, key=lambda item: (item.total_duration_minutes, item.technician.id), default=None)


def _snapshot(workload: TechnicianWorkload) -> TechnicianAssignment:
    return TechnicianAssignment(
        technician=workload.technician,
        clusters=tuple(workload.clusters),
        jobs=tuple(workload.assigned_jobs),
        regions=tuple(workload.assigned_regions),
        total_duration_minutes=workload.total_duration_minutes,
    )


class WorkloadBalancer:
    """Greedy Longest-Processing-Time assignment of whole clusters to technicians.

    Each cluster, largest total duration first, goes to the least loaded
    technician among the first non-empty candidate group:

    1. specialists whose regions include the cluster's region label
    2. general technicians with no specialization
    3. every available technician

    Clusters are never split between technicians.
    """

    def __init__(self, *, general_region_markers: Iterable[str] | None = None) -> None:
        markers = general_region_markers if general_region_markers is not None else settings.general_region_markers
        self.general_region_markers = frozenset(markers)

    def _select(self, cluster: JobCluster, workloads: Sequence[TechnicianWorkload]) -> TechnicianWorkload:
        specialists = [
            item
            for item in workloads
            if cluster.region_label in item.technician.specialized_regions
        ]
        if specialists:
            return _least_loaded(specialists)

        generalists = [item for item in workloads if _is_general(item.technician, self.general_region_markers)]
        if generalists:
            return _least_loaded(generalists)

        return _least_loaded(workloads)

    def assign(
        self,
        clusters: Sequence[JobCluster],
        technicians: Sequence[Technician],
        excluded_technician_ids: Iterable[str] = (),
    ) -> AutoAssignmentResult:
        excluded = set(excluded_technician_ids)
        available = sorted(
            (tech for tech in technicians if not tech.excluded and tech.id not in excluded),
            key=lambda tech: tech.id,
        )

        if clusters and not available:
            raise NoAvailableTechnicians(
                f"No technicians available for {len(clusters)} cluster(s): "
                f"{len(technicians)} on the roster, {len(technicians) - len(available)} excluded."
            )

        workloads = [TechnicianWorkload(technician=tech) for tech in available]
        ordered = sorted(clusters, key=lambda cluster: (-cluster.total_duration_minutes, cluster.id))

        for cluster in ordered:
            chosen = self._select(cluster, workloads)
            chosen.take(cluster)
            for job in cluster.jobs:
                job.assigned_technician_id = chosen.technician.id
            logger.debug(
                f"Cluster {cluster.id} ({cluster.region_label}, {cluster.total_duration_minutes} min) "
                f"-> {chosen.technician.name} (load now {chosen.total_duration_minutes} min)"
            )

        score = balance_score([item.total_duration_minutes for item in workloads])
        logger.info(
            f"Assigned {len(ordered)} cluster(s) across {len(workloads)} technician(s), "
            f"balance score {score:.1f}"
        )

        return AutoAssignmentResult(
            assignments=tuple(_snapshot(item) for item in workloads if item.clusters),
            balance_score=score,
            workloads=tuple(_snapshot(item) for item in workloads),
        )
