"""Geographic clustering of jobs with deterministic K-Means."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from sklearn.metrics import pairwise_distances_argmin

from ...config import settings
from ...errors import InvalidConfiguration
from ...models.domain import Coordinate, Job
from ..geospatial import distance_km, distance_matrix_km, mean_coordinate
from .models import ClusteringResult, JobCluster
from .regions import PUERTO_RICO_REGIONS, UNKNOWN_REGION, NamedRegion, nearest_named_region

logger = logging.getLogger(__name__)


def is_clusterable(job: Job) -> bool:
    return job.coordinate is not None and job.coordinate.is_valid()


class GeoClusterer:
    """Partition jobs into spatial clusters with Lloyd's K-Means.

    Latitude and longitude are treated as a flat plane, which holds at city and
    region scale. Seeding is farthest-point rather than random so that the same
    job set always yields the same clusters:

    - the first seed is the job nearest the mean coordinate of all jobs
    - every further seed is the job farthest (haversine) from all chosen seeds
    - ties go to the lowest job id

    Clusters that end up with no jobs are dropped, so fewer than ``k`` clusters
    can come back.
    """

    def __init__(
        self,
        *,
        max_iter: int | None = None,
        regions: Sequence[NamedRegion] = PUERTO_RICO_REGIONS,
    ) -> None:
        self.max_iter = max_iter if max_iter is not None else settings.kmeans_max_iterations
        if self.max_iter < 1:
            raise InvalidConfiguration(f"kmeans max_iter must be >= 1 (got {self.max_iter})")
        self.regions = tuple(regions)

    def _farthest_point_seeds(self, jobs: Sequence[Job], k: int) -> list[int]:
        coordinates = [job.coordinate for job in jobs]
        overall = mean_coordinate(coordinates)
        first = min(range(len(jobs)), key=lambda i: (distance_km(coordinates[i], overall), jobs[i].id))
        seeds = [first]

        matrix = distance_matrix_km(coordinates)
        min_distance = matrix[first].copy()
        min_distance[first] = -1.0
        while len(seeds) < min(k, len(jobs)):
            # jobs are sorted by id, so argmax picks the lowest id on ties
            candidate = int(np.argmax(min_distance))
            seeds.append(candidate)
            min_distance = np.minimum(min_distance, matrix[candidate])
            min_distance[seeds] = -1.0
        return seeds

    def cluster(self, jobs: Sequence[Job], k: int) -> ClusteringResult:
        if k < 1:
            raise InvalidConfiguration(f"cluster count must be >= 1 (got {k})")

        valid = sorted((job for job in jobs if is_clusterable(job)), key=lambda job: job.id)
        unclusterable = [job for job in jobs if not is_clusterable(job)]
        if unclusterable:
            logger.warning(
                f"{len(unclusterable)} job(s) have a missing or invalid coordinate and were left out of clustering"
            )

        if not valid:
            return ClusteringResult(
                clusters=[],
                unclusterable=unclusterable,
                requested_k=k,
                effective_k=0,
                metadata={"strategy": "kmeans", "error": "No jobs with valid coordinates"},
            )

        points = np.array([[job.coordinate.latitude, job.coordinate.longitude] for job in valid], dtype=float)
        centroids = points[self._farthest_point_seeds(valid, k)]

        labels: np.ndarray | None = None
        dropped = 0
        iterations = 0
        converged = False
        while iterations < self.max_iter:
            iterations += 1
            new_labels = pairwise_distances_argmin(points, centroids)

            used = np.unique(new_labels)
            emptied = len(centroids) - len(used)
            if emptied:
                dropped += emptied
                centroids = centroids[used]
                new_labels = np.searchsorted(used, new_labels)
                logger.debug(f"Dropped {emptied} empty cluster(s) at iteration {iterations}")
            elif labels is not None and np.array_equal(new_labels, labels):
                converged = True
                break

            labels = new_labels
            centroids = np.array([points[labels == index].mean(axis=0) for index in range(len(centroids))])

        if not converged:
            logger.warning(f"K-Means stopped at the iteration cap ({self.max_iter}) before converging")

        clusters: list[JobCluster] = []
        for index, center in enumerate(centroids):
            members = [job for job, label in zip(valid, labels) if label == index]
            for job in members:
                job.cluster_id = index
            centroid = Coordinate(latitude=float(center[0]), longitude=float(center[1]))
            region = nearest_named_region(centroid, self.regions)
            clusters.append(
                JobCluster(
                    id=index,
                    centroid=centroid,
                    region_label=region.name if region is not None else UNKNOWN_REGION,
                    jobs=members,
                    total_duration_minutes=sum(job.estimated_duration_minutes for job in members),
                    # label is still the nearest region when the centroid falls outside every radius
                    within_region=region is not None and region.contains(centroid),
                )
            )

        logger.info(
            f"Clustered {len(valid)} jobs into {len(clusters)} cluster(s) "
            f"(requested {k}, {iterations} iteration(s))"
        )
        return ClusteringResult(
            clusters=clusters,
            unclusterable=unclusterable,
            requested_k=k,
            effective_k=len(clusters),
            dropped_empty_clusters=dropped,
            iterations=iterations,
            converged=converged,
            metadata={
                "strategy": "kmeans",
                "seeding": "farthest_point",
                "centers": [[cluster.centroid.latitude, cluster.centroid.longitude] for cluster in clusters],
                "counts": {cluster.id: cluster.job_count for cluster in clusters},
            },
        )
