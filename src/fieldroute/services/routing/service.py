"""Routing orchestration service.

One run goes clustering -> assignment -> per-technician route optimization.
Clustering and assignment run in order on the calling thread; the route for
each technician is optimized on a bounded thread pool, each worker holding its
own copies of that technician's jobs.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from typing import Iterable, Mapping, Optional, Sequence

from ...config import Settings, settings
from ...errors import InvalidConfiguration, InvalidInput, OptimizationCancelled
from ...models.domain import Coordinate, InvalidRecord, Job, Technician
from ...persistence.filesystem import FileStorage
from ...persistence.route_store import RoutePlanStore
from ...schemas.optimization import OptimizationRequest, OptimizationResponse, TechnicianModel
from ..balancing.service import WorkloadBalancer
from ..clustering.kmeans import GeoClusterer, is_clusterable
from ..clustering.regions import PUERTO_RICO_REGIONS, NamedRegion
from ..geospatial import convex_hull
from ..outputs.routing_formatter import (
    job_from_model,
    optimization_result_to_csv,
    optimization_result_to_json,
    optimization_result_to_response,
    run_summary_to_csv,
)
from .models import OptimizationResult, OptimizedRoute, RunSummary, SavedRoute
from .optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OptimizationConfig:
    cluster_count: int
    average_speed_kmh: float
    max_two_opt_iterations: int
    optimization_time_budget_ms: Optional[int]
    concurrency_limit: int
    strict_priority: bool = False
    fuel_cost_per_km: float = 0.35

    @classmethod
    def from_settings(cls, source: Settings | None = None, **overrides) -> "OptimizationConfig":
        source = source or settings
        values = {item.name: getattr(source, item.name) for item in fields(cls)}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @classmethod
    def from_request(cls, payload: OptimizationRequest, source: Settings | None = None) -> "OptimizationConfig":
        return cls.from_settings(
            source,
            cluster_count=payload.cluster_count,
            average_speed_kmh=payload.average_speed_kmh,
            max_two_opt_iterations=payload.max_two_opt_iterations,
            optimization_time_budget_ms=payload.optimization_time_budget_ms,
            concurrency_limit=payload.concurrency_limit,
            strict_priority=payload.strict_priority,
            fuel_cost_per_km=payload.fuel_cost_per_km,
        )

    def validate(self) -> None:
        problems = []
        if self.cluster_count < 1:
            problems.append(f"cluster_count must be >= 1 (got {self.cluster_count})")
        if not math.isfinite(self.average_speed_kmh) or self.average_speed_kmh <= 0:
            problems.append(f"average_speed_kmh must be > 0 (got {self.average_speed_kmh})")
        if self.max_two_opt_iterations < 1:
            problems.append(f"max_two_opt_iterations must be >= 1 (got {self.max_two_opt_iterations})")
        if self.optimization_time_budget_ms is not None and self.optimization_time_budget_ms <= 0:
            problems.append(
                f"optimization_time_budget_ms must be > 0 when set (got {self.optimization_time_budget_ms})"
            )
        if self.concurrency_limit < 1:
            problems.append(f"concurrency_limit must be >= 1 (got {self.concurrency_limit})")
        if not math.isfinite(self.fuel_cost_per_km) or self.fuel_cost_per_km < 0:
            problems.append(f"fuel_cost_per_km must be >= 0 (got {self.fuel_cost_per_km})")
        if problems:
            raise InvalidConfiguration("; ".join(problems))


def technician_from_model(model: TechnicianModel) -> Technician:
    home_base = Coordinate(
        latitude=model.home_latitude if model.home_latitude is not None else math.nan,
        longitude=model.home_longitude if model.home_longitude is not None else math.nan,
    )
    return Technician(
        id=model.id,
        name=model.name,
        home_base=home_base,
        specialized_regions=frozenset(model.specialized_regions),
        excluded=model.excluded,
    )


def validate_jobs(jobs: Iterable[Job]) -> tuple[list[Job], list[InvalidRecord]]:
    """Split jobs into usable ones and per-record problems.

    Jobs with a bad coordinate stay in the usable list; the clusterer reports
    them as unclusterable. They are still recorded here so callers see one
    list of everything left out.
    """

    valid: list[Job] = []
    invalid: list[InvalidRecord] = []
    seen: set[str] = set()
    for job in jobs:
        if job.id in seen:
            invalid.append(InvalidRecord(job.id, "job", "duplicate job id"))
            continue
        seen.add(job.id)
        if job.estimated_duration_minutes <= 0:
            invalid.append(
                InvalidRecord(job.id, "job", f"non-positive estimated duration ({job.estimated_duration_minutes})")
            )
            continue
        if not is_clusterable(job):
            invalid.append(InvalidRecord(job.id, "job", "missing or invalid coordinate"))
        valid.append(job)
    return valid, invalid


def validate_technicians(technicians: Iterable[Technician]) -> tuple[list[Technician], list[InvalidRecord]]:
    valid: list[Technician] = []
    invalid: list[InvalidRecord] = []
    seen: set[str] = set()
    for technician in technicians:
        if technician.id in seen:
            invalid.append(InvalidRecord(technician.id, "technician", "duplicate technician id"))
            continue
        seen.add(technician.id)
        if technician.home_base is None or not technician.home_base.is_valid():
            invalid.append(InvalidRecord(technician.id, "technician", "missing or invalid home base"))
            continue
        valid.append(technician)
    return valid, invalid


def summarize_routes(routes: Mapping[str, OptimizedRoute]) -> RunSummary:
    """Run totals; averages are taken over every routed technician, idle ones included."""

    summary = RunSummary(total_technicians=len(routes))
    for route in routes.values():
        summary.total_jobs += len(route.route)
        summary.total_distance_km += route.total_distance_km
        summary.total_time_minutes += route.total_time_minutes
        summary.total_fuel_cost += route.fuel_cost
    if summary.total_technicians:
        summary.average_jobs_per_technician = summary.total_jobs / summary.total_technicians
        summary.average_distance_per_technician = summary.total_distance_km / summary.total_technicians
    return summary


class RouteOptimizationService:
    def __init__(
        self,
        *,
        source: Settings | None = None,
        regions: Sequence[NamedRegion] = PUERTO_RICO_REGIONS,
        balancer: WorkloadBalancer | None = None,
    ) -> None:
        self.settings = source or settings
        self.regions = tuple(regions)
        self.balancer = balancer or WorkloadBalancer(general_region_markers=self.settings.general_region_markers)

    def plan(
        self,
        *,
        run_date: date,
        jobs: Sequence[Job],
        technicians: Sequence[Technician],
        start_time: datetime,
        excluded_technician_ids: Iterable[str] = (),
        config: OptimizationConfig | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizationResult:
        config = config or OptimizationConfig.from_settings(self.settings)
        config.validate()
        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled("Optimization cancelled before it started")

        clusterer = GeoClusterer(max_iter=self.settings.kmeans_max_iterations, regions=self.regions)
        optimizer = RouteOptimizer(
            average_speed_kmh=config.average_speed_kmh,
            max_two_opt_iterations=config.max_two_opt_iterations,
            time_budget_ms=config.optimization_time_budget_ms,
            strict_priority=config.strict_priority,
            fuel_cost_per_km=config.fuel_cost_per_km,
        )

        valid_jobs, invalid_jobs = validate_jobs(jobs)
        valid_technicians, invalid_technicians = validate_technicians(technicians)
        invalid_records = invalid_jobs + invalid_technicians
        if invalid_records:
            logger.warning(f"{len(invalid_records)} record(s) left out of the run for validation problems")

        clustering = clusterer.cluster(valid_jobs, config.cluster_count)
        excluded_ids = set(excluded_technician_ids)
        assignment = self.balancer.assign(clustering.clusters, valid_technicians, excluded_ids)

        routes = self._optimize_routes(
            optimizer,
            [item.technician for item in assignment.workloads],
            {item.technician.id: item.jobs for item in assignment.workloads},
            start_time,
            config.concurrency_limit,
            cancel_event,
        )

        timed_out = [technician_id for technician_id, route in routes.items() if route.timed_out]
        # a signal that arrives after every route finished leaves the result complete
        cancelled = any(route.cancelled for route in routes.values())

        metadata = {
            "requested_clusters": clustering.requested_k,
            "effective_clusters": clustering.effective_k,
            "dropped_empty_clusters": clustering.dropped_empty_clusters,
            "kmeans_iterations": clustering.iterations,
            "kmeans_converged": clustering.converged,
            "jobs_received": len(jobs),
            "jobs_clustered": sum(cluster.job_count for cluster in clustering.clusters),
            "technicians_available": len(assignment.workloads),
            "balance_score": assignment.balance_score,
            "average_speed_kmh": config.average_speed_kmh,
            "strict_priority": config.strict_priority,
            "fuel_cost_per_km": config.fuel_cost_per_km,
            "map_overlays": {
                "clusters": [
                    {
                        "cluster_id": cluster.id,
                        "region_label": cluster.region_label,
                        "within_region": cluster.within_region,
                        "coordinates": convex_hull([job.coordinate for job in cluster.jobs]),
                        "source": "convex_hull",
                    }
                    for cluster in clustering.clusters
                ]
            },
        }

        result = OptimizationResult(
            date=run_date,
            clusters=clustering.clusters,
            assignment=assignment,
            routes=routes,
            unclusterable=clustering.unclusterable,
            invalid_records=invalid_records,
            cancelled=cancelled,
            timed_out_technicians=timed_out,
            summary=summarize_routes(routes),
            metadata=metadata,
        )
        logger.info(
            f"Run for {run_date.isoformat()} {result.status}: {len(clustering.clusters)} cluster(s), "
            f"{len(routes)} route(s), balance score {assignment.balance_score:.1f}"
        )
        return result

    def _optimize_routes(
        self,
        optimizer: RouteOptimizer,
        technicians: Sequence[Technician],
        jobs_by_technician: dict[str, Sequence[Job]],
        start_time: datetime,
        concurrency_limit: int,
        cancel_event: threading.Event | None,
    ) -> dict[str, OptimizedRoute]:
        if not technicians:
            return {}

        routes: dict[str, OptimizedRoute] = {}
        max_workers = max(1, min(concurrency_limit, len(technicians)))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_technician = {
                executor.submit(
                    optimizer.optimize,
                    technician.home_base,
                    [replace(job) for job in jobs_by_technician.get(technician.id, ())],
                    start_time,
                    cancel_event=cancel_event,
                ): technician.id
                for technician in technicians
            }
            for future in as_completed(future_to_technician):
                routes[future_to_technician[future]] = future.result()

        return {technician_id: routes[technician_id] for technician_id in sorted(routes)}

    def run(self, payload: OptimizationRequest, *, cancel_event: threading.Event | None = None) -> OptimizationResult:
        config = OptimizationConfig.from_request(payload, self.settings)
        result = self.plan(
            run_date=payload.date,
            jobs=[job_from_model(job) for job in payload.jobs],
            technicians=[technician_from_model(technician) for technician in payload.technicians],
            start_time=payload.resolved_start_time(),
            excluded_technician_ids=payload.excluded_technician_ids,
            config=config,
            cancel_event=cancel_event,
        )
        if payload.run_label:
            result.metadata["run_label"] = payload.run_label
        if payload.persist:
            self._persist_outputs(result)
        return result

    def _persist_outputs(self, result: OptimizationResult) -> None:
        storage = FileStorage()
        run_dir = storage.make_run_directory(prefix=f"plan_{result.date.isoformat()}")
        storage.write_json(run_dir / "summary.json", optimization_result_to_json(result))
        storage.write_csv(run_dir / "routes.csv", optimization_result_to_csv(result))
        storage.write_csv(run_dir / "summary.csv", run_summary_to_csv(result))
        result.metadata["output_dir"] = str(run_dir)
        logger.info(f"Wrote run outputs to {run_dir}")

    def save_route(
        self,
        result: OptimizationResult,
        technician_id: str,
        store: RoutePlanStore,
        name: str | None = None,
    ) -> SavedRoute:
        route = result.routes.get(technician_id)
        if route is None:
            raise InvalidInput(f"No route for technician '{technician_id}' in this result")
        return store.save(route, name)


def optimize_routes(
    payload: OptimizationRequest,
    *,
    cancel_event: threading.Event | None = None,
) -> OptimizationResponse:
    result = RouteOptimizationService().run(payload, cancel_event=cancel_event)
    return optimization_result_to_response(result)
