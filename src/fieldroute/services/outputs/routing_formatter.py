"""Serializers for routing outputs."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict

from ...models.domain import Coordinate, Job, JobPriority
from ...schemas.optimization import (
    AssignmentModel,
    ClusterModel,
    CoordinateModel,
    InvalidRecordModel,
    JobModel,
    OptimizationResponse,
    OptimizedRouteModel,
    RunSummaryModel,
    RouteStopModel,
    TechnicianAssignmentModel,
)
from ...schemas.saved_routes import SavedRouteModel
from ..balancing.models import TechnicianAssignment
from ..clustering.models import JobCluster
from ..routing.models import OptimizationResult, OptimizedRoute, RouteStop, SavedRoute


def job_to_model(job: Job) -> JobModel:
    return JobModel(
        id=job.id,
        name=job.name,
        priority=job.priority.label,
        estimated_duration_minutes=job.estimated_duration_minutes,
        latitude=job.coordinate.latitude if job.coordinate else None,
        longitude=job.coordinate.longitude if job.coordinate else None,
        customer_id=job.customer_id,
        assigned_technician_id=job.assigned_technician_id,
        cluster_id=job.cluster_id,
    )


def job_from_model(model: JobModel) -> Job:
    coordinate = None
    if model.latitude is not None and model.longitude is not None:
        coordinate = Coordinate(latitude=model.latitude, longitude=model.longitude)
    return Job(
        id=model.id,
        name=model.name,
        priority=JobPriority.parse(model.priority),
        estimated_duration_minutes=model.estimated_duration_minutes,
        coordinate=coordinate,
        customer_id=model.customer_id,
        assigned_technician_id=model.assigned_technician_id,
        cluster_id=model.cluster_id,
    )


def route_to_model(route: OptimizedRoute) -> OptimizedRouteModel:
    return OptimizedRouteModel(
        jobs=[job_to_model(job) for job in route.route],
        stops=[
            RouteStopModel(
                job_id=stop.job_id,
                sequence=stop.sequence,
                distance_from_prev_km=stop.distance_from_prev_km,
                travel_min=stop.travel_min,
                arrival_time=stop.arrival_time,
                departure_time=stop.departure_time,
            )
            for stop in route.stops
        ],
        total_distance_km=route.total_distance_km,
        total_time_minutes=route.total_time_minutes,
        travel_time_minutes=route.travel_time_minutes,
        service_time_minutes=route.service_time_minutes,
        start_time=route.start_time,
        estimated_completion_time=route.estimated_completion_time,
        initial_distance_km=route.initial_distance_km,
        two_opt_iterations=route.two_opt_iterations,
        timed_out=route.timed_out,
        cancelled=route.cancelled,
        fuel_cost=route.fuel_cost,
    )


def route_from_model(model: OptimizedRouteModel) -> OptimizedRoute:
    return OptimizedRoute(
        route=[job_from_model(job) for job in model.jobs],
        total_distance_km=model.total_distance_km,
        total_time_minutes=model.total_time_minutes,
        estimated_completion_time=model.estimated_completion_time,
        start_time=model.start_time,
        travel_time_minutes=model.travel_time_minutes,
        service_time_minutes=model.service_time_minutes,
        stops=[RouteStop(**stop.model_dump()) for stop in model.stops],
        initial_distance_km=model.initial_distance_km,
        two_opt_iterations=model.two_opt_iterations,
        timed_out=model.timed_out,
        cancelled=model.cancelled,
        fuel_cost=model.fuel_cost,
    )


def saved_route_from_model(model: SavedRouteModel) -> SavedRoute:
    return SavedRoute(
        id=model.id,
        route_name=model.route_name,
        route=route_from_model(model.route),
        saved_at=model.saved_at,
        share_token=model.share_token,
    )


def _cluster_to_model(cluster: JobCluster) -> ClusterModel:
    return ClusterModel(
        id=cluster.id,
        centroid=CoordinateModel(latitude=cluster.centroid.latitude, longitude=cluster.centroid.longitude),
        region_label=cluster.region_label,
        within_region=cluster.within_region,
        job_ids=[job.id for job in cluster.jobs],
        job_count=cluster.job_count,
        total_duration_minutes=cluster.total_duration_minutes,
        average_priority=cluster.average_priority.label,
    )


def _assignment_to_model(assignment: TechnicianAssignment) -> TechnicianAssignmentModel:
    return TechnicianAssignmentModel(
        technician_id=assignment.technician.id,
        technician_name=assignment.technician.name,
        cluster_ids=[cluster.id for cluster in assignment.clusters],
        job_ids=[job.id for job in assignment.jobs],
        regions=list(assignment.regions),
        total_duration_minutes=assignment.total_duration_minutes,
    )


def optimization_result_to_response(result: OptimizationResult) -> OptimizationResponse:
    return OptimizationResponse(
        date=result.date,
        status=result.status,
        clusters=[_cluster_to_model(cluster) for cluster in result.clusters],
        assignment=AssignmentModel(
            assignments=[_assignment_to_model(item) for item in result.assignment.assignments],
            workloads=[_assignment_to_model(item) for item in result.assignment.workloads],
            balance_score=result.assignment.balance_score,
        ),
        routes={technician_id: route_to_model(route) for technician_id, route in result.routes.items()},
        unclusterable_job_ids=[job.id for job in result.unclusterable],
        invalid_records=[
            InvalidRecordModel(record_id=record.record_id, record_type=record.record_type, reason=record.reason)
            for record in result.invalid_records
        ],
        cancelled=result.cancelled,
        timed_out_technicians=list(result.timed_out_technicians),
        summary=RunSummaryModel(**asdict(result.summary)),
        metadata=result.metadata,
    )


def optimization_result_to_json(result: OptimizationResult) -> dict:
    return optimization_result_to_response(result).model_dump(mode="json")


def optimization_result_to_csv(result: OptimizationResult) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "technician_id",
        "sequence",
        "job_id",
        "job_name",
        "priority",
        "cluster_id",
        "arrival_time",
        "departure_time",
        "distance_from_prev_km",
        "travel_min",
        "total_distance_km",
        "total_time_minutes",
        "fuel_cost",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for technician_id, route in result.routes.items():
        for job, stop in zip(route.route, route.stops):
            writer.writerow(
                {
                    "technician_id": technician_id,
                    "sequence": stop.sequence,
                    "job_id": job.id,
                    "job_name": job.name,
                    "priority": job.priority.label,
                    "cluster_id": job.cluster_id,
                    "arrival_time": stop.arrival_time.isoformat(),
                    "departure_time": stop.departure_time.isoformat(),
                    "distance_from_prev_km": round(stop.distance_from_prev_km, 3),
                    "travel_min": round(stop.travel_min, 1),
                    "total_distance_km": round(route.total_distance_km, 3),
                    "total_time_minutes": round(route.total_time_minutes, 1),
                    "fuel_cost": round(route.fuel_cost, 2),
                }
            )
    return buffer.getvalue()


def run_summary_to_csv(result: OptimizationResult) -> str:
    """Single-row CSV of the run totals."""
    summary = asdict(result.summary)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=["date", *summary])
    writer.writeheader()
    row = {"date": result.date.isoformat()}
    for key, value in summary.items():
        row[key] = round(value, 2) if isinstance(value, float) else value
    writer.writerow(row)
    return buffer.getvalue()
