"""Optimization request/response schemas."""

from __future__ import annotations

from datetime import date as Date
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.domain import JobPriority


class CoordinateModel(BaseModel):
    latitude: float
    longitude: float


class JobModel(BaseModel):
    id: str
    name: str = ""
    priority: str = Field(default="Medium", description="Low, Medium or High.")
    estimated_duration_minutes: int = Field(default=60, description="Service time on site.")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    customer_id: str = ""
    assigned_technician_id: Optional[str] = None
    cluster_id: Optional[int] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: object) -> str:
        return JobPriority.parse(value).label  # type: ignore[arg-type]


class TechnicianModel(BaseModel):
    id: str
    name: str = ""
    home_latitude: Optional[float] = None
    home_longitude: Optional[float] = None
    specialized_regions: List[str] = Field(default_factory=list)
    excluded: bool = Field(default=False, description="Off for this run.")

    @field_validator("specialized_regions", mode="before")
    @classmethod
    def _split_regions(cls, value: object) -> object:
        # upstream user records keep specializations as "Bayamon, Guaynabo"
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class OptimizationRequest(BaseModel):
    date: Date
    jobs: List[JobModel] = Field(default_factory=list)
    technicians: List[TechnicianModel] = Field(default_factory=list)
    excluded_technician_ids: List[str] = Field(default_factory=list)
    cluster_count: Optional[int] = Field(default=None, description="Defaults to the configured cluster count.")
    start_time: Optional[datetime] = Field(
        default=None,
        description="When routes begin. Defaults to 08:00 on the requested date.",
    )
    average_speed_kmh: Optional[float] = None
    max_two_opt_iterations: Optional[int] = None
    optimization_time_budget_ms: Optional[int] = None
    concurrency_limit: Optional[int] = None
    strict_priority: Optional[bool] = None
    fuel_cost_per_km: Optional[float] = None
    persist: bool = Field(default=False, description="Write summary.json and routes.csv for the run.")
    run_label: Optional[str] = None

    def resolved_start_time(self) -> datetime:
        if self.start_time is not None:
            return self.start_time
        return datetime(self.date.year, self.date.month, self.date.day, 8, 0)


class ClusterModel(BaseModel):
    id: int
    centroid: CoordinateModel
    region_label: str
    within_region: bool = True
    job_ids: List[str]
    job_count: int
    total_duration_minutes: int
    average_priority: str


class TechnicianAssignmentModel(BaseModel):
    technician_id: str
    technician_name: str
    cluster_ids: List[int]
    job_ids: List[str]
    regions: List[str]
    total_duration_minutes: int


class AssignmentModel(BaseModel):
    assignments: List[TechnicianAssignmentModel]
    workloads: List[TechnicianAssignmentModel]
    balance_score: float


class RouteStopModel(BaseModel):
    job_id: str
    sequence: int
    distance_from_prev_km: float
    travel_min: float
    arrival_time: datetime
    departure_time: datetime


class OptimizedRouteModel(BaseModel):
    jobs: List[JobModel]
    stops: List[RouteStopModel]
    total_distance_km: float
    total_time_minutes: float
    travel_time_minutes: float
    service_time_minutes: float
    start_time: datetime
    estimated_completion_time: datetime
    initial_distance_km: float = 0.0
    two_opt_iterations: int = 0
    timed_out: bool = False
    cancelled: bool = False
    fuel_cost: float = 0.0


class RunSummaryModel(BaseModel):
    total_technicians: int = 0
    total_jobs: int = 0
    total_distance_km: float = 0.0
    total_time_minutes: float = 0.0
    total_fuel_cost: float = 0.0
    average_jobs_per_technician: float = 0.0
    average_distance_per_technician: float = 0.0


class InvalidRecordModel(BaseModel):
    record_id: str
    record_type: str
    reason: str


class OptimizationResponse(BaseModel):
    date: Date
    status: str
    clusters: List[ClusterModel]
    assignment: AssignmentModel
    routes: Dict[str, OptimizedRouteModel]
    unclusterable_job_ids: List[str]
    invalid_records: List[InvalidRecordModel]
    cancelled: bool = False
    timed_out_technicians: List[str] = Field(default_factory=list)
    summary: RunSummaryModel = Field(default_factory=RunSummaryModel)
    metadata: dict = Field(default_factory=dict)
