import functools
import itertools
import json
import threading
import time
from datetime import date, datetime
from pathlib import Path

import pytest

from fieldroute.errors import InvalidConfiguration, InvalidInput, NoAvailableTechnicians, OptimizationCancelled
from fieldroute.persistence.filesystem import FileStorage
from fieldroute.persistence.route_store import InMemoryRoutePlanStore
from fieldroute.schemas.optimization import OptimizationRequest
from fieldroute.services.routing import service as routing_service
from fieldroute.services.routing.optimizer import RouteOptimizer
from fieldroute.services.routing.service import (
    OptimizationConfig,
    RouteOptimizationService,
    optimize_routes,
    summarize_routes,
)

RUN_DATE = date(2025, 3, 4)


def _job(job_id: str, lat: float | None, lon: float | None, minutes: int = 60, priority: str = "Medium") -> dict:
    return {
        "id": job_id,
        "name": f"Job {job_id}",
        "priority": priority,
        "estimated_duration_minutes": minutes,
        "latitude": lat,
        "longitude": lon,
        "customer_id": f"C-{job_id}",
    }


def _technician(tech_id: str, lat: float | None, lon: float | None, regions: str = "") -> dict:
    return {
        "id": tech_id,
        "name": f"Tech {tech_id}",
        "home_latitude": lat,
        "home_longitude": lon,
        "specialized_regions": regions,
    }


def _jobs() -> list[dict]:
    return [
        _job("b1", 18.398, -66.160, priority="High"),
        _job("b2", 18.400, -66.162),
        _job("b3", 18.399, -66.158, priority="Low"),
        _job("p1", 18.011, -66.614),
        _job("p2", 18.013, -66.612, minutes=90),
        _job("p3", 18.010, -66.616),
    ]


def _technicians() -> list[dict]:
    return [
        _technician("tech-a", 18.3989, -66.1614, "Bayamon"),
        _technician("tech-b", 18.0113, -66.6140, "Ponce"),
        _technician("tech-c", 18.4655, -66.1057),
    ]


def _request(**overrides) -> OptimizationRequest:
    data = {
        "date": RUN_DATE,
        "jobs": _jobs(),
        "technicians": _technicians(),
        "excluded_technician_ids": ["tech-c"],
        "cluster_count": 2,
        "optimization_time_budget_ms": None,
    }
    data.update(overrides)
    return OptimizationRequest(**data)


def test_run_sends_each_region_to_its_specialist():
    result = RouteOptimizationService().run(_request())

    assert result.status == "completed"
    assert list(result.routes) == ["tech-a", "tech-b"]
    assert sorted(job.id for job in result.assignment.jobs_for("tech-a")) == ["b1", "b2", "b3"]
    assert sorted(job.id for job in result.assignment.jobs_for("tech-b")) == ["p1", "p2", "p3"]
    assert sorted(result.routes["tech-a"].job_ids) == ["b1", "b2", "b3"]
    assert sorted(result.routes["tech-b"].job_ids) == ["p1", "p2", "p3"]


def test_every_valid_job_is_clustered_assigned_and_routed_once():
    result = RouteOptimizationService().run(_request())

    clustered = sorted(job.id for cluster in result.clusters for job in cluster.jobs)
    assigned = sorted(job.id for item in result.assignment.assignments for job in item.jobs)
    routed = sorted(job_id for route in result.routes.values() for job_id in route.job_ids)

    expected = sorted(job["id"] for job in _jobs())
    assert clustered == expected
    assert assigned == expected
    assert routed == expected


def test_routes_start_at_eight_by_default():
    result = RouteOptimizationService().run(_request())

    route = result.routes["tech-a"]
    assert route.start_time == datetime(2025, 3, 4, 8, 0)
    assert route.estimated_completion_time > route.start_time


def test_explicit_start_time_is_used():
    start = datetime(2025, 3, 4, 9, 30)
    result = RouteOptimizationService().run(_request(start_time=start))

    assert all(route.start_time == start for route in result.routes.values())


def test_invalid_records_are_reported_and_left_out():
    jobs = _jobs() + [
        _job("nowhere", None, None),
        _job("zero", 18.39, -66.15, minutes=0),
        _job("b1", 18.2, -66.0),
    ]
    technicians = _technicians() + [_technician("tech-x", None, None)]

    result = RouteOptimizationService().run(_request(jobs=jobs, technicians=technicians))

    invalid = {(record.record_id, record.record_type) for record in result.invalid_records}
    assert invalid == {("nowhere", "job"), ("zero", "job"), ("b1", "job"), ("tech-x", "technician")}
    assert [job.id for job in result.unclusterable] == ["nowhere"]
    routed = [job_id for route in result.routes.values() for job_id in route.job_ids]
    assert "zero" not in routed
    assert routed.count("b1") == 1
    assert "tech-x" not in result.routes


def test_idle_technician_gets_an_empty_route():
    result = RouteOptimizationService().run(_request(excluded_technician_ids=[]))

    assert list(result.routes) == ["tech-a", "tech-b", "tech-c"]
    idle = result.routes["tech-c"]
    assert idle.route == []
    assert idle.total_distance_km == 0.0
    assert idle.estimated_completion_time == idle.start_time
    assert result.assignment.balance_score < 100.0
    assert result.metadata["technicians_available"] == 3


def test_metadata_describes_the_run():
    result = RouteOptimizationService().run(_request(run_label="tuesday"))

    metadata = result.metadata
    assert metadata["requested_clusters"] == 2
    assert metadata["effective_clusters"] == 2
    assert metadata["jobs_received"] == 6
    assert metadata["jobs_clustered"] == 6
    assert metadata["run_label"] == "tuesday"
    overlays = metadata["map_overlays"]["clusters"]
    assert {overlay["region_label"] for overlay in overlays} == {"Bayamon", "Ponce"}
    assert all(overlay["source"] == "convex_hull" for overlay in overlays)
    assert all(overlay["within_region"] for overlay in overlays)


def test_same_request_gives_identical_response():
    first = optimize_routes(_request()).model_dump_json()
    second = optimize_routes(_request()).model_dump_json()

    assert first == second


def test_response_shape():
    response = optimize_routes(_request())

    assert response.status == "completed"
    assert response.date == RUN_DATE
    assert len(response.clusters) == 2
    assert all(cluster.within_region for cluster in response.clusters)
    assert {item.technician_id for item in response.assignment.assignments} == {"tech-a", "tech-b"}
    route = response.routes["tech-b"]
    assert [stop.job_id for stop in route.stops] == [job.id for job in route.jobs]
    assert all(job.assigned_technician_id == "tech-b" for job in route.jobs)


def test_no_available_technicians():
    with pytest.raises(NoAvailableTechnicians):
        RouteOptimizationService().run(_request(excluded_technician_ids=["tech-a", "tech-b", "tech-c"]))


@pytest.mark.parametrize(
    "overrides",
    [
        {"cluster_count": 0},
        {"average_speed_kmh": -1.0},
        {"max_two_opt_iterations": 0},
        {"optimization_time_budget_ms": 0},
        {"concurrency_limit": 0},
    ],
)
def test_invalid_configuration_is_rejected_before_work(overrides):
    with pytest.raises(InvalidConfiguration):
        RouteOptimizationService().run(_request(**overrides))


def test_cancelled_before_start():
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OptimizationCancelled):
        RouteOptimizationService().run(_request(), cancel_event=cancel)


def test_timed_out_routes_mark_the_run_best_effort(monkeypatch):
    ticks = itertools.count(step=10.0)
    monkeypatch.setattr(
        routing_service,
        "RouteOptimizer",
        functools.partial(RouteOptimizer, clock=lambda: next(ticks)),
    )

    result = RouteOptimizationService().run(_request(optimization_time_budget_ms=1))

    assert result.status == "completed_best_effort"
    assert result.timed_out_technicians == ["tech-a", "tech-b"]
    assert sorted(result.routes["tech-a"].job_ids) == ["b1", "b2", "b3"]


def test_persist_writes_summary_and_csv(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(routing_service, "FileStorage", lambda: FileStorage(root=tmp_path))

    result = RouteOptimizationService().run(_request(persist=True))

    output_dir = Path(result.metadata["output_dir"])
    assert output_dir.parent == tmp_path / "outputs"
    assert output_dir.name.startswith("plan_2025-03-04_")

    summary = json.loads((output_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["status"] == "completed"
    assert sorted(summary["routes"]) == ["tech-a", "tech-b"]

    lines = (output_dir / "routes.csv").read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("technician_id,sequence,job_id")
    assert len(lines) == 7

    summary_rows = (output_dir / "summary.csv").read_text(encoding="utf-8").splitlines()
    assert summary_rows[0].startswith("date,total_technicians,total_jobs")
    assert summary_rows[1].startswith("2025-03-04,2,6,")


def test_save_route_snapshots_one_technician():
    service = RouteOptimizationService()
    result = service.run(_request())
    store = InMemoryRoutePlanStore()

    saved = service.save_route(result, "tech-a", store, name="Bayamon run")

    loaded = store.load(saved.id)
    assert loaded.route_name == "Bayamon run"
    assert loaded.route.job_ids == result.routes["tech-a"].job_ids
    with pytest.raises(InvalidInput):
        service.save_route(result, "tech-z", store)


def test_config_overrides_skip_unset_values():
    config = OptimizationConfig.from_settings(cluster_count=3, average_speed_kmh=None)

    assert config.cluster_count == 3
    assert config.average_speed_kmh == OptimizationConfig.from_settings().average_speed_kmh


def test_summary_totals_match_the_routes():
    result = RouteOptimizationService().run(_request(excluded_technician_ids=[], fuel_cost_per_km=1.5))

    summary = result.summary
    routes = list(result.routes.values())
    assert summary.total_technicians == 3
    assert summary.total_jobs == 6
    assert summary.total_distance_km == pytest.approx(sum(route.total_distance_km for route in routes))
    assert summary.total_time_minutes == pytest.approx(sum(route.total_time_minutes for route in routes))
    assert summary.total_fuel_cost == pytest.approx(summary.total_distance_km * 1.5)
    assert summary.average_jobs_per_technician == pytest.approx(2.0)
    assert summary.average_distance_per_technician == pytest.approx(summary.total_distance_km / 3)
    assert result.routes["tech-c"].fuel_cost == 0.0
    assert result.metadata["fuel_cost_per_km"] == 1.5


def test_summary_of_no_routes_is_zero():
    summary = summarize_routes({})

    assert summary.total_technicians == 0
    assert summary.average_jobs_per_technician == 0.0


def test_response_carries_summary_and_route_fuel_cost():
    response = optimize_routes(_request())

    assert response.summary.total_jobs == 6
    assert response.summary.total_fuel_cost == pytest.approx(
        sum(route.fuel_cost for route in response.routes.values())
    )
    route = response.routes["tech-a"]
    assert route.fuel_cost == pytest.approx(route.total_distance_km * 0.35)


def test_fuel_cost_rate_must_not_be_negative():
    with pytest.raises(InvalidConfiguration):
        RouteOptimizationService().run(_request(fuel_cost_per_km=-1.0))


def test_signal_after_every_route_finished_keeps_the_run_complete():
    class LateSignalService(RouteOptimizationService):
        def _optimize_routes(self, *args):
            routes = super()._optimize_routes(*args)
            args[-1].set()
            return routes

    cancel = threading.Event()
    result = LateSignalService().run(_request(), cancel_event=cancel)

    assert cancel.is_set()
    assert result.cancelled is False
    assert result.status == "completed"


def test_cancel_during_the_run_still_returns_every_route(monkeypatch):
    class CancellingOptimizer(RouteOptimizer):
        def optimize(self, home_base, jobs, start_time, *, cancel_event=None):
            cancel_event.set()
            return super().optimize(home_base, jobs, start_time, cancel_event=cancel_event)

    monkeypatch.setattr(routing_service, "RouteOptimizer", CancellingOptimizer)

    result = RouteOptimizationService().run(_request(concurrency_limit=1), cancel_event=threading.Event())

    assert result.cancelled is True
    assert result.status == "completed_best_effort"
    assert list(result.routes) == ["tech-a", "tech-b"]
    for technician_id in ("tech-a", "tech-b"):
        assigned = sorted(job.id for job in result.assignment.jobs_for(technician_id))
        assert sorted(result.routes[technician_id].job_ids) == assigned


def test_concurrency_limit_of_one_runs_routes_one_at_a_time(monkeypatch):
    lock = threading.Lock()
    counts = {"running": 0, "peak": 0}

    class TrackingOptimizer(RouteOptimizer):
        def optimize(self, *args, **kwargs):
            with lock:
                counts["running"] += 1
                counts["peak"] = max(counts["peak"], counts["running"])
            try:
                time.sleep(0.02)
                return super().optimize(*args, **kwargs)
            finally:
                with lock:
                    counts["running"] -= 1

    monkeypatch.setattr(routing_service, "RouteOptimizer", TrackingOptimizer)

    result = RouteOptimizationService().run(_request(excluded_technician_ids=[], concurrency_limit=1))

    assert counts["peak"] == 1
    assert list(result.routes) == ["tech-a", "tech-b", "tech-c"]
