"""Visit-order optimization for a single technician's jobs.

A route is built in two phases:

1. Nearest neighbour from the technician's home base. Equal distances go to
   the higher priority job, then the lowest job id.
2. First-improvement 2-opt on the open path (home base fixed, no return leg).
   A segment is reversed whenever that shortens the path. Passes repeat until
   one finds nothing to improve or the move cap is hit.

Priority only breaks distance ties unless ``strict_priority`` is enabled, in
which case every High job is visited before any Medium job and every Medium
before any Low; both phases then work inside those tiers.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import numpy as np

from ...config import settings
from ...errors import InvalidConfiguration, InvalidInput
from ...models.domain import Coordinate, Job
from ..geospatial import distance_matrix_km, travel_time_minutes
from .models import OptimizedRoute, RouteStop

logger = logging.getLogger(__name__)

IMPROVEMENT_EPSILON_KM = 1e-9

_UNSET = object()


def tour_length(matrix: np.ndarray, tour: Sequence[int]) -> float:
    return float(sum(matrix[tour[k], tour[k + 1]] for k in range(len(tour) - 1)))


class RouteOptimizer:
    def __init__(
        self,
        *,
        average_speed_kmh: float | None = None,
        max_two_opt_iterations: int | None = None,
        time_budget_ms: Optional[int] = _UNSET,  # type: ignore[assignment]
        strict_priority: bool | None = None,
        fuel_cost_per_km: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh
        self.max_two_opt_iterations = (
            max_two_opt_iterations if max_two_opt_iterations is not None else settings.max_two_opt_iterations
        )
        self.time_budget_ms = settings.optimization_time_budget_ms if time_budget_ms is _UNSET else time_budget_ms
        self.strict_priority = settings.strict_priority if strict_priority is None else strict_priority
        self.fuel_cost_per_km = settings.fuel_cost_per_km if fuel_cost_per_km is None else fuel_cost_per_km
        self.clock = clock

        if self.average_speed_kmh <= 0:
            raise InvalidConfiguration(f"average_speed_kmh must be > 0 (got {self.average_speed_kmh})")
        if self.max_two_opt_iterations < 1:
            raise InvalidConfiguration(
                f"max_two_opt_iterations must be >= 1 (got {self.max_two_opt_iterations})"
            )
        if self.time_budget_ms is not None and self.time_budget_ms <= 0:
            raise InvalidConfiguration(f"optimization_time_budget_ms must be > 0 (got {self.time_budget_ms})")
        if not math.isfinite(self.fuel_cost_per_km) or self.fuel_cost_per_km < 0:
            raise InvalidConfiguration(f"fuel_cost_per_km must be >= 0 (got {self.fuel_cost_per_km})")

    def _check_inputs(self, home_base: Coordinate, jobs: Sequence[Job]) -> None:
        if home_base is None or not home_base.is_valid():
            raise InvalidInput(f"Home base {home_base!r} is not a valid coordinate.")
        seen: set[str] = set()
        for job in jobs:
            if job.coordinate is None or not job.coordinate.is_valid():
                raise InvalidInput(f"Job '{job.id}' has a missing or invalid coordinate.")
            if job.estimated_duration_minutes <= 0:
                raise InvalidInput(f"Job '{job.id}' has a non-positive estimated duration.")
            if job.id in seen:
                raise InvalidInput(f"Job '{job.id}' appears more than once.")
            seen.add(job.id)

    def _nearest_neighbour(self, matrix: np.ndarray, jobs: Sequence[Job]) -> list[int]:
        # node 0 is the home base, node i is jobs[i - 1]
        tour = [0]
        remaining = set(range(1, len(jobs) + 1))
        current = 0
        while remaining:
            candidates = remaining
            if self.strict_priority:
                top = max(jobs[node - 1].priority for node in remaining)
                candidates = {node for node in remaining if jobs[node - 1].priority == top}
            nxt = min(
                candidates,
                key=lambda node: (float(matrix[current, node]), -int(jobs[node - 1].priority), jobs[node - 1].id),
            )
            tour.append(nxt)
            remaining.remove(nxt)
            current = nxt
        return tour

    def _same_tier(self, jobs: Sequence[Job], tour: Sequence[int], i: int, j: int) -> bool:
        return not self.strict_priority or jobs[tour[i] - 1].priority == jobs[tour[j] - 1].priority

    def _two_opt(
        self,
        matrix: np.ndarray,
        tour: list[int],
        jobs: Sequence[Job],
        cancel_event: threading.Event | None,
    ) -> tuple[list[int], int, bool, bool]:
        """Returns (tour, moves, timed_out, cancelled)."""

        best = list(tour)
        last = len(best) - 1
        cap = min(max(1, len(jobs) ** 2), self.max_two_opt_iterations)
        deadline = None
        if self.time_budget_ms is not None:
            deadline = self.clock() + self.time_budget_ms / 1000.0

        moves = 0
        improved = True
        while improved:
            if cancel_event is not None and cancel_event.is_set():
                return best, moves, False, True
            improved = False
            for i in range(1, last):
                if deadline is not None and self.clock() > deadline:
                    return best, moves, True, False
                for j in range(i + 1, last + 1):
                    if not self._same_tier(jobs, best, i, j):
                        break
                    a, b, c = best[i - 1], best[i], best[j]
                    before = matrix[a, b]
                    after = matrix[a, c]
                    if j < last:
                        d = best[j + 1]
                        before += matrix[c, d]
                        after += matrix[b, d]
                    if after < before - IMPROVEMENT_EPSILON_KM:
                        best[i : j + 1] = best[i : j + 1][::-1]
                        moves += 1
                        improved = True
                        if moves >= cap:
                            logger.debug(f"2-opt stopped at the move cap ({cap})")
                            return best, moves, False, False
        return best, moves, False, False

    def _build_route(
        self,
        matrix: np.ndarray,
        tour: Sequence[int],
        jobs: Sequence[Job],
        start_time: datetime,
    ) -> OptimizedRoute:
        stops: list[RouteStop] = []
        clock = start_time
        total_distance = 0.0
        travel_total = 0.0
        service_total = 0.0
        for sequence, (prev, node) in enumerate(zip(tour, tour[1:]), start=1):
            job = jobs[node - 1]
            leg = float(matrix[prev, node])
            travel = travel_time_minutes(leg, self.average_speed_kmh)
            arrival = clock + timedelta(minutes=travel)
            departure = arrival + timedelta(minutes=job.estimated_duration_minutes)
            stops.append(
                RouteStop(
                    job_id=job.id,
                    sequence=sequence,
                    distance_from_prev_km=leg,
                    travel_min=travel,
                    arrival_time=arrival,
                    departure_time=departure,
                )
            )
            total_distance += leg
            travel_total += travel
            service_total += job.estimated_duration_minutes
            clock = departure

        total_time = travel_total + service_total
        return OptimizedRoute(
            route=[jobs[node - 1] for node in tour[1:]],
            total_distance_km=total_distance,
            total_time_minutes=total_time,
            estimated_completion_time=start_time + timedelta(minutes=total_time),
            start_time=start_time,
            travel_time_minutes=travel_total,
            service_time_minutes=service_total,
            stops=stops,
            fuel_cost=total_distance * self.fuel_cost_per_km,
        )

    def optimize(
        self,
        home_base: Coordinate,
        jobs: Sequence[Job],
        start_time: datetime,
        *,
        cancel_event: threading.Event | None = None,
    ) -> OptimizedRoute:
        if not jobs:
            return OptimizedRoute(
                route=[],
                total_distance_km=0.0,
                total_time_minutes=0.0,
                estimated_completion_time=start_time,
                start_time=start_time,
            )

        self._check_inputs(home_base, jobs)
        ordered = sorted(jobs, key=lambda job: job.id)
        matrix = distance_matrix_km([home_base, *(job.coordinate for job in ordered)])

        initial = self._nearest_neighbour(matrix, ordered)
        initial_distance = tour_length(matrix, initial)

        tour, moves, timed_out, cancelled = self._two_opt(matrix, initial, ordered, cancel_event)
        if timed_out:
            logger.warning(
                f"2-opt exceeded its {self.time_budget_ms} ms budget for {len(ordered)} jobs; "
                f"keeping the nearest-neighbour route"
            )
            tour = initial
            moves = 0
        elif cancelled:
            logger.info(f"Route optimization cancelled after {moves} 2-opt move(s); returning best route so far")

        route = self._build_route(matrix, tour, ordered, start_time)
        route.initial_distance_km = initial_distance
        route.two_opt_iterations = moves
        route.timed_out = timed_out
        route.cancelled = cancelled
        logger.debug(
            f"Optimized {len(ordered)} jobs: {initial_distance:.2f} km -> {route.total_distance_km:.2f} km "
            f"after {moves} 2-opt move(s)"
        )
        return route
