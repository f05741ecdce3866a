"""
Result mapper for optimizer solutions.

Turns ordered stop indices per vehicle into planned routes: contiguous
sequences from 1, travel legs from the matrix, and planned start/end times
obtained by walking each route through the time window resolver from the
driver's availability start. Every candidate that does not end up on a route
is reported as unassigned with a reason.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.input_builder import (
    ExcludedLocation,
    PlanningDriver,
    PlanningProblem,
)
from transport_planner.services.planning_engine.optimizer import OptimizerSolution
from transport_planner.services.planning_engine.time_windows import TimeWindow, try_schedule

UNASSIGNED_NOT_SCHEDULED = "not_scheduled"
UNASSIGNED_NO_SOLUTION = "no_solution"
UNASSIGNED_SCHEDULE_INFEASIBLE = "schedule_infeasible"


def minute_to_datetime(plan_date: date, minute: int) -> datetime:
    return datetime.combine(plan_date, time.min) + timedelta(minutes=minute)


@dataclass(frozen=True)
class PlannedStop:
    sequence: int
    location_id: int
    latitude: float
    longitude: float
    service_minutes: int
    travel_km_from_prev: float
    travel_minutes_from_prev: int
    wait_minutes: int
    start_minute: int
    end_minute: int
    planned_start: datetime
    planned_end: datetime


@dataclass(frozen=True)
class PlannedRoute:
    driver: PlanningDriver
    service_type_id: Optional[int]
    stops: Tuple[PlannedStop, ...]
    total_km: float
    total_travel_minutes: int
    total_service_minutes: int
    total_wait_minutes: int

    @property
    def total_minutes(self) -> int:
        return max(0, self.total_travel_minutes + self.total_service_minutes)


@dataclass(frozen=True)
class MappedResult:
    routes: Tuple[PlannedRoute, ...]
    unassigned: Tuple[ExcludedLocation, ...]

    @property
    def unassigned_location_ids(self) -> List[int]:
        return [u.location_id for u in self.unassigned]


class ResultMapper:
    """Maps optimizer output back onto the planning problem."""

    def map(self, problem: PlanningProblem, solution: Optional[OptimizerSolution]) -> MappedResult:
        """
        Map a solution (or the lack of one) to planned routes.

        Args:
            problem: The problem the optimizer solved
            solution: Optimizer output, None when no solution was found

        Returns:
            MappedResult; builder exclusions are always part of `unassigned`
        """
        unassigned: List[ExcludedLocation] = list(problem.excluded_locations)

        if solution is None:
            unassigned.extend(ExcludedLocation(s.location_id, UNASSIGNED_NO_SOLUTION) for s in problem.stops)
            logger.info(f"No solution to map: {len(unassigned)} locations unassigned")
            return MappedResult((), tuple(unassigned))

        unassigned.extend(
            ExcludedLocation(problem.stops[k].location_id, UNASSIGNED_NOT_SCHEDULED)
            for k in solution.unassigned_stop_indices
        )

        routes = []
        for optimizer_route in solution.routes:
            driver = problem.drivers[optimizer_route.vehicle_id]
            route, dropped = self._walk_route(problem, driver, optimizer_route.stop_indices)
            unassigned.extend(dropped)
            if route is not None:
                routes.append(route)

        logger.info(
            f"Mapped {len(routes)} routes with {sum(len(r.stops) for r in routes)} stops, "
            f"{len(unassigned)} locations unassigned"
        )
        return MappedResult(tuple(routes), tuple(unassigned))

    def _walk_route(
        self,
        problem: PlanningProblem,
        driver: PlanningDriver,
        stop_indices: Tuple[int, ...]
    ) -> Tuple[Optional[PlannedRoute], List[ExcludedLocation]]:
        matrix = problem.matrix
        dropped: List[ExcludedLocation] = []
        planned: List[PlannedStop] = []

        current_minute = driver.available_start_minute
        previous_point = driver.point_index
        total_km = 0.0
        total_travel = 0
        total_service = 0
        total_wait = 0
        service_type_id = None

        for stop_index in stop_indices:
            stop = problem.stops[stop_index]
            travel_minutes = matrix.travel_minutes[previous_point][stop.point_index]
            travel_km = matrix.distance_km[previous_point][stop.point_index]
            arrival = current_minute + travel_minutes

            result = try_schedule(TimeWindow(stop.windows), arrival, stop.service_minutes)
            if not result.feasible:
                logger.warning(
                    f"Stop {stop.location_id} on driver {driver.driver_id}'s route cannot be served "
                    f"when arriving at minute {arrival}; reported as unassigned"
                )
                dropped.append(ExcludedLocation(stop.location_id, UNASSIGNED_SCHEDULE_INFEASIBLE))
                continue

            if service_type_id is None:
                service_type_id = stop.service_type_id

            planned.append(PlannedStop(
                sequence=len(planned) + 1,
                location_id=stop.location_id,
                latitude=stop.latitude,
                longitude=stop.longitude,
                service_minutes=stop.service_minutes,
                travel_km_from_prev=travel_km,
                travel_minutes_from_prev=travel_minutes,
                wait_minutes=result.wait_minutes,
                start_minute=result.start_minute,
                end_minute=result.end_minute,
                planned_start=minute_to_datetime(problem.plan_date, result.start_minute),
                planned_end=minute_to_datetime(problem.plan_date, result.end_minute)
            ))

            total_km += travel_km
            total_travel += travel_minutes
            total_service += stop.service_minutes
            total_wait += result.wait_minutes
            current_minute = result.end_minute
            previous_point = stop.point_index

        if not planned:
            return None, dropped

        # Return leg to the start point
        total_km += matrix.distance_km[previous_point][driver.point_index]
        total_travel += matrix.travel_minutes[previous_point][driver.point_index]

        return PlannedRoute(
            driver=driver,
            service_type_id=service_type_id,
            stops=tuple(planned),
            total_km=total_km,
            total_travel_minutes=total_travel,
            total_service_minutes=total_service,
            total_wait_minutes=total_wait
        ), dropped
