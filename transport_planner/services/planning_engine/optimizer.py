"""
Route optimizer contract and the OR-Tools implementation.

The planning core only depends on RouteOptimizer: it hands over vehicles,
stops with their feasible windows, an integer cost matrix and tuning, and
gets back ordered stop indices per vehicle. OrToolsRouteOptimizer configures
Google OR-Tools routing for that contract.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from transport_planner.core.config import settings
from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.cost_model import OVERTIME_ALLOWANCE_MINUTES, CostModel
from transport_planner.services.planning_engine.input_builder import PlanningProblem
from transport_planner.services.planning_engine.time_windows import MINUTES_PER_DAY, TimeRange

TIME_DIMENSION = "Time"
STOP_COUNT_DIMENSION = "StopCount"
MAX_WAIT_MINUTES = MINUTES_PER_DAY
DROP_PENALTY = 10_000_000


@dataclass(frozen=True)
class OptimizerTuning:
    time_limit_seconds: int = settings.SOLVER_TIME_LIMIT_SECONDS
    solution_limit: int = settings.SOLVER_SOLUTION_LIMIT
    first_solution_strategy: str = settings.SOLVER_FIRST_SOLUTION_STRATEGY
    local_search_metaheuristic: str = settings.SOLVER_LOCAL_SEARCH_METAHEURISTIC


@dataclass(frozen=True)
class OptimizerVehicle:
    vehicle_id: int
    start_point_index: int
    start_minute: int
    end_minute: int
    max_duration_minutes: int

    @property
    def hard_end_minute(self) -> int:
        return min(self.end_minute, self.start_minute + self.max_duration_minutes)


@dataclass(frozen=True)
class OptimizerStop:
    stop_index: int
    point_index: int
    service_minutes: int
    feasible_windows: Tuple[TimeRange, ...]
    due_urgency: float
    # None = any vehicle
    allowed_vehicle_ids: Optional[Tuple[int, ...]] = None
    drop_penalty: int = DROP_PENALTY


@dataclass(frozen=True)
class OptimizerProblem:
    vehicles: Tuple[OptimizerVehicle, ...]
    stops: Tuple[OptimizerStop, ...]
    cost_matrix: Sequence[Sequence[int]]
    travel_minutes: Sequence[Sequence[int]]
    tuning: OptimizerTuning = field(default_factory=OptimizerTuning)
    max_stops_per_vehicle: Optional[int] = None
    overtime_penalty_per_minute: int = 0
    overtime_allowance_minutes: int = OVERTIME_ALLOWANCE_MINUTES
    wait_cost_per_minute: int = 0


@dataclass(frozen=True)
class OptimizerRoute:
    vehicle_id: int
    stop_indices: Tuple[int, ...]


@dataclass(frozen=True)
class OptimizerSolution:
    routes: Tuple[OptimizerRoute, ...]
    unassigned_stop_indices: Tuple[int, ...]
    objective_value: int = 0


class RouteOptimizer(Protocol):
    """Any engine that orders stops per vehicle. Returns None when it finds no solution within its time limit."""

    def solve(self, problem: OptimizerProblem) -> Optional[OptimizerSolution]:
        ...


def build_optimizer_problem(
    problem: PlanningProblem,
    cost_model: CostModel,
    tuning: Optional[OptimizerTuning] = None
) -> OptimizerProblem:
    """
    Translate a planning problem into the optimizer contract.

    Vehicle i is problem.drivers[i]; stop k is problem.stops[k].
    """
    vehicles = tuple(
        OptimizerVehicle(
            vehicle_id=i,
            start_point_index=driver.point_index,
            start_minute=driver.available_start_minute,
            end_minute=driver.available_end_minute,
            max_duration_minutes=driver.max_route_minutes
        )
        for i, driver in enumerate(problem.drivers)
    )

    stops = []
    for k, stop in enumerate(problem.stops):
        allowed = None
        if problem.require_service_type_match:
            allowed = tuple(i for i, d in enumerate(problem.drivers) if problem.driver_can_serve(d, stop))
        stops.append(OptimizerStop(
            stop_index=k,
            point_index=stop.point_index,
            service_minutes=stop.service_minutes,
            feasible_windows=stop.windows,
            due_urgency=stop.due_urgency,
            allowed_vehicle_ids=allowed
        ))

    return OptimizerProblem(
        vehicles=vehicles,
        stops=tuple(stops),
        cost_matrix=cost_model.cost_matrix(),
        travel_minutes=problem.matrix.travel_minutes,
        tuning=tuning or OptimizerTuning(),
        max_stops_per_vehicle=problem.max_stops_per_driver,
        overtime_penalty_per_minute=cost_model.overtime_penalty_per_minute(),
        wait_cost_per_minute=cost_model.wait_cost_per_minute()
    )


def _enum_value(enum_type, name: Optional[str], default: str) -> int:
    value = getattr(enum_type, (name or "").upper(), None)
    if not isinstance(value, int):
        logger.warning(f"Unknown OR-Tools strategy '{name}', using {default}")
        return getattr(enum_type, default)
    return value


class OrToolsRouteOptimizer:
    """Google OR-Tools routing behind the RouteOptimizer contract."""

    def solve(self, problem: OptimizerProblem) -> Optional[OptimizerSolution]:
        """
        Solve the routing problem.

        Every vehicle starts and ends at its own start point. Each feasible
        window of a stop becomes its own node; a disjunction across those
        nodes lets the solver visit at most one of them or drop the stop for
        its penalty.

        Args:
            problem: Optimizer problem

        Returns:
            OptimizerSolution if a solution was found within the time limit, None otherwise
        """
        if not problem.vehicles:
            return OptimizerSolution((), tuple(s.stop_index for s in problem.stops))

        # Nodes: one per vehicle start, then one per (stop, window)
        node_points: List[int] = [v.start_point_index for v in problem.vehicles]
        node_service: List[int] = [0] * len(problem.vehicles)
        node_window: List[Optional[TimeRange]] = [None] * len(problem.vehicles)
        node_stop: List[Optional[int]] = [None] * len(problem.vehicles)
        stop_nodes: Dict[int, List[int]] = {}
        never_assignable: List[int] = []

        for stop in problem.stops:
            if stop.allowed_vehicle_ids is not None and not stop.allowed_vehicle_ids:
                never_assignable.append(stop.stop_index)
                continue
            for window in stop.feasible_windows:
                stop_nodes.setdefault(stop.stop_index, []).append(len(node_points))
                node_points.append(stop.point_index)
                node_service.append(stop.service_minutes)
                node_window.append(window)
                node_stop.append(stop.stop_index)

        num_vehicles = len(problem.vehicles)
        starts = list(range(num_vehicles))
        manager = pywrapcp.RoutingIndexManager(len(node_points), num_vehicles, starts, starts)
        routing = pywrapcp.RoutingModel(manager)

        logger.info(
            f"OR-Tools model: {len(node_points)} nodes, {num_vehicles} vehicles, "
            f"{len(stop_nodes)} stops"
        )

        def cost_callback(from_index: int, to_index: int) -> int:
            from_point = node_points[manager.IndexToNode(from_index)]
            to_point = node_points[manager.IndexToNode(to_index)]
            return int(problem.cost_matrix[from_point][to_point])

        def time_callback(from_index: int, to_index: int) -> int:
            from_node = manager.IndexToNode(from_index)
            to_node = manager.IndexToNode(to_index)
            travel = problem.travel_minutes[node_points[from_node]][node_points[to_node]]
            return int(travel + node_service[from_node])

        cost_index = routing.RegisterTransitCallback(cost_callback)
        routing.SetArcCostEvaluatorOfAllVehicles(cost_index)

        time_index = routing.RegisterTransitCallback(time_callback)
        horizon = MINUTES_PER_DAY + problem.overtime_allowance_minutes
        routing.AddDimension(time_index, MAX_WAIT_MINUTES, horizon, False, TIME_DIMENSION)
        time_dimension = routing.GetDimensionOrDie(TIME_DIMENSION)

        if problem.wait_cost_per_minute > 0:
            time_dimension.SetSlackCostCoefficientForAllVehicles(problem.wait_cost_per_minute)

        self._add_vehicle_windows(routing, time_dimension, problem)
        self._add_stop_windows(manager, time_dimension, node_window, node_service)

        if problem.max_stops_per_vehicle is not None and problem.max_stops_per_vehicle > 0:
            self._add_stop_limit(routing, manager, node_stop, num_vehicles, problem.max_stops_per_vehicle)

        stops_by_index = {s.stop_index: s for s in problem.stops}
        for stop_index, nodes in stop_nodes.items():
            stop = stops_by_index[stop_index]
            indices = [manager.NodeToIndex(n) for n in nodes]
            if stop.allowed_vehicle_ids is not None:
                for index in indices:
                    routing.SetAllowedVehiclesForIndex(list(stop.allowed_vehicle_ids), index)
            routing.AddDisjunction(indices, stop.drop_penalty)

        for vehicle_id in range(num_vehicles):
            routing.AddVariableMinimizedByFinalizer(time_dimension.CumulVar(routing.End(vehicle_id)))
        for node in range(num_vehicles, len(node_points)):
            routing.AddVariableMinimizedByFinalizer(time_dimension.CumulVar(manager.NodeToIndex(node)))

        logger.info(f"Running OR-Tools solver (time limit: {problem.tuning.time_limit_seconds}s)")
        solution = routing.SolveWithParameters(self._search_parameters(problem.tuning))

        if not solution:
            logger.warning("OR-Tools found no solution")
            return None

        return self._extract(routing, manager, solution, node_stop, problem, never_assignable)

    def _add_vehicle_windows(self, routing, time_dimension, problem: OptimizerProblem) -> None:
        for vehicle in problem.vehicles:
            start_index = routing.Start(vehicle.vehicle_id)
            end_index = routing.End(vehicle.vehicle_id)
            time_dimension.CumulVar(start_index).SetRange(vehicle.start_minute, vehicle.start_minute)

            hard_max = vehicle.hard_end_minute
            if problem.overtime_penalty_per_minute > 0:
                time_dimension.CumulVar(end_index).SetMax(hard_max + problem.overtime_allowance_minutes)
                time_dimension.SetCumulVarSoftUpperBound(end_index, hard_max, problem.overtime_penalty_per_minute)
            else:
                time_dimension.CumulVar(end_index).SetMax(hard_max)

            logger.debug(
                f"Vehicle {vehicle.vehicle_id}: start={vehicle.start_minute}, hard_end={hard_max}, "
                f"overtime_penalty={problem.overtime_penalty_per_minute}"
            )

    def _add_stop_windows(self, manager, time_dimension, node_window, node_service) -> None:
        for node, window in enumerate(node_window):
            if window is None:
                continue
            latest_start = window.close_minute - node_service[node]
            time_dimension.CumulVar(manager.NodeToIndex(node)).SetRange(window.open_minute, latest_start)

    def _add_stop_limit(self, routing, manager, node_stop, num_vehicles: int, max_stops: int) -> None:
        def demand_callback(from_index: int) -> int:
            return 0 if node_stop[manager.IndexToNode(from_index)] is None else 1

        demand_index = routing.RegisterUnaryTransitCallback(demand_callback)
        routing.AddDimensionWithVehicleCapacity(
            demand_index,
            0,
            [max_stops] * num_vehicles,
            True,
            STOP_COUNT_DIMENSION
        )
        logger.info(f"Stop limit: {max_stops} per vehicle")

    def _search_parameters(self, tuning: OptimizerTuning):
        search_parameters = pywrapcp.DefaultRoutingSearchParameters()
        search_parameters.first_solution_strategy = _enum_value(
            routing_enums_pb2.FirstSolutionStrategy, tuning.first_solution_strategy, "PATH_CHEAPEST_ARC"
        )
        search_parameters.local_search_metaheuristic = _enum_value(
            routing_enums_pb2.LocalSearchMetaheuristic, tuning.local_search_metaheuristic, "GUIDED_LOCAL_SEARCH"
        )
        search_parameters.time_limit.seconds = max(1, tuning.time_limit_seconds)
        search_parameters.solution_limit = max(1, tuning.solution_limit)
        search_parameters.log_search = False
        return search_parameters

    def _extract(self, routing, manager, solution, node_stop, problem: OptimizerProblem, never_assignable) -> OptimizerSolution:
        routes = []
        assigned = set()

        for vehicle in problem.vehicles:
            ordered = []
            index = solution.Value(routing.NextVar(routing.Start(vehicle.vehicle_id)))
            while not routing.IsEnd(index):
                stop_index = node_stop[manager.IndexToNode(index)]
                if stop_index is not None:
                    ordered.append(stop_index)
                    assigned.add(stop_index)
                index = solution.Value(routing.NextVar(index))
            if ordered:
                routes.append(OptimizerRoute(vehicle.vehicle_id, tuple(ordered)))

        unassigned = tuple(s.stop_index for s in problem.stops if s.stop_index not in assigned)
        if unassigned:
            logger.warning(
                f"Unassigned stops: {list(unassigned)} "
                f"({len(never_assignable)} had no capable vehicle)"
            )

        logger.info(
            f"Solution extracted: {len(routes)} routes, {len(unassigned)} unassigned, "
            f"objective={solution.ObjectiveValue()}"
        )
        return OptimizerSolution(tuple(routes), unassigned, solution.ObjectiveValue())
