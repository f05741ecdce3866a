import datetime

from transport_planner.services.planning_engine.input_builder import (
    ExcludedLocation,
    PlanningDriver,
    PlanningProblem,
    PlanningStop,
)
from transport_planner.services.planning_engine.matrix_provider import MatrixResult
from transport_planner.services.planning_engine.optimizer import OptimizerRoute, OptimizerSolution
from transport_planner.services.planning_engine.result_mapper import (
    UNASSIGNED_NO_SOLUTION,
    UNASSIGNED_NOT_SCHEDULED,
    UNASSIGNED_SCHEDULE_INFEASIBLE,
    ResultMapper,
)
from transport_planner.services.planning_engine.routing_client import MatrixPoint
from transport_planner.services.planning_engine.time_windows import TimeRange

PLAN_DATE = datetime.date(2025, 3, 5)


def build_problem(windows_b=(TimeRange(0, 1440),)):
    """Driver at point 0, stop A at point 1, stop B at point 2; legs of 10 minutes / 5 km."""
    driver = PlanningDriver(
        driver_id=7, name="D", start_latitude=52.0, start_longitude=5.0,
        available_start_minute=480, available_end_minute=1020,
        max_route_minutes=480, max_work_minutes=480,
        service_type_ids=frozenset(), point_index=0,
    )
    stop_a = PlanningStop(
        location_id=100, name="A", service_type_id=3, latitude=52.1, longitude=5.1,
        service_minutes=20, due_urgency=0.0, windows=(TimeRange(540, 1020),), point_index=1,
    )
    stop_b = PlanningStop(
        location_id=200, name="B", service_type_id=3, latitude=52.2, longitude=5.2,
        service_minutes=30, due_urgency=0.0, windows=windows_b, point_index=2,
    )
    minutes = ((0, 10, 10), (10, 0, 10), (10, 10, 0))
    km = ((0.0, 5.0, 5.0), (5.0, 0.0, 5.0), (5.0, 5.0, 0.0))
    return PlanningProblem(
        plan_date=PLAN_DATE, owner_id=1,
        drivers=(driver,), stops=(stop_a, stop_b),
        excluded_locations=(ExcludedLocation(300, "closed"),), skipped_drivers=(),
        points=(MatrixPoint(52.0, 5.0), MatrixPoint(52.1, 5.1), MatrixPoint(52.2, 5.2)),
        matrix=MatrixResult(minutes, km),
    )


def test_route_walk_sequences_times_and_totals():
    problem = build_problem()
    mapped = ResultMapper().map(problem, OptimizerSolution((OptimizerRoute(0, (0, 1)),), ()))

    route = mapped.routes[0]
    first, second = route.stops
    assert [s.sequence for s in route.stops] == [1, 2]

    # Arrives 08:10, waits for 09:00
    assert first.wait_minutes == 50
    assert first.planned_start == datetime.datetime(2025, 3, 5, 9, 0)
    assert first.planned_end == datetime.datetime(2025, 3, 5, 9, 20)
    assert first.travel_minutes_from_prev == 10

    assert second.planned_start == datetime.datetime(2025, 3, 5, 9, 30)
    assert second.planned_end == datetime.datetime(2025, 3, 5, 10, 0)

    # Three legs including the return to the start point
    assert route.total_km == 15.0
    assert route.total_travel_minutes == 30
    assert route.total_service_minutes == 50
    assert route.total_wait_minutes == 50
    assert route.total_minutes == 80
    assert route.service_type_id == 3
    assert mapped.unassigned_location_ids == [300]


def test_infeasible_stop_dropped_and_sequence_stays_contiguous():
    problem = build_problem(windows_b=(TimeRange(480, 520),))
    # B visited after A would start at 09:30, after B closes
    mapped = ResultMapper().map(problem, OptimizerSolution((OptimizerRoute(0, (1, 0)),), ()))
    assert [s.location_id for s in mapped.routes[0].stops] == [200, 100]

    mapped = ResultMapper().map(problem, OptimizerSolution((OptimizerRoute(0, (0, 1)),), ()))
    route = mapped.routes[0]
    assert [(s.sequence, s.location_id) for s in route.stops] == [(1, 100)]
    assert (200, UNASSIGNED_SCHEDULE_INFEASIBLE) in [(u.location_id, u.reason) for u in mapped.unassigned]


def test_dropped_stops_reported_as_not_scheduled():
    problem = build_problem()
    mapped = ResultMapper().map(problem, OptimizerSolution((OptimizerRoute(0, (0,)),), (1,)))
    assert [(u.location_id, u.reason) for u in mapped.unassigned] == [
        (300, "closed"),
        (200, UNASSIGNED_NOT_SCHEDULED),
    ]


def test_no_solution_reports_every_candidate():
    mapped = ResultMapper().map(build_problem(), None)
    assert mapped.routes == ()
    assert [(u.location_id, u.reason) for u in mapped.unassigned] == [
        (300, "closed"),
        (100, UNASSIGNED_NO_SOLUTION),
        (200, UNASSIGNED_NO_SOLUTION),
    ]


def test_route_with_only_infeasible_stops_is_dropped():
    problem = build_problem(windows_b=(TimeRange(0, 10),))
    mapped = ResultMapper().map(problem, OptimizerSolution((OptimizerRoute(0, (1,)),), (0,)))
    assert mapped.routes == ()
    assert {u.location_id for u in mapped.unassigned} == {100, 200, 300}
