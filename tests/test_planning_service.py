import pytest

from conftest import OWNER_ID, PLAN_DATE
from transport_planner.core.exceptions import PlanningConfigurationError, PlanningInProgressError
from transport_planner.core.locks import PlanningLock
from transport_planner.models import (
    Route,
    RouteStatus,
    RouteStopStatus,
    ServiceLocation,
    ServiceLocationStatus,
    WeightTemplate,
)
from transport_planner.schemas.planning import CostSettings, PlanningSolveRequest, WeightSet
from transport_planner.services.planning import (
    DEGRADED_MATRIX_WARNING,
    NO_SOLUTION_WARNING,
    PlanningService,
)
from transport_planner.services.planning_engine.cost_model import DOUBLE_COUNT_WARNING
from transport_planner.services.planning_engine.input_builder import LOCATION_NO_AVAILABLE_DRIVER
from transport_planner.services.planning_engine.matrix_provider import MatrixProvider
from transport_planner.services.planning_engine.optimizer import OrToolsRouteOptimizer
from transport_planner.services.planning_engine.result_mapper import UNASSIGNED_NO_SOLUTION


class NoSolutionOptimizer:
    def __init__(self):
        self.calls = 0

    def solve(self, problem):
        self.calls += 1
        return None


@pytest.fixture
def service():
    return PlanningService(
        optimizer=OrToolsRouteOptimizer(),
        matrix_provider=MatrixProvider(None),
        lock=PlanningLock(redis_url=None)
    )


def request(**kwargs):
    return PlanningSolveRequest(date=PLAN_DATE, owner_id=OWNER_ID, **kwargs)


def test_solve_day_persists_temp_routes_and_marks_locations(db, service, make_driver, make_location):
    driver = make_driver()
    first = make_location(name="First", lat=52.01, lng=5.01)
    second = make_location(name="Second", lat=52.02, lng=5.02)

    response = service.solve_day(db, request())

    assert len(response.routes) == 1
    planned = response.routes[0]
    assert planned.driver_id == driver.id
    assert sorted(s.service_location_id for s in planned.stops) == sorted([first.id, second.id])
    assert [s.sequence for s in planned.stops] == [1, 2]
    assert response.unassigned == []
    assert response.degraded
    assert DEGRADED_MATRIX_WARNING in response.warnings

    route = db.get(Route, planned.route_id)
    assert route.status == RouteStatus.temp
    assert route.date == PLAN_DATE
    assert [s.sequence for s in route.stops] == [1, 2]
    assert all(s.status == RouteStopStatus.pending for s in route.stops)
    assert route.stops[0].planned_start == planned.stops[0].planned_start
    assert route.total_minutes == planned.total_minutes

    db.expire_all()
    assert {loc.status for loc in db.query(ServiceLocation).all()} == {ServiceLocationStatus.planned}


def test_planned_locations_are_not_planned_again(db, service, make_driver, make_location):
    make_driver()
    make_location()

    service.solve_day(db, request())
    response = service.solve_day(db, request())

    assert response.routes == []
    assert db.query(Route).count() == 1


def test_empty_problem_returns_unassigned_without_routes(db, service, make_location):
    location = make_location()

    response = service.solve_day(db, request())

    assert response.routes == []
    assert [(u.service_location_id, u.reason) for u in response.unassigned] == [
        (location.id, LOCATION_NO_AVAILABLE_DRIVER)
    ]
    assert db.query(Route).count() == 0


def test_no_solution_persists_nothing(db, make_driver, make_location):
    optimizer = NoSolutionOptimizer()
    service = PlanningService(optimizer=optimizer, matrix_provider=MatrixProvider(None), lock=PlanningLock(redis_url=None))
    make_driver()
    location = make_location()

    response = service.solve_day(db, request())

    assert optimizer.calls == 1
    assert response.routes == []
    assert [(u.service_location_id, u.reason) for u in response.unassigned] == [
        (location.id, UNASSIGNED_NO_SOLUTION)
    ]
    assert NO_SOLUTION_WARNING in response.warnings
    assert db.query(Route).count() == 0
    db.expire_all()
    assert db.get(ServiceLocation, location.id).status == ServiceLocationStatus.open


def test_cost_weight_requires_cost_settings(db, service, make_driver, make_location):
    make_driver()
    make_location()

    with pytest.raises(PlanningConfigurationError):
        service.solve_day(db, request(weights=WeightSet(time=50, cost=50)))

    response = service.solve_day(db, request(
        weights=WeightSet(time=50, cost=50),
        cost_settings=CostSettings(fuel_cost_per_km=0.2, personnel_cost_per_hour=20)
    ))
    assert len(response.routes) == 1


def test_stored_cost_settings_used(db, service, make_driver, make_location, cost_settings_row):
    make_driver()
    make_location()

    response = service.solve_day(db, request(weights=WeightSet(distance=50, cost=50)))

    assert len(response.routes) == 1
    assert DOUBLE_COUNT_WARNING in response.warnings


def test_weight_template_validation(db, service, make_driver, make_location):
    make_driver()
    make_location()

    with pytest.raises(PlanningConfigurationError):
        service.solve_day(db, request(weight_template_id=999))

    inactive = WeightTemplate(name="Old", owner_id=OWNER_ID, is_active=False)
    foreign = WeightTemplate(name="Foreign", owner_id=OWNER_ID + 1)
    negative = WeightTemplate(name="Broken", owner_id=OWNER_ID, weight_distance=-1)
    db.add_all([inactive, foreign, negative])
    db.commit()

    for template in (inactive, foreign, negative):
        with pytest.raises(PlanningConfigurationError):
            service.solve_day(db, request(weight_template_id=template.id))

    assert db.query(Route).count() == 0


def test_weight_template_applied_and_recorded(db, service, make_driver, make_location):
    make_driver()
    make_location()
    template = WeightTemplate(
        name="Time first", owner_id=None,
        weight_distance=0, weight_travel_time=80, weight_date=20, weight_cost=0, weight_overtime=0,
        time_limit_seconds=1
    )
    db.add(template)
    db.commit()

    response = service.solve_day(db, request(weight_template_id=template.id))

    route = db.get(Route, response.routes[0].route_id)
    assert route.weight_template_id == template.id


def test_concurrent_run_for_same_day_rejected(db, service, make_driver, make_location):
    make_driver()
    make_location()

    with service.lock.hold(OWNER_ID, PLAN_DATE):
        with pytest.raises(PlanningInProgressError):
            service.solve_day(db, request())

    # Released again afterwards
    assert len(service.solve_day(db, request()).routes) == 1


def test_service_type_match_without_capable_driver(db, service, make_driver, make_location, make_service_type, service_type):
    other_type = make_service_type("REPAIR")
    make_driver(service_type_ids=[service_type.id])
    location = make_location(service_type_id=other_type.id)

    response = service.solve_day(db, request(require_service_type_match=True))

    assert response.routes == []
    assert [u.service_location_id for u in response.unassigned] == [location.id]
