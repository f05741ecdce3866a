"""
Planning service.

Runs one planning day for one owner: resolve weights and cost settings,
build the problem, score it, hand it to the route optimizer, map the
solution back and persist the routes.
"""

from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from transport_planner.core.exceptions import PlanningConfigurationError
from transport_planner.core.locks import PlanningLock
from transport_planner.core.logging_config import logger
from transport_planner.crud import cost_settings as cost_settings_crud
from transport_planner.crud import weight_template as weight_template_crud
from transport_planner.models.weight_template import WeightTemplate
from transport_planner.schemas import planning as schemas
from transport_planner.services.planning_engine import (
    CostModel,
    CostSettings,
    MappedResult,
    MatrixProvider,
    OptimizerSolution,
    OptimizerTuning,
    OrToolsRouteOptimizer,
    PlanningInputBuilder,
    PlanningProblem,
    ResultMapper,
    RouteOptimizer,
    RouteStorage,
    TravelTimeModel,
    WeightSet,
    build_optimizer_problem,
    get_routing_client,
)

DEGRADED_MATRIX_WARNING = "Travel matrix was partly or fully estimated from straight-line distance"
NO_SOLUTION_WARNING = "The route optimizer found no solution within its time limit"


class PlanningService:
    """
    Service layer for planning runs.

    Collaborators are injectable so tests can swap the optimizer or routing
    backend; the module-level instance uses the configured defaults.
    """

    def __init__(
        self,
        optimizer: Optional[RouteOptimizer] = None,
        matrix_provider: Optional[MatrixProvider] = None,
        lock: Optional[PlanningLock] = None
    ):
        self.optimizer = optimizer or OrToolsRouteOptimizer()
        self.matrix_provider = matrix_provider or MatrixProvider(get_routing_client())
        self.lock = lock or PlanningLock()
        self.mapper = ResultMapper()
        logger.info(f"PlanningService initialized with optimizer {type(self.optimizer).__name__}")

    def solve_day(self, db: Session, request: schemas.PlanningSolveRequest) -> schemas.PlanningSolveResponse:
        """
        Plan one day for one owner and persist the resulting routes.

        Args:
            db: Database session
            request: Solve request

        Returns:
            PlanningSolveResponse with routes, unassigned locations, skipped drivers and warnings

        Raises:
            PlanningConfigurationError: Missing cost settings or unusable weight template
            PlanningInProgressError: Another run for the same owner and date is active
        """
        logger.info(f"Planning run requested: owner={request.owner_id}, date={request.date}")

        with self.lock.hold(request.owner_id, request.date):
            template = self._load_template(db, request)
            weights = self._resolve_weights(request, template)
            cost_settings = self._resolve_cost_settings(db, request, weights)
            tuning = self._resolve_tuning(template)

            builder = PlanningInputBuilder(db, self.matrix_provider, TravelTimeModel(db))
            problem = builder.build(
                plan_date=request.date,
                owner_id=request.owner_id,
                service_location_ids=request.service_location_ids,
                max_stops_per_driver=request.max_stops_per_driver,
                require_service_type_match=request.require_service_type_match
            )

            warnings: List[str] = []
            if problem.matrix.degraded:
                warnings.append(DEGRADED_MATRIX_WARNING)

            mapped = self._solve(problem, weights, cost_settings, request.normalize_weights, tuning, warnings)

            route_ids: List[int] = []
            if mapped.routes:
                created = RouteStorage(db).store_routes(
                    mapped,
                    plan_date=request.date,
                    owner_id=request.owner_id,
                    weight_template_id=template.id if template is not None else None
                )
                route_ids = [r.id for r in created]

        logger.info(
            f"Planning run finished: owner={request.owner_id}, date={request.date}, "
            f"routes={len(mapped.routes)}, unassigned={len(mapped.unassigned)}, warnings={len(warnings)}"
        )
        return self._to_response(request, problem, mapped, route_ids, warnings)

    def _solve(
        self,
        problem: PlanningProblem,
        weights: WeightSet,
        cost_settings: CostSettings,
        normalize_weights: bool,
        tuning: OptimizerTuning,
        warnings: List[str]
    ) -> MappedResult:
        if problem.is_empty:
            logger.info("Planning problem is empty, skipping optimizer")
            return self.mapper.map(
                problem, OptimizerSolution((), tuple(range(len(problem.stops))))
            )

        cost_model = CostModel(problem, weights, cost_settings, normalize_weights=normalize_weights)
        warnings.extend(cost_model.warnings)

        optimizer_problem = build_optimizer_problem(problem, cost_model, tuning)
        solution = self.optimizer.solve(optimizer_problem)
        if solution is None:
            warnings.append(NO_SOLUTION_WARNING)
        return self.mapper.map(problem, solution)

    def _load_template(self, db: Session, request: schemas.PlanningSolveRequest) -> Optional[WeightTemplate]:
        if request.weight_template_id is None:
            return None

        template = weight_template_crud.get_visible(db, id=request.weight_template_id, owner_id=request.owner_id)
        if template is None:
            raise PlanningConfigurationError(f"Weight template {request.weight_template_id} not found")
        if not template.is_active:
            raise PlanningConfigurationError(f"Weight template {template.id} is inactive")

        values = (
            template.weight_distance, template.weight_travel_time, template.weight_date,
            template.weight_cost, template.weight_overtime
        )
        if any(v is None or v < 0 for v in values):
            raise PlanningConfigurationError(f"Weight template {template.id} has missing or negative weights")
        return template

    def _resolve_weights(
        self,
        request: schemas.PlanningSolveRequest,
        template: Optional[WeightTemplate]
    ) -> WeightSet:
        # Explicit weights in the request win over the template's
        if request.weights is not None:
            w = request.weights
            return WeightSet(distance=w.distance, time=w.time, date=w.date, cost=w.cost, overtime=w.overtime)

        if template is not None:
            logger.info(f"Using weight template {template.id} ({template.name})")
            return WeightSet(
                distance=template.weight_distance,
                time=template.weight_travel_time,
                date=template.weight_date,
                cost=template.weight_cost,
                overtime=template.weight_overtime
            )

        defaults = schemas.WeightSet()
        return WeightSet(
            distance=defaults.distance, time=defaults.time, date=defaults.date,
            cost=defaults.cost, overtime=defaults.overtime
        )

    def _resolve_cost_settings(
        self,
        db: Session,
        request: schemas.PlanningSolveRequest,
        weights: WeightSet
    ) -> CostSettings:
        if request.cost_settings is not None:
            c = request.cost_settings
            return CostSettings(c.fuel_cost_per_km, c.personnel_cost_per_hour, c.currency_code)

        stored = cost_settings_crud.get_effective(db, owner_id=request.owner_id)
        if stored is None:
            if weights.cost > 0:
                raise PlanningConfigurationError(
                    f"No cost settings configured for owner {request.owner_id} and cost is weighted"
                )
            return CostSettings()

        if (stored.fuel_cost_per_km or 0) < 0 or (stored.personnel_cost_per_hour or 0) < 0:
            raise PlanningConfigurationError(f"Cost settings {stored.id} contain negative values")

        return CostSettings(
            fuel_cost_per_km=stored.fuel_cost_per_km or 0.0,
            personnel_cost_per_hour=stored.personnel_cost_per_hour or 0.0,
            currency_code=stored.currency_code or "EUR"
        )

    def _resolve_tuning(self, template: Optional[WeightTemplate]) -> OptimizerTuning:
        tuning = OptimizerTuning()
        if template is None:
            return tuning
        return OptimizerTuning(
            time_limit_seconds=template.time_limit_seconds or tuning.time_limit_seconds,
            solution_limit=template.solution_limit or tuning.solution_limit,
            first_solution_strategy=tuning.first_solution_strategy,
            local_search_metaheuristic=tuning.local_search_metaheuristic
        )

    def _to_response(
        self,
        request: schemas.PlanningSolveRequest,
        problem: PlanningProblem,
        mapped: MappedResult,
        route_ids: List[int],
        warnings: List[str]
    ) -> schemas.PlanningSolveResponse:
        ids: List[Optional[int]] = list(route_ids) or [None] * len(mapped.routes)
        routes = []
        for route_id, planned in zip(ids, mapped.routes):
            routes.append(schemas.PlannedRouteResponse(
                route_id=route_id,
                driver_id=planned.driver.driver_id,
                driver_name=planned.driver.name,
                service_type_id=planned.service_type_id,
                total_km=round(planned.total_km, 3),
                total_travel_minutes=planned.total_travel_minutes,
                total_service_minutes=planned.total_service_minutes,
                total_wait_minutes=planned.total_wait_minutes,
                total_minutes=planned.total_minutes,
                stops=[
                    schemas.PlannedStopResponse(
                        sequence=s.sequence,
                        service_location_id=s.location_id,
                        latitude=s.latitude,
                        longitude=s.longitude,
                        service_minutes=s.service_minutes,
                        travel_km_from_prev=round(s.travel_km_from_prev, 3),
                        travel_minutes_from_prev=s.travel_minutes_from_prev,
                        wait_minutes=s.wait_minutes,
                        planned_start=s.planned_start,
                        planned_end=s.planned_end
                    )
                    for s in planned.stops
                ]
            ))

        return schemas.PlanningSolveResponse(
            date=request.date,
            owner_id=request.owner_id,
            routes=routes,
            unassigned=[
                schemas.UnassignedLocationResponse(service_location_id=u.location_id, reason=u.reason)
                for u in mapped.unassigned
            ],
            skipped_drivers=[
                schemas.SkippedDriverResponse(driver_id=d.driver_id, name=d.name, reason=d.reason)
                for d in problem.skipped_drivers
            ],
            warnings=warnings,
            degraded=problem.matrix.degraded
        )


# Create singleton instance
planning_service = PlanningService()
