"""
Planning input builder.

Loads and filters everything one planning run needs for a (date, owner):
eligible drivers, candidate stops with their feasibility windows and due
urgency, and the travel matrix over driver starts and stops. The result is an
immutable PlanningProblem; an empty problem is a normal outcome, not an error.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from transport_planner.core.config import settings
from transport_planner.core.logging_config import logger
from transport_planner.models.driver import Driver, DriverAvailability
from transport_planner.models.route import Route, RouteStatus
from transport_planner.models.service_location import (
    ServiceLocation,
    ServiceLocationConstraint,
    ServiceLocationException,
    ServiceLocationOpeningHours,
    ServiceLocationStatus,
)
from transport_planner.services.planning_engine.matrix_provider import (
    MatrixProvider,
    MatrixResult,
    build_cache_key,
)
from transport_planner.services.planning_engine.routing_client import MatrixPoint
from transport_planner.services.planning_engine.time_windows import (
    TimeRange,
    day_of_week_index,
    feasible_ranges,
    resolve_location_window,
)
from transport_planner.services.planning_engine.travel_time_model import TravelTimeModel

# Skipped-driver reasons
DRIVER_FIXED_ROUTE = "fixed_route"
DRIVER_NOT_AVAILABLE = "not_available"
DRIVER_MISSING_START = "missing_start_coordinates"
DRIVER_NO_MINUTES = "no_available_minutes"
DRIVER_NO_SERVICE_TYPES = "no_service_types"

# Excluded-location reasons
LOCATION_CLOSED = "closed"
LOCATION_WINDOW_TOO_SHORT = "window_too_short"
LOCATION_NO_MATCHING_DRIVER = "no_matching_driver"
LOCATION_NO_DRIVER_SERVICE_TYPES = "no_driver_service_types"
LOCATION_NO_AVAILABLE_DRIVER = "no_available_driver"


@dataclass(frozen=True)
class PlanningDriver:
    driver_id: int
    name: str
    start_latitude: float
    start_longitude: float
    available_start_minute: int
    available_end_minute: int
    max_route_minutes: int
    max_work_minutes: int
    service_type_ids: FrozenSet[int]
    point_index: int

    @property
    def start_point(self) -> MatrixPoint:
        return MatrixPoint(self.start_latitude, self.start_longitude)


@dataclass(frozen=True)
class PlanningStop:
    location_id: int
    name: str
    service_type_id: int
    latitude: float
    longitude: float
    service_minutes: int
    due_urgency: float
    windows: Tuple[TimeRange, ...]
    point_index: int

    @property
    def due_penalty(self) -> float:
        return 1.0 - self.due_urgency


@dataclass(frozen=True)
class SkippedDriver:
    driver_id: int
    name: str
    reason: str


@dataclass(frozen=True)
class ExcludedLocation:
    location_id: int
    reason: str


@dataclass(frozen=True)
class PlanningProblem:
    plan_date: date
    owner_id: int
    drivers: Tuple[PlanningDriver, ...]
    stops: Tuple[PlanningStop, ...]
    excluded_locations: Tuple[ExcludedLocation, ...]
    skipped_drivers: Tuple[SkippedDriver, ...]
    points: Tuple[MatrixPoint, ...]
    matrix: MatrixResult
    max_stops_per_driver: Optional[int] = None
    require_service_type_match: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.drivers or not self.stops

    @property
    def candidate_location_ids(self) -> List[int]:
        return [s.location_id for s in self.stops] + [e.location_id for e in self.excluded_locations]

    def driver_can_serve(self, driver: PlanningDriver, stop: PlanningStop) -> bool:
        if not self.require_service_type_match:
            return True
        return stop.service_type_id in driver.service_type_ids


def compute_due_urgency(plan_date: date, due_date: Optional[date], priority_date: Optional[date] = None) -> float:
    """
    Urgency in [0, 1] from the priority date (or due date), in calendar days.

    Overdue is 1.0; it falls to 0.8 over the first week, 0.5 by two weeks,
    0.2 by four weeks and reaches 0 four weeks after that.
    """
    order_date = priority_date or due_date
    if order_date is None:
        return 0.0

    days = (order_date - plan_date).days
    if days < 0:
        urgency = 1.0
    elif days <= 7:
        urgency = 1.0 - (days / 7.0) * 0.2
    elif days <= 14:
        urgency = 0.8 - ((days - 7.0) / 7.0) * 0.3
    elif days <= 28:
        urgency = 0.5 - ((days - 14.0) / 14.0) * 0.3
    else:
        urgency = 0.2 - min((days - 28.0) / 28.0, 1.0) * 0.2

    return max(0.0, min(1.0, urgency))


def resolve_service_minutes(location: ServiceLocation, constraint: Optional[ServiceLocationConstraint]) -> int:
    minutes = location.service_minutes if location.service_minutes and location.service_minutes > 0 \
        else settings.DEFAULT_SERVICE_MINUTES

    if constraint is not None:
        if constraint.min_visit_duration_minutes is not None:
            minutes = max(minutes, constraint.min_visit_duration_minutes)
        if constraint.max_visit_duration_minutes is not None:
            minutes = min(minutes, constraint.max_visit_duration_minutes)

    return max(1, minutes)


def _has_start(driver: Driver) -> bool:
    if driver.start_latitude is None or driver.start_longitude is None:
        return False
    return not (driver.start_latitude == 0 and driver.start_longitude == 0)


class PlanningInputBuilder:
    """Assembles the immutable planning problem for one (date, owner)."""

    def __init__(
        self,
        db: Session,
        matrix_provider: MatrixProvider,
        travel_model: Optional[TravelTimeModel] = None
    ):
        self.db = db
        self.matrix_provider = matrix_provider
        self.travel_model = travel_model

    def build(
        self,
        plan_date: date,
        owner_id: int,
        service_location_ids: Optional[Sequence[int]] = None,
        max_stops_per_driver: Optional[int] = None,
        require_service_type_match: bool = False
    ) -> PlanningProblem:
        """
        Build the planning problem.

        Args:
            plan_date: Date to plan
            owner_id: Owner whose drivers and locations are planned
            service_location_ids: Optional explicit subset of locations
            max_stops_per_driver: Optional per-driver stop cap
            require_service_type_match: Only pair stops with drivers capable of their service type

        Returns:
            PlanningProblem (check is_empty before solving)
        """
        logger.info(
            f"Building planning input: owner={owner_id}, date={plan_date}, "
            f"explicit_locations={len(service_location_ids) if service_location_ids else 'all'}, "
            f"require_service_type_match={require_service_type_match}"
        )

        fixed_routes = self._load_fixed_routes(plan_date, owner_id)
        fixed_driver_ids = {r.driver_id for r in fixed_routes}
        fixed_location_ids = {
            s.service_location_id
            for r in fixed_routes
            for s in r.stops
            if s.service_location_id is not None
        }

        drivers, skipped = self._select_drivers(plan_date, owner_id, fixed_driver_ids, require_service_type_match)
        candidates = self._load_candidates(owner_id, service_location_ids, fixed_location_ids)
        stops, excluded = self._select_stops(plan_date, candidates, drivers, len(drivers), require_service_type_match)

        logger.info(
            f"Planning input: {len(drivers)} drivers ({len(skipped)} skipped), "
            f"{len(stops)} stops ({len(excluded)} excluded)"
        )
        for s in skipped:
            logger.info(f"Driver {s.driver_id} ({s.name}) skipped: {s.reason}")

        points: Tuple[MatrixPoint, ...] = ()
        matrix = MatrixResult((), (), False)
        if drivers and stops:
            points = tuple([d.start_point for d in drivers] + [MatrixPoint(s.latitude, s.longitude) for s in stops])
            departure_minute = min(d.available_start_minute for d in drivers)
            matrix = self.matrix_provider.get_matrix(
                build_cache_key(owner_id, plan_date, points, departure_minute),
                points,
                plan_date=plan_date,
                departure_minute=departure_minute,
                travel_model=self.travel_model
            )
        else:
            logger.info("Nothing to plan: no eligible drivers or no feasible stops")

        return PlanningProblem(
            plan_date=plan_date,
            owner_id=owner_id,
            drivers=tuple(drivers),
            stops=tuple(stops),
            excluded_locations=tuple(excluded),
            skipped_drivers=tuple(skipped),
            points=points,
            matrix=matrix,
            max_stops_per_driver=max_stops_per_driver,
            require_service_type_match=require_service_type_match
        )

    def _load_fixed_routes(self, plan_date: date, owner_id: int) -> List[Route]:
        stmt = select(Route).options(selectinload(Route.stops)).where(
            Route.owner_id == owner_id,
            Route.date == plan_date,
            Route.status == RouteStatus.fixed
        )
        return list(self.db.execute(stmt).scalars().all())

    def _select_drivers(
        self,
        plan_date: date,
        owner_id: int,
        fixed_driver_ids: Iterable[int],
        require_service_type_match: bool
    ) -> Tuple[List[PlanningDriver], List[SkippedDriver]]:
        stmt = select(Driver).options(selectinload(Driver.service_types)).where(
            Driver.owner_id == owner_id,
            Driver.is_active.is_(True)
        ).order_by(Driver.id)
        drivers = list(self.db.execute(stmt).scalars().all())

        availabilities: Dict[int, DriverAvailability] = {}
        if drivers:
            avail_stmt = select(DriverAvailability).where(
                DriverAvailability.date == plan_date,
                DriverAvailability.driver_id.in_([d.id for d in drivers])
            )
            availabilities = {a.driver_id: a for a in self.db.execute(avail_stmt).scalars().all()}

        fixed_driver_ids = set(fixed_driver_ids)
        eligible: List[PlanningDriver] = []
        skipped: List[SkippedDriver] = []

        for driver in drivers:
            if driver.id in fixed_driver_ids:
                skipped.append(SkippedDriver(driver.id, driver.name, DRIVER_FIXED_ROUTE))
                continue

            availability = availabilities.get(driver.id)
            if availability is None:
                skipped.append(SkippedDriver(driver.id, driver.name, DRIVER_NOT_AVAILABLE))
                continue

            if not _has_start(driver):
                skipped.append(SkippedDriver(driver.id, driver.name, DRIVER_MISSING_START))
                continue

            max_route_minutes = min(availability.available_minutes, driver.max_work_minutes_per_day or 0)
            if max_route_minutes <= 0:
                skipped.append(SkippedDriver(driver.id, driver.name, DRIVER_NO_MINUTES))
                continue

            service_type_ids = frozenset(driver.service_type_ids)
            if require_service_type_match and not service_type_ids:
                skipped.append(SkippedDriver(driver.id, driver.name, DRIVER_NO_SERVICE_TYPES))
                continue

            eligible.append(PlanningDriver(
                driver_id=driver.id,
                name=driver.name,
                start_latitude=driver.start_latitude,
                start_longitude=driver.start_longitude,
                available_start_minute=availability.start_minute_of_day,
                available_end_minute=availability.end_minute_of_day,
                max_route_minutes=max_route_minutes,
                max_work_minutes=driver.max_work_minutes_per_day,
                service_type_ids=service_type_ids,
                point_index=len(eligible)
            ))

        return eligible, skipped

    def _load_candidates(
        self,
        owner_id: int,
        service_location_ids: Optional[Sequence[int]],
        fixed_location_ids: Iterable[int]
    ) -> List[ServiceLocation]:
        stmt = select(ServiceLocation).where(
            ServiceLocation.owner_id == owner_id,
            ServiceLocation.status == ServiceLocationStatus.open,
            ServiceLocation.is_active.is_(True),
            ServiceLocation.latitude.is_not(None),
            ServiceLocation.longitude.is_not(None)
        )
        if service_location_ids:
            stmt = stmt.where(ServiceLocation.id.in_(list(service_location_ids)))

        fixed_location_ids = list(fixed_location_ids)
        if fixed_location_ids:
            stmt = stmt.where(ServiceLocation.id.not_in(fixed_location_ids))

        return list(self.db.execute(stmt.order_by(ServiceLocation.id)).scalars().all())

    def _select_stops(
        self,
        plan_date: date,
        candidates: List[ServiceLocation],
        drivers: List[PlanningDriver],
        first_point_index: int,
        require_service_type_match: bool
    ) -> Tuple[List[PlanningStop], List[ExcludedLocation]]:
        stops: List[PlanningStop] = []
        excluded: List[ExcludedLocation] = []
        if not candidates:
            return stops, excluded

        location_ids = [c.id for c in candidates]
        hours_by_location, exceptions_by_location = self._load_opening_rules(plan_date, location_ids)
        constraints = {
            c.service_location_id: c
            for c in self.db.execute(
                select(ServiceLocationConstraint).where(ServiceLocationConstraint.service_location_id.in_(location_ids))
            ).scalars().all()
        }
        driver_service_type_ids = set().union(*(d.service_type_ids for d in drivers)) if drivers else set()

        if require_service_type_match and drivers and not driver_service_type_ids:
            logger.info("All service locations excluded because no drivers have service types assigned")
            return stops, [ExcludedLocation(c.id, LOCATION_NO_DRIVER_SERVICE_TYPES) for c in candidates]

        for location in candidates:
            service_minutes = resolve_service_minutes(location, constraints.get(location.id))
            window = resolve_location_window(
                plan_date,
                hours_by_location.get(location.id, []),
                exceptions_by_location.get(location.id, [])
            )

            if window.is_closed:
                excluded.append(ExcludedLocation(location.id, LOCATION_CLOSED))
                continue

            windows = feasible_ranges(window, service_minutes)
            if not windows:
                excluded.append(ExcludedLocation(location.id, LOCATION_WINDOW_TOO_SHORT))
                continue

            if not drivers:
                excluded.append(ExcludedLocation(location.id, LOCATION_NO_AVAILABLE_DRIVER))
                continue

            if require_service_type_match and location.service_type_id not in driver_service_type_ids:
                excluded.append(ExcludedLocation(location.id, LOCATION_NO_MATCHING_DRIVER))
                continue

            stops.append(PlanningStop(
                location_id=location.id,
                name=location.name,
                service_type_id=location.service_type_id,
                latitude=location.latitude,
                longitude=location.longitude,
                service_minutes=service_minutes,
                due_urgency=compute_due_urgency(plan_date, location.due_date, location.priority_date),
                windows=tuple(windows),
                point_index=first_point_index + len(stops)
            ))

        for e in excluded:
            logger.debug(f"Location {e.location_id} excluded: {e.reason}")

        return stops, excluded

    def _load_opening_rules(self, plan_date: date, location_ids: List[int]):
        hours_stmt = select(ServiceLocationOpeningHours).where(
            ServiceLocationOpeningHours.service_location_id.in_(location_ids),
            ServiceLocationOpeningHours.day_of_week == day_of_week_index(plan_date)
        )
        exceptions_stmt = select(ServiceLocationException).where(
            ServiceLocationException.service_location_id.in_(location_ids),
            ServiceLocationException.date == plan_date
        )

        hours_by_location = defaultdict(list)
        for row in self.db.execute(hours_stmt).scalars().all():
            hours_by_location[row.service_location_id].append(row)

        exceptions_by_location = defaultdict(list)
        for row in self.db.execute(exceptions_stmt).scalars().all():
            exceptions_by_location[row.service_location_id].append(row)

        return hours_by_location, exceptions_by_location
