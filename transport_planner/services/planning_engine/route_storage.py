"""
Route storage service.

Persists mapped planning results into the Route and RouteStop tables and
moves the planned locations to `planned`, all in one transaction.
"""

from typing import List, Optional
from sqlalchemy.orm import Session
from transport_planner.core.logging_config import logger
from transport_planner.crud.route import route as route_crud
from transport_planner.crud.service_location import service_location as service_location_crud
from transport_planner.models.route import Route, RouteStatus, RouteStopStatus, RouteStopType
from transport_planner.services.planning_engine.result_mapper import MappedResult


class RouteStorage:
    """Stores planning results in database."""

    def __init__(self, db: Session):
        self.db = db

    def store_routes(
        self,
        result: MappedResult,
        plan_date,
        owner_id: int,
        weight_template_id: Optional[int] = None
    ) -> List[Route]:
        """
        Store routes and stops from a mapped result.

        Routes are stored as `temp` with every stop `pending`. Nothing is
        written when the result has no routes.

        Args:
            result: Mapped planning result
            plan_date: Planned date
            owner_id: Owner ID
            weight_template_id: Template that drove the run, if any

        Returns:
            Created routes, in result order
        """
        if not result.routes:
            logger.warning("No routes to store")
            return []

        logger.info(f"Storing {len(result.routes)} routes for owner {owner_id} on {plan_date}")

        try:
            created = []
            planned_location_ids = []
            for planned in result.routes:
                driver = planned.driver
                route_data = {
                    "date": plan_date,
                    "driver_id": driver.driver_id,
                    "service_type_id": planned.service_type_id,
                    "weight_template_id": weight_template_id,
                    "status": RouteStatus.temp,
                    "total_minutes": planned.total_minutes,
                    "total_km": round(planned.total_km, 3),
                    "start_latitude": driver.start_latitude,
                    "start_longitude": driver.start_longitude,
                    "end_latitude": driver.start_latitude,
                    "end_longitude": driver.start_longitude
                }
                stops_data = [
                    {
                        "sequence": stop.sequence,
                        "stop_type": RouteStopType.location,
                        "service_location_id": stop.location_id,
                        "latitude": stop.latitude,
                        "longitude": stop.longitude,
                        "service_minutes": stop.service_minutes,
                        "travel_km_from_prev": round(stop.travel_km_from_prev, 3),
                        "travel_minutes_from_prev": stop.travel_minutes_from_prev,
                        "planned_start": stop.planned_start,
                        "planned_end": stop.planned_end,
                        "status": RouteStopStatus.pending
                    }
                    for stop in planned.stops
                ]
                created.append(route_crud.add_with_stops(
                    self.db, route_data=route_data, stops_data=stops_data, owner_id=owner_id
                ))
                planned_location_ids.extend(stop.location_id for stop in planned.stops)

            marked = service_location_crud.mark_planned(
                self.db, location_ids=planned_location_ids, owner_id=owner_id
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(f"Storing routes for owner {owner_id} on {plan_date} failed, rolled back")
            raise

        for r in created:
            self.db.refresh(r)

        logger.info(f"Created {len(created)} routes: {[r.id for r in created]}, {marked} locations marked planned")
        return created
