from typing import List, Dict, Any
from datetime import date
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select
from transport_planner.crud.base import CRUDBase
from transport_planner.models.route import Route, RouteStop, RouteStatus


class CRUDRoute(CRUDBase[Route, Dict[str, Any], Dict[str, Any]]):
    """
    CRUD operations for Route model.

    Routes are written together with their stops; committing is left to the
    caller so a planning run can persist everything in one transaction.
    """

    def add_with_stops(
        self,
        db: Session,
        *,
        route_data: Dict[str, Any],
        stops_data: List[Dict[str, Any]],
        owner_id: int
    ) -> Route:
        """
        Stage a route and its stops in the session without committing.

        Args:
            db: Database session
            route_data: Route column values
            stops_data: Stop column values, already sequenced
            owner_id: Owner ID for isolation

        Returns:
            The flushed Route (its id is assigned)
        """
        route = Route(owner_id=owner_id, **route_data)
        route.stops = [RouteStop(**stop) for stop in stops_data]
        db.add(route)
        db.flush()
        return route

    def get_for_day(
        self,
        db: Session,
        *,
        owner_id: int,
        plan_date: date,
        status: RouteStatus = None
    ) -> List[Route]:
        stmt = select(Route).options(selectinload(Route.stops)).where(
            Route.owner_id == owner_id,
            Route.date == plan_date
        )
        if status is not None:
            stmt = stmt.where(Route.status == status)
        return list(db.execute(stmt.order_by(Route.id)).scalars().all())


# Create singleton instance
route = CRUDRoute(Route)
