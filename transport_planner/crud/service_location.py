from typing import List, Dict, Any, Sequence
from sqlalchemy.orm import Session
from sqlalchemy import update
from transport_planner.crud.base import CRUDBase
from transport_planner.models.service_location import ServiceLocation, ServiceLocationStatus


class CRUDServiceLocation(CRUDBase[ServiceLocation, Dict[str, Any], Dict[str, Any]]):

    def mark_planned(self, db: Session, *, location_ids: Sequence[int], owner_id: int) -> int:
        """
        Move open locations to `planned` without committing.

        Returns:
            Number of rows changed
        """
        if not location_ids:
            return 0
        stmt = update(ServiceLocation).where(
            ServiceLocation.owner_id == owner_id,
            ServiceLocation.id.in_(list(location_ids)),
            ServiceLocation.status == ServiceLocationStatus.open
        ).values(status=ServiceLocationStatus.planned).execution_options(synchronize_session="fetch")
        return db.execute(stmt).rowcount


# Create singleton instance
service_location = CRUDServiceLocation(ServiceLocation)
