from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import select, or_
from transport_planner.crud.base import CRUDBase
from transport_planner.models.weight_template import WeightTemplate


class CRUDWeightTemplate(CRUDBase[WeightTemplate, Dict[str, Any], Dict[str, Any]]):
    """
    CRUD operations for WeightTemplate model.

    Global templates have no owner and are visible to every owner.
    """

    def get_visible(self, db: Session, *, id: int, owner_id: int) -> Optional[WeightTemplate]:
        stmt = select(WeightTemplate).where(
            WeightTemplate.id == id,
            or_(WeightTemplate.owner_id == owner_id, WeightTemplate.owner_id.is_(None))
        )
        return db.execute(stmt).scalar_one_or_none()


# Create singleton instance
weight_template = CRUDWeightTemplate(WeightTemplate)
