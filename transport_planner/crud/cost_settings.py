from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import select
from transport_planner.crud.base import CRUDBase
from transport_planner.models.cost_settings import SystemCostSettings


class CRUDCostSettings(CRUDBase[SystemCostSettings, Dict[str, Any], Dict[str, Any]]):

    def get_effective(self, db: Session, *, owner_id: int) -> Optional[SystemCostSettings]:
        """Owner's own row, else the system-wide default row (owner_id NULL), else None."""
        own = db.execute(
            select(SystemCostSettings).where(SystemCostSettings.owner_id == owner_id)
        ).scalar_one_or_none()
        if own is not None:
            return own
        return db.execute(
            select(SystemCostSettings).where(SystemCostSettings.owner_id.is_(None))
        ).scalars().first()


# Create singleton instance
cost_settings = CRUDCostSettings(SystemCostSettings)
