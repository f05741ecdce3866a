from typing import Optional, List
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select
from transport_planner.models.travel_time import (
    LearnedTravelStatContributor,
    LearnedTravelStats,
    LearnedTravelStatStatus,
)


class CRUDLearnedTravelStats:
    """
    CRUD operations for LearnedTravelStats.

    Note: learned statistics are shared across owners (they describe regions,
    not companies) and have no owner_id, so we don't inherit from CRUDBase.
    Writes go through TravelTimeModel.record_sample.
    """

    def __init__(self):
        self.model = LearnedTravelStats

    def get(self, db: Session, id: int) -> Optional[LearnedTravelStats]:
        stmt = select(LearnedTravelStats).options(
            selectinload(LearnedTravelStats.contributors)
        ).where(LearnedTravelStats.id == id)
        return db.execute(stmt).scalar_one_or_none()

    def list_filtered(
        self,
        db: Session,
        *,
        region_id: Optional[int] = None,
        status: Optional[LearnedTravelStatStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[LearnedTravelStats]:
        stmt = select(LearnedTravelStats).options(selectinload(LearnedTravelStats.contributors))
        if region_id is not None:
            stmt = stmt.where(LearnedTravelStats.region_id == region_id)
        if status is not None:
            stmt = stmt.where(LearnedTravelStats.status == status)
        stmt = stmt.order_by(
            LearnedTravelStats.region_id,
            LearnedTravelStats.day_type,
            LearnedTravelStats.bucket_start_hour,
            LearnedTravelStats.distance_band_km_min
        ).offset(skip).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def top_contributors(self, stat: LearnedTravelStats, limit: int = 5) -> List[LearnedTravelStatContributor]:
        return sorted(
            stat.contributors,
            key=lambda c: (-(c.sample_count or 0), c.driver_id)
        )[:limit]


# Create singleton instance
learned_travel_stats = CRUDLearnedTravelStats()
