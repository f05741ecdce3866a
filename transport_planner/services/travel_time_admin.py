from typing import List, Optional
from sqlalchemy.orm import Session
from transport_planner.core.config import settings
from transport_planner.core.exceptions import LearnedStatNotFoundError, LearnedStatStatusError
from transport_planner.core.logging_config import logger
from transport_planner.crud import learned_travel_stats as stats_crud
from transport_planner.models.travel_time import LearnedTravelStats, LearnedTravelStatStatus
from transport_planner.schemas.travel_time import (
    ContributorResponse,
    LearnedStatResponse,
    StatusUpdateRequest,
    TravelSampleCreate,
    TravelStatQuality,
)
from transport_planner.services.planning_engine.travel_time_model import (
    TravelTimeModel,
    assess_quality,
    utc_now,
)

TOP_CONTRIBUTORS = 5


class TravelTimeAdminService:
    """
    Service layer for reviewing learned travel-time statistics.

    Quality flags are computed on read; they decide whether a statistic may
    be approved but never change estimates by themselves.
    """

    def __init__(self):
        self.crud = stats_crud
        self.config = settings

    def list_learned(
        self,
        db: Session,
        region_id: Optional[int] = None,
        status: Optional[LearnedTravelStatStatus] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[LearnedStatResponse]:
        model = TravelTimeModel(db, self.config)
        stats = self.crud.list_filtered(db, region_id=region_id, status=status, skip=skip, limit=limit)
        return [self._to_response(model, stat) for stat in stats]

    def get_learned(self, db: Session, stat_id: int) -> LearnedStatResponse:
        return self._to_response(TravelTimeModel(db, self.config), self._get_or_raise(db, stat_id))

    def update_status(self, db: Session, stat_id: int, update: StatusUpdateRequest) -> LearnedStatResponse:
        """
        Change the review status of a learned statistic.

        Args:
            db: Database session
            stat_id: Learned statistic ID
            update: Target status, force flag and optional note

        Returns:
            Updated statistic with quality flags

        Raises:
            LearnedStatNotFoundError: If the statistic does not exist
            LearnedStatStatusError: If approval is refused because quality flags are raised
        """
        stat = self._get_or_raise(db, stat_id)
        model = TravelTimeModel(db, self.config)
        quality = self._quality(model, stat)

        if update.status == LearnedTravelStatStatus.approved and quality.blocks_approval:
            if not update.force:
                logger.warning(f"Approval of learned stat {stat.id} refused: flags={quality.flags}")
                raise LearnedStatStatusError(
                    f"Learned stat {stat.id} cannot be approved while flagged: {', '.join(quality.flags)}",
                    quality.flags
                )
            logger.warning(f"Learned stat {stat.id} force-approved despite flags {quality.flags}")

        previous = stat.status
        stat.status = update.status
        stat.approved_at_utc = utc_now() if update.status == LearnedTravelStatStatus.approved else None
        db.commit()
        db.refresh(stat)

        logger.info(
            f"Learned stat {stat.id} status {previous.value} -> {stat.status.value}"
            + (f" (note: {update.note})" if update.note else "")
        )
        return self._to_response(model, stat)

    def reset(self, db: Session, stat_id: int) -> LearnedStatResponse:
        """Clear all learned aggregates and contributors; the statistic starts over as draft."""
        stat = self._get_or_raise(db, stat_id)

        stat.sample_count = 0
        stat.total_sample_count = 0
        stat.suspicious_sample_count = 0
        stat.avg_minutes_per_km = None
        stat.min_minutes_per_km = None
        stat.max_minutes_per_km = None
        stat.avg_stop_service_minutes = None
        stat.last_sample_at_utc = None
        stat.status = LearnedTravelStatStatus.draft
        stat.approved_at_utc = None
        stat.contributors.clear()
        db.commit()
        db.refresh(stat)

        logger.info(f"Learned stat {stat.id} reset")
        return self._to_response(TravelTimeModel(db, self.config), stat)

    def record_sample(self, db: Session, sample: TravelSampleCreate) -> LearnedStatResponse:
        """
        Merge a completed leg into its learned statistic.

        Raises:
            ValueError: If no travel time region covers the leg
        """
        model = TravelTimeModel(db, self.config)
        stat = model.record_sample(
            target_date=sample.date,
            departure_minute=sample.departure_minute,
            distance_km=sample.distance_km,
            travel_minutes=sample.travel_minutes,
            driver_id=sample.driver_id,
            start_lat=sample.start_latitude,
            start_lng=sample.start_longitude,
            end_lat=sample.end_latitude,
            end_lng=sample.end_longitude,
            stop_service_minutes=sample.stop_service_minutes
        )
        return self._to_response(model, stat)

    def _get_or_raise(self, db: Session, stat_id: int) -> LearnedTravelStats:
        stat = self.crud.get(db, stat_id)
        if stat is None:
            raise LearnedStatNotFoundError(f"Learned stat {stat_id} not found")
        return stat

    def _quality(self, model: TravelTimeModel, stat: LearnedTravelStats):
        baseline, _ = model.baseline_minutes_per_km(
            stat.region_id, stat.day_type, stat.bucket_start_hour, stat.bucket_end_hour
        )
        return assess_quality(stat, baseline, self.config)

    def _to_response(self, model: TravelTimeModel, stat: LearnedTravelStats) -> LearnedStatResponse:
        baseline, source = model.baseline_minutes_per_km(
            stat.region_id, stat.day_type, stat.bucket_start_hour, stat.bucket_end_hour
        )
        quality = assess_quality(stat, baseline, self.config)
        return LearnedStatResponse(
            id=stat.id,
            region_id=stat.region_id,
            day_type=stat.day_type,
            bucket_start_hour=stat.bucket_start_hour,
            bucket_end_hour=stat.bucket_end_hour,
            distance_band_km_min=stat.distance_band_km_min,
            distance_band_km_max=stat.distance_band_km_max,
            sample_count=stat.sample_count or 0,
            total_sample_count=stat.total_sample_count or 0,
            suspicious_sample_count=stat.suspicious_sample_count or 0,
            avg_minutes_per_km=stat.avg_minutes_per_km,
            min_minutes_per_km=stat.min_minutes_per_km,
            max_minutes_per_km=stat.max_minutes_per_km,
            avg_stop_service_minutes=stat.avg_stop_service_minutes,
            last_sample_at_utc=stat.last_sample_at_utc,
            status=stat.status,
            approved_at_utc=stat.approved_at_utc,
            quality=TravelStatQuality(
                is_low_sample=quality.is_low_sample,
                is_stale=quality.is_stale,
                is_out_of_range=quality.is_out_of_range,
                is_high_deviation=quality.is_high_deviation,
                suspicious_ratio=quality.suspicious_ratio,
                baseline_minutes_per_km=baseline,
                baseline_source=source,
                deviation_percent=quality.deviation_percent,
                flags=quality.flags
            ),
            top_contributors=[
                ContributorResponse.model_validate(c)
                for c in self.crud.top_contributors(stat, TOP_CONTRIBUTORS)
            ]
        )


# Create singleton instance
travel_time_admin_service = TravelTimeAdminService()
