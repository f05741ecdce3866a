"""
Adaptive travel-time model.

Estimates minutes for a leg from minutes-per-km statistics keyed by
(region, day type, hour bucket, distance band). Learned statistics from
completed visits are preferred once trusted; static regional speed profiles
and a flat 50 km/h are the fallbacks. Also merges new samples and computes
the quality flags administrators use to approve or quarantine statistics.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from shapely.geometry import Point, box
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from transport_planner.core.config import Settings, settings as default_settings
from transport_planner.core.logging_config import logger
from transport_planner.models.travel_time import (
    DayType,
    LearnedTravelStatContributor,
    LearnedTravelStats,
    LearnedTravelStatStatus,
    RegionSpeedProfile,
    TravelTimeRegion,
)

DISTANCE_BANDS_KM = (0, 5, 15, 30, 60, 120, 10000)
DEFAULT_SPEED_KMH = 50.0
FALLBACK_MINUTES_PER_KM = 60.0 / DEFAULT_SPEED_KMH

SUSPICIOUS_MPK_MIN = 0.3
SUSPICIOUS_MPK_MAX = 6.0

MAX_MERGE_ATTEMPTS = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_half_away_from_zero(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def day_type_for(target_date: date) -> DayType:
    return DayType.weekend if target_date.weekday() >= 5 else DayType.weekday


def hour_bucket(departure_minute: int) -> Tuple[int, int]:
    hour = min(max(departure_minute // 60, 0), 23)
    return hour, hour + 1


def distance_band(distance_km: float) -> Tuple[float, float]:
    distance = max(0.0, distance_km)
    for band_min, band_max in zip(DISTANCE_BANDS_KM, DISTANCE_BANDS_KM[1:]):
        if band_min <= distance < band_max:
            return float(band_min), float(band_max)
    return float(DISTANCE_BANDS_KM[-2]), float(DISTANCE_BANDS_KM[-1])


def is_suspicious_sample(travel_minutes: float, minutes_per_km: float, band: Tuple[float, float]) -> bool:
    """Implausible leg for its band: a very slow short hop, a very fast medium leg, or an absurd pace."""
    if band == (0.0, 5.0) and travel_minutes > 90:
        return True
    if band == (30.0, 60.0) and travel_minutes < 10:
        return True
    return minutes_per_km < SUSPICIOUS_MPK_MIN or minutes_per_km > SUSPICIOUS_MPK_MAX


def select_region(
    regions: Sequence[TravelTimeRegion],
    lat: float,
    lng: float,
    global_region_id: int
) -> Optional[TravelTimeRegion]:
    """
    Pick the governing region for a point.

    Highest priority among regions whose bounding box covers the point wins,
    ties go to the lowest id. Without a match the catch-all region is used.
    """
    point = Point(lng, lat)
    ordered = sorted(regions, key=lambda r: (-r.priority, r.id))
    for region in ordered:
        bbox = box(region.bbox_min_lon, region.bbox_min_lat, region.bbox_max_lon, region.bbox_max_lat)
        if bbox.covers(point):
            return region

    return next((r for r in regions if r.id == global_region_id), None)


@dataclass(frozen=True)
class TravelKey:
    region_id: Optional[int]
    day_type: DayType
    bucket_start_hour: int
    bucket_end_hour: int
    band_min_km: float
    band_max_km: float


@dataclass(frozen=True)
class MinutesPerKmEstimate:
    minutes_per_km: float
    source: str  # "learned", "profile", "global_profile" or "default"


@dataclass
class StatQuality:
    baseline_minutes_per_km: float
    deviation_percent: Optional[float]
    is_low_sample: bool
    is_stale: bool
    is_out_of_range: bool
    is_high_deviation: bool
    suspicious_ratio: float
    flags: List[str] = field(default_factory=list)

    @property
    def blocks_approval(self) -> bool:
        return bool(self.flags)


def assess_quality(
    stat: LearnedTravelStats,
    baseline_minutes_per_km: float,
    config: Settings = default_settings,
    now: Optional[datetime] = None
) -> StatQuality:
    """
    Compute admin-facing quality flags for one learned statistic.

    Args:
        stat: Learned statistic row
        baseline_minutes_per_km: Regional profile value the stat is compared against
        config: Settings carrying the thresholds
        now: Reference time (UTC, naive)

    Returns:
        StatQuality with the individual flags and the names of those raised
    """
    now = now or utc_now()
    avg = stat.avg_minutes_per_km

    deviation = None
    if avg is not None and baseline_minutes_per_km > 0:
        deviation = (avg - baseline_minutes_per_km) / baseline_minutes_per_km * 100.0

    is_out_of_range = avg is not None and (
        avg < config.TRAVEL_TIME_PLAUSIBLE_MPK_MIN or avg > config.TRAVEL_TIME_PLAUSIBLE_MPK_MAX
    )

    is_stale = False
    if config.TRAVEL_TIME_STALE_AFTER_DAYS > 0:
        cutoff = now - timedelta(days=config.TRAVEL_TIME_STALE_AFTER_DAYS)
        is_stale = stat.last_sample_at_utc is None or stat.last_sample_at_utc < cutoff

    is_low_sample = (
        config.TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD > 0
        and (stat.total_sample_count or 0) < config.TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD
    )
    is_high_deviation = (
        config.TRAVEL_TIME_DEVIATION_WARN_PERCENT > 0
        and deviation is not None
        and abs(deviation) >= config.TRAVEL_TIME_DEVIATION_WARN_PERCENT
    )

    total = stat.total_sample_count or 0
    suspicious_ratio = (stat.suspicious_sample_count or 0) / total if total > 0 else 0.0

    flags = []
    if is_low_sample:
        flags.append("low_sample")
    if is_stale:
        flags.append("stale")
    if is_out_of_range:
        flags.append("out_of_range")
    if is_high_deviation:
        flags.append("high_deviation")
    if suspicious_ratio >= config.TRAVEL_TIME_SUSPICIOUS_RATIO_QUARANTINE > 0:
        flags.append("suspicious_ratio")

    return StatQuality(
        baseline_minutes_per_km=baseline_minutes_per_km,
        deviation_percent=deviation,
        is_low_sample=is_low_sample,
        is_stale=is_stale,
        is_out_of_range=is_out_of_range,
        is_high_deviation=is_high_deviation,
        suspicious_ratio=suspicious_ratio,
        flags=flags
    )


def should_quarantine(quality: StatQuality) -> bool:
    """Anomalies that pull a statistic out of use until a human reviews it."""
    return quality.is_out_of_range or "suspicious_ratio" in quality.flags


class TravelTimeModel:
    """Travel-time estimation and sample learning backed by the database."""

    def __init__(self, db: Session, config: Settings = default_settings):
        self.db = db
        self.config = config
        self._regions: Optional[List[TravelTimeRegion]] = None
        self._profile_cache: Dict[tuple, Optional[float]] = {}
        self._learned_cache: Dict[TravelKey, Optional[float]] = {}

    # -- lookups -----------------------------------------------------------

    @property
    def regions(self) -> List[TravelTimeRegion]:
        if self._regions is None:
            self._regions = list(self.db.execute(select(TravelTimeRegion)).scalars().all())
        return self._regions

    def resolve_region(
        self,
        start_lat: float,
        start_lng: float,
        end_lat: float,
        end_lng: float
    ) -> Optional[TravelTimeRegion]:
        """Region governing the leg's midpoint."""
        mid_lat = (start_lat + end_lat) / 2.0
        mid_lng = (start_lng + end_lng) / 2.0
        return select_region(self.regions, mid_lat, mid_lng, self.config.TRAVEL_TIME_GLOBAL_REGION_ID)

    def build_key(
        self,
        target_date: date,
        departure_minute: int,
        distance_km: float,
        start_lat: float,
        start_lng: float,
        end_lat: float,
        end_lng: float
    ) -> TravelKey:
        region = self.resolve_region(start_lat, start_lng, end_lat, end_lng)
        bucket_start, bucket_end = hour_bucket(departure_minute)
        band_min, band_max = distance_band(distance_km)
        return TravelKey(
            region_id=region.id if region else None,
            day_type=day_type_for(target_date),
            bucket_start_hour=bucket_start,
            bucket_end_hour=bucket_end,
            band_min_km=band_min,
            band_max_km=band_max
        )

    def learned_minutes_per_km(self, key: TravelKey) -> Optional[float]:
        """Average of a trusted learned statistic for the key, if any."""
        if key.region_id is None:
            return None
        if key in self._learned_cache:
            return self._learned_cache[key]

        # Any bucket containing the key's hours; the narrowest wins, then the lowest id
        stmt = select(LearnedTravelStats).where(
            LearnedTravelStats.region_id == key.region_id,
            LearnedTravelStats.day_type == key.day_type,
            LearnedTravelStats.bucket_start_hour <= key.bucket_start_hour,
            LearnedTravelStats.bucket_end_hour >= key.bucket_end_hour,
            LearnedTravelStats.distance_band_km_min == key.band_min_km,
            LearnedTravelStats.distance_band_km_max == key.band_max_km
        ).order_by(
            LearnedTravelStats.bucket_end_hour - LearnedTravelStats.bucket_start_hour,
            LearnedTravelStats.id
        )
        if self.config.TRAVEL_TIME_USE_LEARNED_ONLY_IF_APPROVED:
            stmt = stmt.where(LearnedTravelStats.status == LearnedTravelStatStatus.approved)
        if self.config.TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD > 0:
            stmt = stmt.where(
                LearnedTravelStats.total_sample_count >= self.config.TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD
            )
        if self.config.TRAVEL_TIME_STALE_AFTER_DAYS > 0:
            cutoff = utc_now() - timedelta(days=self.config.TRAVEL_TIME_STALE_AFTER_DAYS)
            stmt = stmt.where(
                LearnedTravelStats.last_sample_at_utc.is_not(None),
                LearnedTravelStats.last_sample_at_utc >= cutoff
            )

        stat = self.db.execute(stmt.limit(1)).scalar_one_or_none()
        value = stat.avg_minutes_per_km if stat is not None else None
        self._learned_cache[key] = value
        return value

    def profile_minutes_per_km(
        self,
        region_id: Optional[int],
        day_type: DayType,
        bucket_start_hour: int,
        bucket_end_hour: int
    ) -> Optional[float]:
        """
        Static speed profile for a region covering the requested hours, if configured.

        Profiles usually span several hours (e.g. 6-9); the narrowest profile
        containing [bucket_start_hour, bucket_end_hour) is used, ties going to
        the lowest id.
        """
        if region_id is None:
            return None
        cache_key = (region_id, day_type, bucket_start_hour, bucket_end_hour)
        if cache_key in self._profile_cache:
            return self._profile_cache[cache_key]

        stmt = select(RegionSpeedProfile).where(
            RegionSpeedProfile.region_id == region_id,
            RegionSpeedProfile.day_type == day_type,
            RegionSpeedProfile.bucket_start_hour <= bucket_start_hour,
            RegionSpeedProfile.bucket_end_hour >= bucket_end_hour
        ).order_by(
            RegionSpeedProfile.bucket_end_hour - RegionSpeedProfile.bucket_start_hour,
            RegionSpeedProfile.id
        ).limit(1)
        profile = self.db.execute(stmt).scalar_one_or_none()
        value = profile.avg_minutes_per_km if profile is not None else None
        self._profile_cache[cache_key] = value
        return value

    def baseline_minutes_per_km(
        self,
        region_id: Optional[int],
        day_type: DayType,
        bucket_start_hour: int,
        bucket_end_hour: int
    ) -> Tuple[float, str]:
        """Profile for the region, then the catch-all region's profile, then 50 km/h."""
        value = self.profile_minutes_per_km(region_id, day_type, bucket_start_hour, bucket_end_hour)
        if value is not None:
            return value, "profile"

        global_id = self.config.TRAVEL_TIME_GLOBAL_REGION_ID
        if region_id != global_id:
            value = self.profile_minutes_per_km(global_id, day_type, bucket_start_hour, bucket_end_hour)
            if value is not None:
                return value, "global_profile"

        return FALLBACK_MINUTES_PER_KM, "default"

    # -- estimation --------------------------------------------------------

    def estimate_minutes_per_km(self, key: TravelKey) -> MinutesPerKmEstimate:
        learned = self.learned_minutes_per_km(key)
        if learned is not None:
            return MinutesPerKmEstimate(learned, "learned")

        value, source = self.baseline_minutes_per_km(
            key.region_id, key.day_type, key.bucket_start_hour, key.bucket_end_hour
        )
        return MinutesPerKmEstimate(value, source)

    def estimate_minutes(
        self,
        target_date: date,
        departure_minute: int,
        distance_km: float,
        start_lat: float,
        start_lng: float,
        end_lat: float,
        end_lng: float
    ) -> int:
        """
        Estimate whole travel minutes for a leg.

        Args:
            target_date: Travel date (drives the day type)
            departure_minute: Minute of day the leg starts (drives the hour bucket)
            distance_km: Leg distance
            start_lat, start_lng, end_lat, end_lng: Leg endpoints (midpoint drives the region)

        Returns:
            Minutes, rounded half away from zero and never negative
        """
        if distance_km <= 0:
            return 0

        key = self.build_key(
            target_date, departure_minute, distance_km, start_lat, start_lng, end_lat, end_lng
        )
        estimate = self.estimate_minutes_per_km(key)
        minutes = max(estimate.minutes_per_km * distance_km, self._lower_band_floor(key))
        return max(0, round_half_away_from_zero(minutes))

    def _lower_band_floor(self, key: TravelKey) -> float:
        """
        Largest estimate any lower distance band reaches at its upper edge.

        Learned statistics differ per band; with this floor estimates never
        decrease as distance grows.
        """
        floor = 0.0
        for band_min, band_max in zip(DISTANCE_BANDS_KM, DISTANCE_BANDS_KM[1:]):
            if band_max > key.band_min_km:
                break
            lower = replace(key, band_min_km=float(band_min), band_max_km=float(band_max))
            floor = max(floor, self.estimate_minutes_per_km(lower).minutes_per_km * band_max)
        return floor

    # -- learning ----------------------------------------------------------

    def record_sample(
        self,
        target_date: date,
        departure_minute: int,
        distance_km: float,
        travel_minutes: float,
        driver_id: int,
        start_lat: float,
        start_lng: float,
        end_lat: float,
        end_lng: float,
        stop_service_minutes: Optional[float] = None
    ) -> LearnedTravelStats:
        """
        Merge one completed leg into its learned statistic.

        The row for the composite key is locked (and version-checked) while the
        running aggregates are updated, so concurrent completions never lose an
        update. A key seen for the first time is inserted; losing that insert
        race retries against the row the other writer created.

        Raises:
            ValueError: If no region (not even the catch-all) is configured
        """
        key = self.build_key(
            target_date, departure_minute, distance_km, start_lat, start_lng, end_lat, end_lng
        )
        if key.region_id is None:
            raise ValueError("No travel time region configured for this leg and no catch-all region exists")

        attempts = 0
        while True:
            try:
                stat = self._locked_stat(key)
                if stat is None:
                    stat = self._new_stat(key)
                self._merge_sample(stat, distance_km, travel_minutes, stop_service_minutes, driver_id, key)
                self._apply_quarantine(stat)
                self.db.commit()
                break
            except (IntegrityError, StaleDataError) as e:
                self.db.rollback()
                attempts += 1
                if attempts >= MAX_MERGE_ATTEMPTS:
                    logger.error(f"Learned stat merge failed after {attempts} attempts: {e}")
                    raise
                logger.warning(f"Concurrent learned stat merge detected, retrying ({attempts})")

        self._learned_cache.pop(key, None)
        self.db.refresh(stat)
        logger.info(
            f"Recorded travel sample: stat={stat.id}, region={key.region_id}, "
            f"{key.day_type.value} {key.bucket_start_hour}-{key.bucket_end_hour}h, "
            f"band={key.band_min_km:g}-{key.band_max_km:g}km, samples={stat.total_sample_count}"
        )
        return stat

    def _locked_stat(self, key: TravelKey) -> Optional[LearnedTravelStats]:
        stmt = select(LearnedTravelStats).where(
            LearnedTravelStats.region_id == key.region_id,
            LearnedTravelStats.day_type == key.day_type,
            LearnedTravelStats.bucket_start_hour == key.bucket_start_hour,
            LearnedTravelStats.bucket_end_hour == key.bucket_end_hour,
            LearnedTravelStats.distance_band_km_min == key.band_min_km,
            LearnedTravelStats.distance_band_km_max == key.band_max_km
        ).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def _new_stat(self, key: TravelKey) -> LearnedTravelStats:
        stat = LearnedTravelStats(
            region_id=key.region_id,
            day_type=key.day_type,
            bucket_start_hour=key.bucket_start_hour,
            bucket_end_hour=key.bucket_end_hour,
            distance_band_km_min=key.band_min_km,
            distance_band_km_max=key.band_max_km,
            sample_count=0,
            total_sample_count=0,
            suspicious_sample_count=0,
            status=LearnedTravelStatStatus.draft
        )
        self.db.add(stat)
        self.db.flush()
        return stat

    def _merge_sample(
        self,
        stat: LearnedTravelStats,
        distance_km: float,
        travel_minutes: float,
        stop_service_minutes: Optional[float],
        driver_id: int,
        key: TravelKey
    ) -> None:
        now = utc_now()
        minutes_per_km = travel_minutes / distance_km if distance_km > 0 else 0.0
        previous_count = stat.sample_count or 0
        new_count = previous_count + 1

        existing_avg = stat.avg_minutes_per_km or 0.0
        stat.avg_minutes_per_km = (existing_avg * previous_count + minutes_per_km) / new_count
        stat.sample_count = new_count
        stat.total_sample_count = new_count
        stat.last_sample_at_utc = now

        if stat.min_minutes_per_km is None or minutes_per_km < stat.min_minutes_per_km:
            stat.min_minutes_per_km = minutes_per_km
        if stat.max_minutes_per_km is None or minutes_per_km > stat.max_minutes_per_km:
            stat.max_minutes_per_km = minutes_per_km

        if is_suspicious_sample(travel_minutes, minutes_per_km, (key.band_min_km, key.band_max_km)):
            stat.suspicious_sample_count = (stat.suspicious_sample_count or 0) + 1

        if stop_service_minutes is not None:
            existing_service = stat.avg_stop_service_minutes
            if existing_service is None:
                existing_service = stop_service_minutes
            stat.avg_stop_service_minutes = (existing_service * previous_count + stop_service_minutes) / new_count

        if driver_id and driver_id > 0:
            contributor = next((c for c in stat.contributors if c.driver_id == driver_id), None)
            if contributor is None:
                contributor = LearnedTravelStatContributor(driver_id=driver_id, sample_count=0)
                stat.contributors.append(contributor)
            contributor.sample_count = (contributor.sample_count or 0) + 1
            contributor.last_contribution_utc = now

    def _apply_quarantine(self, stat: LearnedTravelStats) -> None:
        if stat.status in (LearnedTravelStatStatus.quarantined, LearnedTravelStatStatus.rejected):
            return

        baseline, _ = self.baseline_minutes_per_km(
            stat.region_id, stat.day_type, stat.bucket_start_hour, stat.bucket_end_hour
        )
        quality = assess_quality(stat, baseline, self.config)
        # Only statistics with enough evidence are judged; a handful of samples is just low_sample
        if quality.is_low_sample or not should_quarantine(quality):
            return

        logger.warning(
            f"Quarantining learned stat {stat.id}: flags={quality.flags}, "
            f"avg={stat.avg_minutes_per_km:.3f} min/km, suspicious_ratio={quality.suspicious_ratio:.2f}"
        )
        stat.status = LearnedTravelStatStatus.quarantined
        stat.approved_at_utc = None
