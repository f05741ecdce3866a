from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from transport_planner.models.travel_time import DayType, LearnedTravelStatStatus


class TravelStatQuality(BaseModel):
    """Admin-facing quality flags. They gate approval and quarantine, never estimation."""
    is_low_sample: bool
    is_stale: bool
    is_out_of_range: bool
    is_high_deviation: bool
    suspicious_ratio: float
    baseline_minutes_per_km: Optional[float] = None
    baseline_source: Optional[str] = None
    deviation_percent: Optional[float] = None
    flags: List[str] = []


class ContributorResponse(BaseModel):
    driver_id: int
    sample_count: int
    last_contribution_utc: Optional[datetime] = None

    class Config:
        from_attributes = True


class LearnedStatResponse(BaseModel):
    id: int
    region_id: int
    day_type: DayType
    bucket_start_hour: int
    bucket_end_hour: int
    distance_band_km_min: float
    distance_band_km_max: float
    sample_count: int
    total_sample_count: int
    suspicious_sample_count: int
    avg_minutes_per_km: Optional[float] = None
    min_minutes_per_km: Optional[float] = None
    max_minutes_per_km: Optional[float] = None
    avg_stop_service_minutes: Optional[float] = None
    last_sample_at_utc: Optional[datetime] = None
    status: LearnedTravelStatStatus
    approved_at_utc: Optional[datetime] = None
    quality: TravelStatQuality
    top_contributors: List[ContributorResponse] = []


class StatusUpdateRequest(BaseModel):
    status: LearnedTravelStatStatus
    force: bool = Field(default=False, description="Approve even while quality flags are raised")
    note: Optional[str] = Field(None, max_length=500)


class TravelSampleCreate(BaseModel):
    """A completed leg reported by a driver."""
    date: date
    departure_minute: int = Field(..., ge=0, le=1439)
    distance_km: float = Field(..., gt=0)
    travel_minutes: float = Field(..., gt=0)
    driver_id: int
    start_latitude: float = Field(..., ge=-90, le=90)
    start_longitude: float = Field(..., ge=-180, le=180)
    end_latitude: float = Field(..., ge=-90, le=90)
    end_longitude: float = Field(..., ge=-180, le=180)
    stop_service_minutes: Optional[float] = Field(None, ge=0)
