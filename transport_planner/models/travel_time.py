import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from transport_planner.database import Base, TimestampMixin

class DayType(str, enum.Enum):
    weekday = "weekday"
    weekend = "weekend"

class LearnedTravelStatStatus(str, enum.Enum):
    draft = "draft"
    approved = "approved"
    quarantined = "quarantined"
    rejected = "rejected"


class TravelTimeRegion(Base):
    __tablename__ = "travel_time_region"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    country_code = Column(String, nullable=True)
    bbox_min_lat = Column(Float, nullable=False)
    bbox_min_lon = Column(Float, nullable=False)
    bbox_max_lat = Column(Float, nullable=False)
    bbox_max_lon = Column(Float, nullable=False)
    priority = Column(Integer, nullable=False, default=0)

    speed_profiles = relationship("RegionSpeedProfile", back_populates="region")
    learned_stats = relationship("LearnedTravelStats", back_populates="region")


class RegionSpeedProfile(Base):
    __tablename__ = "region_speed_profile"
    __table_args__ = (
        UniqueConstraint("region_id", "day_type", "bucket_start_hour", "bucket_end_hour", name="uq_speed_profile_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    region_id = Column(Integer, ForeignKey("travel_time_region.id", ondelete="CASCADE"), nullable=False)
    day_type = Column(Enum(DayType), nullable=False)
    bucket_start_hour = Column(Integer, nullable=False)
    bucket_end_hour = Column(Integer, nullable=False)
    avg_minutes_per_km = Column(Float, nullable=False)

    region = relationship("TravelTimeRegion", back_populates="speed_profiles")


class LearnedTravelStats(Base, TimestampMixin):
    __tablename__ = "learned_travel_stats"
    __table_args__ = (
        UniqueConstraint(
            "region_id", "day_type", "bucket_start_hour", "bucket_end_hour",
            "distance_band_km_min", "distance_band_km_max",
            name="uq_learned_travel_stats_key"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    region_id = Column(Integer, ForeignKey("travel_time_region.id", ondelete="CASCADE"), nullable=False)
    day_type = Column(Enum(DayType), nullable=False)
    bucket_start_hour = Column(Integer, nullable=False)
    bucket_end_hour = Column(Integer, nullable=False)
    distance_band_km_min = Column(Float, nullable=False)
    distance_band_km_max = Column(Float, nullable=False)

    sample_count = Column(Integer, nullable=False, default=0)
    total_sample_count = Column(Integer, nullable=False, default=0)
    suspicious_sample_count = Column(Integer, nullable=False, default=0)
    avg_minutes_per_km = Column(Float, nullable=True)
    min_minutes_per_km = Column(Float, nullable=True)
    max_minutes_per_km = Column(Float, nullable=True)
    avg_stop_service_minutes = Column(Float, nullable=True)
    last_sample_at_utc = Column(DateTime, nullable=True)

    status = Column(Enum(LearnedTravelStatStatus), nullable=False, default=LearnedTravelStatStatus.draft)
    approved_at_utc = Column(DateTime, nullable=True)

    # Optimistic concurrency for incremental merges
    version_id = Column(Integer, nullable=False)

    region = relationship("TravelTimeRegion", back_populates="learned_stats")
    contributors = relationship(
        "LearnedTravelStatContributor",
        back_populates="learned_travel_stats",
        cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version_id}


class LearnedTravelStatContributor(Base):
    __tablename__ = "learned_travel_stat_contributor"
    __table_args__ = (
        UniqueConstraint("learned_travel_stats_id", "driver_id", name="uq_learned_stat_contributor"),
    )

    id = Column(Integer, primary_key=True, index=True)
    learned_travel_stats_id = Column(Integer, ForeignKey("learned_travel_stats.id", ondelete="CASCADE"), nullable=False)
    driver_id = Column(Integer, ForeignKey("driver.id", ondelete="CASCADE"), nullable=False)
    sample_count = Column(Integer, nullable=False, default=0)
    last_contribution_utc = Column(DateTime, nullable=True)

    learned_travel_stats = relationship("LearnedTravelStats", back_populates="contributors")
    driver = relationship("Driver")
