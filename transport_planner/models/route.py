import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, Date, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from transport_planner.database import Base, TimestampMixin

class RouteStatus(str, enum.Enum):
    temp = "temp"          # produced by a planning run, not yet confirmed
    fixed = "fixed"        # confirmed by staff; later runs leave it alone
    planned = "planned"
    started = "started"
    completed = "completed"

class RouteStopStatus(str, enum.Enum):
    pending = "pending"
    arrived = "arrived"
    completed = "completed"
    skipped = "skipped"
    not_visited = "not_visited"

class RouteStopType(str, enum.Enum):
    location = "location"
    cluster = "cluster"


class Route(Base, TimestampMixin):
    __tablename__ = "route"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("driver.id"), nullable=False)
    service_type_id = Column(Integer, ForeignKey("service_type.id"), nullable=True)
    weight_template_id = Column(Integer, ForeignKey("weight_template.id"), nullable=True)
    status = Column(Enum(RouteStatus), nullable=False, default=RouteStatus.temp)
    total_minutes = Column(Integer, nullable=False, default=0)
    total_km = Column(Float, nullable=False, default=0)
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)
    notes = Column(String, nullable=True)

    driver = relationship("Driver")
    stops = relationship(
        "RouteStop",
        back_populates="route",
        order_by="RouteStop.sequence",
        cascade="all, delete-orphan"
    )


class RouteStop(Base, TimestampMixin):
    __tablename__ = "route_stop"
    __table_args__ = (
        UniqueConstraint("route_id", "sequence", name="uq_route_stop_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    route_id = Column(Integer, ForeignKey("route.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    stop_type = Column(Enum(RouteStopType), nullable=False, default=RouteStopType.location)
    service_location_id = Column(Integer, ForeignKey("service_location.id", ondelete="CASCADE"), nullable=True)
    planning_cluster_id = Column(Integer, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    service_minutes = Column(Integer, nullable=False, default=0)
    travel_km_from_prev = Column(Float, nullable=False, default=0)
    travel_minutes_from_prev = Column(Integer, nullable=False, default=0)
    planned_start = Column(DateTime, nullable=True)
    planned_end = Column(DateTime, nullable=True)
    status = Column(Enum(RouteStopStatus), nullable=False, default=RouteStopStatus.pending)
    arrived_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    actual_service_minutes = Column(Integer, nullable=True)
    note = Column(String, nullable=True)

    route = relationship("Route", back_populates="stops")
    service_location = relationship("ServiceLocation")
