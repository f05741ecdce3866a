import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, Boolean, Date, Time, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from transport_planner.database import Base, TimestampMixin

class ServiceLocationStatus(str, enum.Enum):
    open = "open"
    planned = "planned"
    done = "done"
    cancelled = "cancelled"
    not_visited = "not_visited"


class ServiceLocation(Base, TimestampMixin):
    __tablename__ = "service_location"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    service_type_id = Column(Integer, ForeignKey("service_type.id"), nullable=False)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    due_date = Column(Date, nullable=False)
    priority_date = Column(Date, nullable=True)
    service_minutes = Column(Integer, nullable=False, default=20)
    status = Column(Enum(ServiceLocationStatus), nullable=False, default=ServiceLocationStatus.open)
    is_active = Column(Boolean, nullable=False, default=True)
    driver_instruction = Column(String, nullable=True)

    opening_hours = relationship("ServiceLocationOpeningHours", back_populates="service_location")
    exceptions = relationship("ServiceLocationException", back_populates="service_location")
    constraint = relationship("ServiceLocationConstraint", back_populates="service_location", uselist=False)


class ServiceLocationOpeningHours(Base):
    """Weekly opening hours; day_of_week 0 = Sunday .. 6 = Saturday. A second range models a lunch break."""
    __tablename__ = "service_location_opening_hours"
    __table_args__ = (
        UniqueConstraint("service_location_id", "day_of_week", name="uq_opening_hours_location_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    service_location_id = Column(Integer, ForeignKey("service_location.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    open_time2 = Column(Time, nullable=True)
    close_time2 = Column(Time, nullable=True)
    is_closed = Column(Boolean, nullable=False, default=False)

    service_location = relationship("ServiceLocation", back_populates="opening_hours")


class ServiceLocationException(Base):
    """Date-specific override of the weekly opening hours."""
    __tablename__ = "service_location_exception"

    id = Column(Integer, primary_key=True, index=True)
    service_location_id = Column(Integer, ForeignKey("service_location.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    is_closed = Column(Boolean, nullable=False, default=False)
    note = Column(String, nullable=True)

    service_location = relationship("ServiceLocation", back_populates="exceptions")


class ServiceLocationConstraint(Base):
    __tablename__ = "service_location_constraint"

    id = Column(Integer, primary_key=True, index=True)
    service_location_id = Column(Integer, ForeignKey("service_location.id", ondelete="CASCADE"), nullable=False, unique=True)
    min_visit_duration_minutes = Column(Integer, nullable=True)
    max_visit_duration_minutes = Column(Integer, nullable=True)

    service_location = relationship("ServiceLocation", back_populates="constraint")
