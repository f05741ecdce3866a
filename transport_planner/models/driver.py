from sqlalchemy import Column, Integer, String, Float, ForeignKey, Boolean, Date, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from transport_planner.database import Base, TimestampMixin


class Driver(Base, TimestampMixin):
    __tablename__ = "driver"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    start_address = Column(String, nullable=True)
    start_latitude = Column(Float, nullable=True)
    start_longitude = Column(Float, nullable=True)
    default_service_minutes = Column(Integer, nullable=False, default=20)
    max_work_minutes_per_day = Column(Integer, nullable=False, default=480)
    is_active = Column(Boolean, nullable=False, default=True)

    availabilities = relationship("DriverAvailability", back_populates="driver")
    service_types = relationship("DriverServiceType", back_populates="driver")

    @property
    def service_type_ids(self):
        return sorted({dst.service_type_id for dst in self.service_types})


class DriverServiceType(Base):
    __tablename__ = "driver_service_type"

    driver_id = Column(Integer, ForeignKey("driver.id", ondelete="CASCADE"), primary_key=True)
    service_type_id = Column(Integer, ForeignKey("service_type.id", ondelete="CASCADE"), primary_key=True)

    driver = relationship("Driver", back_populates="service_types")


class DriverAvailability(Base, TimestampMixin):
    __tablename__ = "driver_availability"
    __table_args__ = (
        UniqueConstraint("driver_id", "date", name="uq_driver_availability_driver_date"),
        CheckConstraint("start_minute_of_day >= 0 AND start_minute_of_day <= 1439", name="ck_availability_start"),
        CheckConstraint("end_minute_of_day >= 1 AND end_minute_of_day <= 1440", name="ck_availability_end"),
        CheckConstraint("end_minute_of_day > start_minute_of_day", name="ck_availability_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, ForeignKey("driver.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    start_minute_of_day = Column(Integer, nullable=False)
    end_minute_of_day = Column(Integer, nullable=False)

    driver = relationship("Driver", back_populates="availabilities")

    @property
    def available_minutes(self) -> int:
        return self.end_minute_of_day - self.start_minute_of_day
