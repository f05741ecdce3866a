from sqlalchemy import Column, Integer, String, Boolean
from transport_planner.database import Base, TimestampMixin


class ServiceType(Base, TimestampMixin):
    __tablename__ = "service_type"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
