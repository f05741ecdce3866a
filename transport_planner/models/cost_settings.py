from sqlalchemy import Column, Integer, String, Float
from transport_planner.database import Base, TimestampMixin


class SystemCostSettings(Base, TimestampMixin):
    """Flat cost model per owner. A row with owner_id NULL is the system-wide default."""
    __tablename__ = "system_cost_settings"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True, unique=True)
    fuel_cost_per_km = Column(Float, nullable=False, default=0)
    personnel_cost_per_hour = Column(Float, nullable=False, default=0)
    currency_code = Column(String(3), nullable=False, default="EUR")
