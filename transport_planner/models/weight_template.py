import enum
from sqlalchemy import Column, Integer, String, Float, ForeignKey, Boolean, Enum
from sqlalchemy.orm import relationship
from transport_planner.database import Base, TimestampMixin

class WeightTemplateScope(str, enum.Enum):
    global_scope = "global"
    owner = "owner"
    service_type = "service_type"


class WeightTemplate(Base, TimestampMixin):
    __tablename__ = "weight_template"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    scope_type = Column(Enum(WeightTemplateScope), nullable=False, default=WeightTemplateScope.global_scope)
    owner_id = Column(Integer, nullable=True, index=True)
    service_type_id = Column(Integer, ForeignKey("service_type.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    weight_distance = Column(Float, nullable=False, default=1)
    weight_travel_time = Column(Float, nullable=False, default=1)
    weight_date = Column(Float, nullable=False, default=1)
    weight_cost = Column(Float, nullable=False, default=1)
    weight_overtime = Column(Float, nullable=False, default=1)

    # Solver tuning caps applied when this template drives a run
    time_limit_seconds = Column(Integer, nullable=True)
    solution_limit = Column(Integer, nullable=True)

    location_links = relationship("WeightTemplateLocationLink", back_populates="weight_template")


class WeightTemplateLocationLink(Base):
    __tablename__ = "weight_template_location_link"

    weight_template_id = Column(Integer, ForeignKey("weight_template.id", ondelete="CASCADE"), primary_key=True)
    service_location_id = Column(Integer, ForeignKey("service_location.id", ondelete="CASCADE"), primary_key=True)

    weight_template = relationship("WeightTemplate", back_populates="location_links")
