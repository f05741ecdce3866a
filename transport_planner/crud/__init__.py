from transport_planner.crud.base import CRUDBase
from .route import route
from .service_location import service_location
from .weight_template import weight_template
from .cost_settings import cost_settings
from .travel_time import learned_travel_stats

__all__ = [
    "CRUDBase",
    "route",
    "service_location",
    "weight_template",
    "cost_settings",
    "learned_travel_stats",
]
