from transport_planner.services.planning import planning_service
from .travel_time_admin import travel_time_admin_service

__all__ = ["planning_service", "travel_time_admin_service"]
