"""
Planning package for daily driver routes.

This package provides modular components for:
- Opening-hours and time-window resolution
- Travel time estimation and learning from completed legs
- Travel matrix calculation via OSRM / GraphHopper with caching
- Candidate and constraint building from model data
- Multi-objective cost weighting
- Route optimization via Google OR-Tools
- Result mapping and storage
"""

from .time_windows import TimeRange, TimeWindow, ScheduleResult, build_window, try_schedule
from .travel_time_model import TravelTimeModel, assess_quality, should_quarantine
from .routing_client import MatrixPoint, RoutingClient, get_routing_client
from .osrm_client import OsrmClient
from .graphhopper_client import GraphHopperClient
from .matrix_provider import MatrixProvider, MatrixResult, build_cache_key
from .input_builder import PlanningInputBuilder, PlanningProblem
from .cost_model import CostModel, CostSettings, WeightSet, travel_cost
from .optimizer import (
    OptimizerProblem,
    OptimizerSolution,
    OptimizerTuning,
    OrToolsRouteOptimizer,
    RouteOptimizer,
    build_optimizer_problem,
)
from .result_mapper import MappedResult, ResultMapper
from .route_storage import RouteStorage

__all__ = [
    "TimeRange",
    "TimeWindow",
    "ScheduleResult",
    "build_window",
    "try_schedule",
    "TravelTimeModel",
    "assess_quality",
    "should_quarantine",
    "MatrixPoint",
    "RoutingClient",
    "get_routing_client",
    "OsrmClient",
    "GraphHopperClient",
    "MatrixProvider",
    "MatrixResult",
    "build_cache_key",
    "PlanningInputBuilder",
    "PlanningProblem",
    "CostModel",
    "CostSettings",
    "WeightSet",
    "travel_cost",
    "OptimizerProblem",
    "OptimizerSolution",
    "OptimizerTuning",
    "OrToolsRouteOptimizer",
    "RouteOptimizer",
    "build_optimizer_problem",
    "MappedResult",
    "ResultMapper",
    "RouteStorage",
]
