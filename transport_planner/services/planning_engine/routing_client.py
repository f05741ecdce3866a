"""
Routing client abstraction.

Provides a unified interface for the road-network matrix backends (OSRM,
GraphHopper). Clients return raw tables: seconds and meters, with None for
cells the backend could not route.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from transport_planner.core.config import Settings, settings as default_settings
from transport_planner.core.logging_config import logger


@dataclass(frozen=True)
class MatrixPoint:
    latitude: float
    longitude: float


@dataclass
class RoutingTable:
    durations_seconds: List[List[Optional[float]]]
    distances_meters: List[List[Optional[float]]]


class RoutingClient(Protocol):
    """Protocol for routing clients."""

    name: str

    def get_table(self, points: Sequence[MatrixPoint]) -> RoutingTable:
        """Get the full duration/distance table for the ordered points."""
        ...


def get_routing_client(config: Settings = default_settings) -> Optional[RoutingClient]:
    """
    Factory function to get the configured routing client.

    Returns:
        RoutingClient implementation, or None when matrices should be
        estimated from straight-line distance only
    """
    # Imported here so the protocol module has no import cycle with the clients
    from transport_planner.services.planning_engine.graphhopper_client import GraphHopperClient
    from transport_planner.services.planning_engine.osrm_client import OsrmClient

    provider = (config.ROUTING_PROVIDER or "none").lower()

    if provider == "osrm":
        return OsrmClient(
            base_url=config.OSRM_BASE_URL,
            profile=config.OSRM_PROFILE,
            timeout=config.ROUTING_TIMEOUT_SECONDS
        )
    elif provider == "graphhopper":
        return GraphHopperClient(
            api_key=config.GRAPHHOPPER_API_KEY,
            timeout=config.ROUTING_TIMEOUT_SECONDS
        )
    elif provider == "none":
        return None
    else:
        logger.warning(f"Unknown routing provider '{provider}', using straight-line estimates")
        return None
