"""
GraphHopper API client for distance and duration matrix calculation.

Handles communication with GraphHopper Matrix API.
"""

from typing import Optional, Sequence

import httpx

from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.routing_client import MatrixPoint, RoutingTable


class GraphHopperClient:
    """Client for GraphHopper API."""

    BASE_URL = "https://graphhopper.com/api/1"
    name = "graphhopper"

    def __init__(
        self,
        api_key: Optional[str] = None,
        profile: str = "car",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize GraphHopper client.

        Args:
            api_key: GraphHopper API key
            profile: Vehicle profile
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.profile = profile
        self.timeout = timeout
        self.transport = transport
        if not self.api_key:
            logger.warning("GRAPHHOPPER_API_KEY not set. Matrix requests will fall back to estimates.")

    def get_table(self, points: Sequence[MatrixPoint]) -> RoutingTable:
        """
        Request the matrix for all points.

        Returns:
            RoutingTable with seconds/meters; unreachable cells are None

        Raises:
            httpx.HTTPError: On transport or status errors
            ValueError: If no API key is set or the response carries no matrix
        """
        if not self.api_key:
            raise ValueError("GraphHopper API key is not configured")

        # GraphHopper expects [lon, lat] arrays
        payload = {
            "points": [[p.longitude, p.latitude] for p in points],
            "profile": self.profile,
            "out_arrays": ["distances", "times"],
            "fail_fast": False
        }

        logger.info(f"Requesting matrix from GraphHopper: {len(points)} points, profile={self.profile}")

        with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
            response = client.post(f"{self.BASE_URL}/matrix", params={"key": self.api_key}, json=payload)
            response.raise_for_status()
            data = response.json()

        distances = data.get("distances")
        times = data.get("times")
        if not distances or not times:
            raise ValueError("Empty matrix returned from GraphHopper")

        return RoutingTable(durations_seconds=times, distances_meters=distances)
