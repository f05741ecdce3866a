"""
OSRM client for duration and distance tables.

Handles communication with the OSRM table service.
"""

from typing import Optional, Sequence

import httpx

from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.routing_client import MatrixPoint, RoutingTable


class OsrmClient:
    """Client for an OSRM server (self-hosted or the public demo)."""

    DEFAULT_BASE_URL = "https://router.project-osrm.org"
    name = "osrm"

    def __init__(
        self,
        base_url: Optional[str] = None,
        profile: str = "driving",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize OSRM client.

        Args:
            base_url: Server root; defaults to the public demo server
            profile: OSRM profile name
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.transport = transport

    def get_table(self, points: Sequence[MatrixPoint]) -> RoutingTable:
        """
        Request the table for all points.

        Returns:
            RoutingTable with seconds/meters; unroutable cells are None

        Raises:
            httpx.HTTPError: On transport or status errors
            ValueError: If the response carries no tables
        """
        # OSRM expects lon,lat
        coords = ";".join(f"{p.longitude},{p.latitude}" for p in points)
        url = f"{self.base_url}/table/v1/{self.profile}/{coords}"

        logger.info(f"Requesting matrix from OSRM: {len(points)} points, profile={self.profile}")

        with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
            response = client.get(url, params={"annotations": "duration,distance"})
            response.raise_for_status()
            data = response.json()

        if data.get("code", "Ok") != "Ok":
            raise ValueError(f"OSRM table request failed: {data.get('code')} {data.get('message', '')}")

        durations = data.get("durations")
        distances = data.get("distances")
        if not durations or not distances:
            raise ValueError("Empty matrix returned from OSRM")

        return RoutingTable(durations_seconds=durations, distances_meters=distances)
