"""
Travel time / distance matrix provider.

Wraps a routing backend with a TTL-bounded in-process cache keyed by a hash
of the ordered point set. Concurrent misses for the same key share a single
computation. When the backend is missing, fails, or leaves cells empty, the
affected legs are estimated from Haversine distance and the travel-time
model and the result is flagged as degraded.
"""

import hashlib
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from transport_planner.core.config import settings
from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.routing_client import MatrixPoint, RoutingClient
from transport_planner.services.planning_engine.travel_time_model import (
    FALLBACK_MINUTES_PER_KM,
    TravelTimeModel,
    round_half_away_from_zero,
)

EARTH_RADIUS_KM = 6371.0
DEFAULT_DEPARTURE_MINUTE = 8 * 60
CACHE_KEY_PREFIX = "vrp:"


@dataclass(frozen=True)
class MatrixResult:
    travel_minutes: Tuple[Tuple[int, ...], ...]
    distance_km: Tuple[Tuple[float, ...], ...]
    degraded: bool = False

    @property
    def size(self) -> int:
        return len(self.travel_minutes)


def haversine_km(a: MatrixPoint, b: MatrixPoint) -> float:
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def build_cache_key(
    owner_id: int,
    plan_date: date,
    points: Sequence[MatrixPoint],
    departure_minute: Optional[int] = None
) -> str:
    """Deterministic key from owner, date, departure minute and the ordered, 5-decimal rounded coordinates."""
    parts = [str(owner_id), plan_date.strftime("%Y%m%d"), "" if departure_minute is None else str(departure_minute)]
    parts.extend(f"{p.latitude:.5f},{p.longitude:.5f}" for p in points)
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"{CACHE_KEY_PREFIX}{digest}"


class _InFlight:
    def __init__(self):
        self.event = threading.Event()
        self.result: Optional[MatrixResult] = None
        self.error: Optional[Exception] = None


class MatrixProvider:
    """Cached, single-flight matrix computation over an optional routing backend."""

    def __init__(
        self,
        routing_client: Optional[RoutingClient] = None,
        ttl_seconds: int = settings.MATRIX_CACHE_TTL_SECONDS,
        max_entries: int = settings.MATRIX_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic
    ):
        self.routing_client = routing_client
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, MatrixResult]]" = OrderedDict()
        self._inflight: Dict[str, _InFlight] = {}
        self._lock = threading.Lock()

    def get_matrix(
        self,
        cache_key: str,
        points: Sequence[MatrixPoint],
        plan_date: Optional[date] = None,
        departure_minute: Optional[int] = None,
        travel_model: Optional[TravelTimeModel] = None
    ) -> MatrixResult:
        """
        Return the matrix for the ordered points, from cache when fresh.

        Args:
            cache_key: Key derived from the point set (see build_cache_key)
            points: Ordered points; row/column i is points[i]
            plan_date: Date used by the travel-time model for estimated legs
            departure_minute: Minute of day used to pick the hour bucket for estimated legs
            travel_model: Model for estimated legs; 50 km/h when absent

        Returns:
            MatrixResult with a zero diagonal
        """
        if not points:
            return MatrixResult((), (), False)

        with self._lock:
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.info(f"Matrix cache hit: {cache_key[:16]}... ({len(points)} points)")
                return cached

            inflight = self._inflight.get(cache_key)
            is_leader = inflight is None
            if is_leader:
                inflight = _InFlight()
                self._inflight[cache_key] = inflight

        if not is_leader:
            logger.info(f"Waiting for in-flight matrix computation: {cache_key[:16]}...")
            inflight.event.wait()
            if inflight.error is not None:
                raise inflight.error
            return inflight.result

        try:
            result = self._compute(points, plan_date, departure_minute, travel_model)
            # A fallback after a backend failure is retried on the next request
            if result.degraded and self.routing_client is not None:
                logger.warning(f"Not caching degraded matrix: {cache_key[:16]}...")
            else:
                with self._lock:
                    self._store(cache_key, result)
            inflight.result = result
            return result
        except Exception as e:
            inflight.error = e
            raise
        finally:
            with self._lock:
                self._inflight.pop(cache_key, None)
            inflight.event.set()

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def _get_cached(self, cache_key: str) -> Optional[MatrixResult]:
        entry = self._cache.get(cache_key)
        if entry is None:
            return None
        expires_at, result = entry
        if expires_at <= self._clock():
            del self._cache[cache_key]
            return None
        self._cache.move_to_end(cache_key)
        return result

    def _store(self, cache_key: str, result: MatrixResult) -> None:
        self._cache[cache_key] = (self._clock() + self.ttl_seconds, result)
        self._cache.move_to_end(cache_key)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)

    def _compute(
        self,
        points: Sequence[MatrixPoint],
        plan_date: Optional[date],
        departure_minute: Optional[int],
        travel_model: Optional[TravelTimeModel]
    ) -> MatrixResult:
        size = len(points)
        departure = DEFAULT_DEPARTURE_MINUTE if departure_minute is None else departure_minute

        def estimate(i: int, j: int) -> Tuple[int, float]:
            km = haversine_km(points[i], points[j])
            if travel_model is not None and plan_date is not None:
                minutes = travel_model.estimate_minutes(
                    plan_date, departure, km,
                    points[i].latitude, points[i].longitude,
                    points[j].latitude, points[j].longitude
                )
            else:
                minutes = max(0, round_half_away_from_zero(km * FALLBACK_MINUTES_PER_KM))
            return minutes, km

        table = None
        if self.routing_client is None:
            logger.warning(f"No routing backend configured, estimating {size}x{size} matrix from straight-line distance")
        else:
            try:
                table = self.routing_client.get_table(points)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"Routing backend '{self.routing_client.name}' failed, falling back to straight-line matrix: {e}"
                )

        minutes: List[List[int]] = [[0] * size for _ in range(size)]
        km: List[List[float]] = [[0.0] * size for _ in range(size)]
        degraded = table is None
        fallback_cells = 0

        for i in range(size):
            for j in range(size):
                if i == j:
                    continue
                seconds = meters = None
                if table is not None:
                    seconds = _cell(table.durations_seconds, i, j)
                    meters = _cell(table.distances_meters, i, j)
                if seconds is None or meters is None:
                    minutes[i][j], km[i][j] = estimate(i, j)
                    fallback_cells += 1
                    continue
                minutes[i][j] = max(0, round_half_away_from_zero(seconds / 60.0))
                km[i][j] = meters / 1000.0

        if table is not None and fallback_cells:
            degraded = True
            logger.warning(f"Routing backend left {fallback_cells} cells empty, estimated from straight-line distance")

        logger.info(f"Matrix computed: {size}x{size}, degraded={degraded}")
        return MatrixResult(
            travel_minutes=tuple(tuple(row) for row in minutes),
            distance_km=tuple(tuple(row) for row in km),
            degraded=degraded
        )


def _cell(table: List[List[Optional[float]]], i: int, j: int) -> Optional[float]:
    try:
        return table[i][j]
    except (IndexError, TypeError):
        return None
