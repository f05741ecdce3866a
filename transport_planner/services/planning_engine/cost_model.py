"""
Cost and weight model.

Turns five raw signals (distance, travel time, due-date urgency, money,
overtime) into one weighted score per arc. Each signal is normalized to 0-100
against a reference value taken from the problem itself (90th percentile of
nearest-driver legs), so weights express relative importance rather than
units. Lower scores are better.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from transport_planner.core.logging_config import logger
from transport_planner.services.planning_engine.input_builder import (
    PlanningDriver,
    PlanningProblem,
    PlanningStop,
)

DEFAULT_DISTANCE_REF_KM = 60.0
DEFAULT_TIME_REF_MINUTES = 120.0
DEFAULT_COST_REF = 50.0
DEFAULT_OVERTIME_REF_MINUTES = 60.0

OVERTIME_ALLOWANCE_MINUTES = 60
NORMALIZED_MAX = 100.0
ARC_COST_SCALE = 100
WEIGHT_TOTAL = 100.0

DOUBLE_COUNT_WARNING = (
    "Distance and cost both carry weight; cost already includes fuel per km, "
    "so distance is counted twice"
)


def travel_cost(
    distance_km: float,
    travel_minutes: float,
    fuel_cost_per_km: float,
    personnel_cost_per_hour: float
) -> float:
    """Flat monetary cost of a leg: fuel per km plus personnel time."""
    return max(0.0, distance_km) * fuel_cost_per_km + max(0.0, travel_minutes) / 60.0 * personnel_cost_per_hour


def percentile(values: Sequence[float], fraction: float) -> float:
    """Linear-interpolated percentile of the positive values; 0 when there are none."""
    ordered = sorted(v for v in values if v > 0)
    if not ordered:
        return 0.0
    rank = (len(ordered) - 1) * fraction
    low = math.floor(rank)
    high = math.ceil(rank)
    if low == high:
        return ordered[low]
    return ordered[low] + (ordered[high] - ordered[low]) * (rank - low)


@dataclass(frozen=True)
class WeightSet:
    distance: float = 0.0
    time: float = 0.0
    date: float = 0.0
    cost: float = 0.0
    overtime: float = 0.0

    @property
    def total(self) -> float:
        return self.distance + self.time + self.date + self.cost + self.overtime


@dataclass(frozen=True)
class CostSettings:
    fuel_cost_per_km: float = 0.0
    personnel_cost_per_hour: float = 0.0
    currency_code: str = "EUR"


@dataclass(frozen=True)
class NormalizationReferences:
    distance_km: float = DEFAULT_DISTANCE_REF_KM
    time_minutes: float = DEFAULT_TIME_REF_MINUTES
    cost: float = DEFAULT_COST_REF
    overtime_minutes: float = DEFAULT_OVERTIME_REF_MINUTES


@dataclass(frozen=True)
class CostSignals:
    distance_km: float
    travel_minutes: float
    due_penalty: float
    cost: float
    overtime_minutes: float


def effective_weights(weights: WeightSet, normalize: bool) -> WeightSet:
    """
    Clamp negatives to 0, fall back to pure travel time when nothing is
    weighted, and optionally rescale so the weights sum to 100.
    """
    clamped = WeightSet(
        distance=max(0.0, weights.distance),
        time=max(0.0, weights.time),
        date=max(0.0, weights.date),
        cost=max(0.0, weights.cost),
        overtime=max(0.0, weights.overtime)
    )
    if clamped != weights:
        logger.warning(f"Negative weights clamped to 0: {weights}")

    if clamped.total <= 0:
        logger.warning("All weights are zero, optimizing travel time only")
        return WeightSet(time=WEIGHT_TOTAL)

    if not normalize:
        return clamped

    factor = WEIGHT_TOTAL / clamped.total
    return WeightSet(
        distance=clamped.distance * factor,
        time=clamped.time * factor,
        date=clamped.date * factor,
        cost=clamped.cost * factor,
        overtime=clamped.overtime * factor
    )


def build_normalization_references(problem: PlanningProblem, cost_settings: CostSettings) -> NormalizationReferences:
    """
    Reference values from the nearest driver to each stop.

    Uses the 90th percentile of those legs so a few remote stops do not
    flatten every other signal; falls back to fixed defaults when empty.
    """
    distance_samples: List[float] = []
    time_samples: List[float] = []
    cost_samples: List[float] = []
    matrix = problem.matrix

    for stop in problem.stops:
        if not problem.drivers:
            break
        min_km = min(matrix.distance_km[d.point_index][stop.point_index] for d in problem.drivers)
        min_minutes = min(matrix.travel_minutes[d.point_index][stop.point_index] for d in problem.drivers)
        distance_samples.append(min_km)
        time_samples.append(min_minutes + stop.service_minutes)
        cost_samples.append(travel_cost(
            min_km, min_minutes, cost_settings.fuel_cost_per_km, cost_settings.personnel_cost_per_hour
        ))

    return NormalizationReferences(
        distance_km=percentile(distance_samples, 0.9) or DEFAULT_DISTANCE_REF_KM,
        time_minutes=percentile(time_samples, 0.9) or DEFAULT_TIME_REF_MINUTES,
        cost=percentile(cost_samples, 0.9) or DEFAULT_COST_REF,
        overtime_minutes=DEFAULT_OVERTIME_REF_MINUTES
    )


def _normalize(value: float, reference: float) -> float:
    if reference <= 0:
        return 0.0
    return max(0.0, min(1.0, value / reference)) * NORMALIZED_MAX


class CostModel:
    """Weighted multi-objective scoring for one planning problem."""

    def __init__(
        self,
        problem: PlanningProblem,
        weights: WeightSet,
        cost_settings: CostSettings,
        normalize_weights: bool = False,
        references: Optional[NormalizationReferences] = None
    ):
        self.problem = problem
        self.cost_settings = cost_settings
        self.weights = effective_weights(weights, normalize_weights)
        self.references = references or build_normalization_references(problem, cost_settings)
        self.warnings: List[str] = []

        if self.weights.distance > 0 and self.weights.cost > 0:
            logger.warning(DOUBLE_COUNT_WARNING)
            self.warnings.append(DOUBLE_COUNT_WARNING)

        logger.info(
            f"Cost model: weights={self.weights}, refs=({self.references.distance_km:.1f} km, "
            f"{self.references.time_minutes:.0f} min, {self.references.cost:.2f} "
            f"{cost_settings.currency_code})"
        )

    def signals(
        self,
        distance_km: float,
        travel_minutes: float,
        due_penalty: float = 0.0,
        overtime_minutes: float = 0.0
    ) -> CostSignals:
        return CostSignals(
            distance_km=distance_km,
            travel_minutes=travel_minutes,
            due_penalty=due_penalty,
            cost=travel_cost(
                distance_km,
                travel_minutes,
                self.cost_settings.fuel_cost_per_km,
                self.cost_settings.personnel_cost_per_hour
            ),
            overtime_minutes=overtime_minutes
        )

    def score(self, signals: CostSignals, service_minutes: float = 0.0) -> float:
        """Weighted sum of the normalized signals. Service time counts toward the time signal."""
        w = self.weights
        refs = self.references
        total = (
            w.distance * _normalize(signals.distance_km, refs.distance_km)
            + w.time * _normalize(signals.travel_minutes + service_minutes, refs.time_minutes)
            + w.date * max(0.0, min(1.0, signals.due_penalty)) * NORMALIZED_MAX
            + w.cost * _normalize(signals.cost, refs.cost)
            + w.overtime * _normalize(signals.overtime_minutes, refs.overtime_minutes)
        )
        return total / WEIGHT_TOTAL

    def assignment_score(self, driver: PlanningDriver, stop: PlanningStop, arrival_minute: int) -> float:
        """Score of sending `driver` straight from its start to `stop`, arriving at `arrival_minute`."""
        matrix = self.problem.matrix
        distance_km = matrix.distance_km[driver.point_index][stop.point_index]
        travel_minutes = matrix.travel_minutes[driver.point_index][stop.point_index]
        work_end = driver.available_start_minute + driver.max_work_minutes
        overtime = max(0, arrival_minute + stop.service_minutes - work_end)
        return self.score(self.signals(distance_km, travel_minutes, stop.due_penalty, overtime))

    def cost_matrix(self) -> List[List[int]]:
        """
        Integer arc costs over the problem's points.

        Arc i -> j carries the leg's distance/time/money signals, the service
        time spent at i, and the due penalty of j when j is a stop.
        """
        matrix = self.problem.matrix
        size = matrix.size
        service = [0] * size
        due = [0.0] * size
        for stop in self.problem.stops:
            service[stop.point_index] = stop.service_minutes
            due[stop.point_index] = stop.due_penalty

        costs = [[0] * size for _ in range(size)]
        for i in range(size):
            for j in range(size):
                if i == j:
                    continue
                signals = self.signals(matrix.distance_km[i][j], matrix.travel_minutes[i][j], due[j])
                costs[i][j] = max(0, round(self.score(signals, service[i]) * ARC_COST_SCALE))
        return costs

    def overtime_penalty_per_minute(self) -> int:
        """Penalty for each minute a route ends past the driver's hard end, 0 when overtime is unweighted."""
        if self.weights.overtime <= 0:
            return 0
        per_minute = self.weights.overtime / WEIGHT_TOTAL * NORMALIZED_MAX / self.references.overtime_minutes
        return max(1, round(per_minute * ARC_COST_SCALE))

    def wait_cost_per_minute(self) -> int:
        """Cost of idle waiting, priced like travel time."""
        if self.weights.time <= 0 or self.references.time_minutes <= 0:
            return 0
        per_minute = self.weights.time / WEIGHT_TOTAL * NORMALIZED_MAX / self.references.time_minutes
        return round(per_minute * ARC_COST_SCALE)
