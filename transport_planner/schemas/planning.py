from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime


class WeightSet(BaseModel):
    """Relative importance of the five planning signals. Negative values are clamped to 0."""
    distance: float = Field(default=0, description="Weight of driven kilometers")
    time: float = Field(default=100, description="Weight of travel plus service minutes")
    date: float = Field(default=0, description="Weight of due-date urgency")
    cost: float = Field(default=0, description="Weight of fuel and personnel cost")
    overtime: float = Field(default=0, description="Weight of minutes past the driver's work limit")


class CostSettings(BaseModel):
    fuel_cost_per_km: float = Field(..., ge=0, description="Fuel cost per driven kilometer")
    personnel_cost_per_hour: float = Field(..., ge=0, description="Driver cost per hour")
    currency_code: str = Field(default="EUR", min_length=3, max_length=3)


class PlanningSolveRequest(BaseModel):
    """Schema for planning one day for one owner."""
    date: date
    owner_id: int = Field(..., gt=0)
    service_location_ids: Optional[List[int]] = Field(
        None, description="Explicit subset of locations; all open locations when omitted"
    )
    max_stops_per_driver: Optional[int] = Field(None, gt=0)
    weights: Optional[WeightSet] = Field(
        None, description="Explicit weights; take precedence over weight_template_id"
    )
    weight_template_id: Optional[int] = None
    cost_settings: Optional[CostSettings] = Field(
        None, description="Overrides the owner's stored cost settings"
    )
    require_service_type_match: bool = False
    normalize_weights: bool = False


class PlannedStopResponse(BaseModel):
    sequence: int
    service_location_id: int
    latitude: float
    longitude: float
    service_minutes: int
    travel_km_from_prev: float
    travel_minutes_from_prev: int
    wait_minutes: int
    planned_start: datetime
    planned_end: datetime
    status: str = "pending"


class PlannedRouteResponse(BaseModel):
    route_id: Optional[int] = None
    driver_id: int
    driver_name: str
    service_type_id: Optional[int] = None
    total_km: float
    total_travel_minutes: int
    total_service_minutes: int
    total_wait_minutes: int
    total_minutes: int
    stops: List[PlannedStopResponse]


class UnassignedLocationResponse(BaseModel):
    service_location_id: int
    reason: str


class SkippedDriverResponse(BaseModel):
    driver_id: int
    name: str
    reason: str


class PlanningSolveResponse(BaseModel):
    date: date
    owner_id: int
    routes: List[PlannedRouteResponse] = []
    unassigned: List[UnassignedLocationResponse] = []
    skipped_drivers: List[SkippedDriverResponse] = []
    warnings: List[str] = []
    degraded: bool = False

    @property
    def unassigned_location_ids(self) -> List[int]:
        return [u.service_location_id for u in self.unassigned]
