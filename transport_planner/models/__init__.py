from .service_type import ServiceType
from .driver import Driver, DriverAvailability, DriverServiceType
from .service_location import (
    ServiceLocation,
    ServiceLocationConstraint,
    ServiceLocationException,
    ServiceLocationOpeningHours,
    ServiceLocationStatus,
)
from .weight_template import WeightTemplate, WeightTemplateLocationLink, WeightTemplateScope
from .cost_settings import SystemCostSettings
from .travel_time import (
    DayType,
    LearnedTravelStatContributor,
    LearnedTravelStats,
    LearnedTravelStatStatus,
    RegionSpeedProfile,
    TravelTimeRegion,
)
from .route import Route, RouteStop, RouteStatus, RouteStopStatus, RouteStopType
