from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # "development" or "production"

    # Routing backend used by the matrix provider: "osrm", "graphhopper" or "none"
    ROUTING_PROVIDER: str = "osrm"
    OSRM_BASE_URL: Optional[str] = None
    OSRM_PROFILE: str = "driving"
    GRAPHHOPPER_API_KEY: Optional[str] = None
    ROUTING_TIMEOUT_SECONDS: float = 30.0

    MATRIX_CACHE_TTL_SECONDS: int = 15 * 60
    MATRIX_CACHE_MAX_ENTRIES: int = 256

    # Route optimizer tuning (OR-Tools)
    SOLVER_TIME_LIMIT_SECONDS: int = 2
    SOLVER_SOLUTION_LIMIT: int = 100
    SOLVER_FIRST_SOLUTION_STRATEGY: str = "PATH_CHEAPEST_ARC"
    SOLVER_LOCAL_SEARCH_METAHEURISTIC: str = "GUIDED_LOCAL_SEARCH"

    DEFAULT_SERVICE_MINUTES: int = 20

    # Planning lock per (date, owner). Redis is used when configured.
    REDIS_URL: Optional[str] = None
    PLANNING_LOCK_TIMEOUT_SECONDS: int = 120

    # Travel time model quality thresholds
    TRAVEL_TIME_GLOBAL_REGION_ID: int = 99
    TRAVEL_TIME_USE_LEARNED_ONLY_IF_APPROVED: bool = True
    TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD: int = 30
    TRAVEL_TIME_STALE_AFTER_DAYS: int = 60
    TRAVEL_TIME_PLAUSIBLE_MPK_MIN: float = 0.6
    TRAVEL_TIME_PLAUSIBLE_MPK_MAX: float = 3.0
    TRAVEL_TIME_DEVIATION_WARN_PERCENT: float = 50.0
    TRAVEL_TIME_SUSPICIOUS_RATIO_QUARANTINE: float = 0.25

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
