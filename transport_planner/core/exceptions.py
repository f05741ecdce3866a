"""
Domain exceptions raised by the planning core.

Routers translate these into HTTP responses; services never raise
HTTPException directly.
"""


class PlanningError(Exception):
    """Base class for planning failures surfaced to the caller."""


class PlanningConfigurationError(PlanningError):
    """Cost settings or weight template missing/malformed. Aborts the run before solving."""


class PlanningInProgressError(PlanningError):
    """Another planning run holds the lock for the same (date, owner)."""

    def __init__(self, owner_id: int, plan_date):
        self.owner_id = owner_id
        self.plan_date = plan_date
        super().__init__(
            f"A planning run for owner {owner_id} on {plan_date} is already in progress"
        )


class LearnedStatNotFoundError(Exception):
    """Requested learned travel statistic does not exist."""


class LearnedStatStatusError(Exception):
    """Status transition refused, e.g. approving a statistic that is still flagged."""

    def __init__(self, message: str, flags=None):
        self.flags = flags or []
        super().__init__(message)
