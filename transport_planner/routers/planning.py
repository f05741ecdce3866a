from fastapi import APIRouter, Depends, status, HTTPException
from sqlalchemy.orm import Session
from transport_planner.database import get_db
from transport_planner.core.exceptions import PlanningConfigurationError, PlanningInProgressError
from transport_planner.core.logging_config import logger
from transport_planner.schemas.planning import PlanningSolveRequest, PlanningSolveResponse
from transport_planner.services.planning import planning_service

router = APIRouter()


@router.post("/solve", response_model=PlanningSolveResponse)
def solve_day(
    request_data: PlanningSolveRequest,
    db: Session = Depends(get_db)
):
    """
    Plan one day for one owner.

    Builds routes for every available driver, stores them as `temp` routes
    and marks the planned locations. Locations that could not be placed are
    listed under `unassigned` with a reason.

    Example:
        ```json
        {
            "date": "2025-03-05",
            "owner_id": 1,
            "weights": {"distance": 0, "time": 70, "date": 30, "cost": 0, "overtime": 0},
            "require_service_type_match": true
        }
        ```

    Raises:
        HTTPException 400: Missing cost settings or unusable weight template
        HTTPException 409: A planning run for the same owner and date is in progress
    """
    try:
        return planning_service.solve_day(db=db, request=request_data)
    except PlanningConfigurationError as e:
        logger.warning(f"Planning request rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PlanningInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Error solving planning day: {type(e).__name__}: {str(e)}")
        raise
