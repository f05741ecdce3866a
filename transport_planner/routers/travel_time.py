from fastapi import APIRouter, Depends, status, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from transport_planner.database import get_db
from transport_planner.core.exceptions import LearnedStatNotFoundError, LearnedStatStatusError
from transport_planner.core.logging_config import logger
from transport_planner.models.travel_time import LearnedTravelStatStatus
from transport_planner.schemas.travel_time import LearnedStatResponse, StatusUpdateRequest, TravelSampleCreate
from transport_planner.services.travel_time_admin import travel_time_admin_service

router = APIRouter()


@router.get("/learned", response_model=List[LearnedStatResponse])
def list_learned_stats(
    region_id: Optional[int] = None,
    status_filter: Optional[LearnedTravelStatStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """
    List learned travel-time statistics with their quality flags and top contributors.
    """
    return travel_time_admin_service.list_learned(
        db=db, region_id=region_id, status=status_filter, skip=skip, limit=limit
    )


@router.get("/learned/{stat_id}", response_model=LearnedStatResponse)
def get_learned_stat(stat_id: int, db: Session = Depends(get_db)):
    try:
        return travel_time_admin_service.get_learned(db=db, stat_id=stat_id)
    except LearnedStatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.patch("/learned/{stat_id}/status", response_model=LearnedStatResponse)
def update_learned_stat_status(
    stat_id: int,
    update: StatusUpdateRequest,
    db: Session = Depends(get_db)
):
    """
    Approve, quarantine or reject a learned statistic.

    Approval is refused while quality flags are raised unless `force` is set.

    Raises:
        HTTPException 404: If the statistic does not exist
        HTTPException 409: If approval is refused; `detail.flags` lists the raised flags
    """
    try:
        return travel_time_admin_service.update_status(db=db, stat_id=stat_id, update=update)
    except LearnedStatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LearnedStatStatusError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "flags": e.flags}
        )


@router.post("/learned/{stat_id}/reset", response_model=LearnedStatResponse)
def reset_learned_stat(stat_id: int, db: Session = Depends(get_db)):
    """
    Clear a statistic's samples and contributors and return it to draft.
    """
    try:
        return travel_time_admin_service.reset(db=db, stat_id=stat_id)
    except LearnedStatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/samples", response_model=LearnedStatResponse, status_code=status.HTTP_201_CREATED)
def record_travel_sample(sample: TravelSampleCreate, db: Session = Depends(get_db)):
    """
    Record a completed leg and merge it into the matching learned statistic.
    """
    try:
        return travel_time_admin_service.record_sample(db=db, sample=sample)
    except ValueError as e:
        logger.warning(f"Travel sample rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
