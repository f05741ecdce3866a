from fastapi import FastAPI, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from transport_planner.database import get_db
from transport_planner import models  # noqa: F401  registers every table on Base.metadata
from transport_planner.routers import planning, travel_time
from transport_planner.core.logging_config import logger

app = FastAPI(
    title="Transport Planner API",
    version="1.0.0",
    redirect_slashes=False  # Disable automatic redirects to prevent POST data loss
)

# Include routers
app.include_router(planning.router, prefix="/api/planning", tags=["Planning"])
app.include_router(travel_time.router, prefix="/api/admin/travel-time", tags=["Travel Time Admin"])


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected"
        }
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unhealthy"
        )
