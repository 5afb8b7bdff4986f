"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.services.background_tasks import pending_background_tasks
from app.services.redis_service import get_redis

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    database: str
    redis: str
    telephony_enabled: bool
    background_tasks: int


@router.get("", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Health check endpoint.

    Verifies API is running and database (and Redis, when enabled) is connected.
    """
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        db_status = "unhealthy"

    redis_status = "disabled"
    if settings.redis_enabled:
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception:
            redis_status = "unhealthy"

    degraded = db_status != "healthy" or redis_status == "unhealthy"
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0",
        database=db_status,
        redis=redis_status,
        telephony_enabled=settings.telephony_enabled,
        background_tasks=pending_background_tasks(),
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Readiness check for Kubernetes/Docker."""
    return {"ready": True}


@router.get("/live")
async def liveness_check() -> dict:
    """Liveness check for Kubernetes/Docker."""
    return {"alive": True}
