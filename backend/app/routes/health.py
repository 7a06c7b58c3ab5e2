# backend/app/routes/health.py
"""Liveness and readiness checks."""

from datetime import datetime, timezone
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..core.broadcast import is_broadcast_initialized
from ..database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime
    checks: Dict[str, bool]


@router.get("/health", response_model=HealthCheckResponse)
def health_check(response: Response, db: Session = Depends(get_db)) -> HealthCheckResponse:
    """Report database and pub/sub readiness; ``degraded`` when either is down."""
    try:
        db.execute(text("SELECT 1"))
        db_status = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = False

    pubsub_status = is_broadcast_initialized()
    status = "healthy" if db_status and pubsub_status else "degraded"
    response.headers["Cache-Control"] = "no-store"

    return HealthCheckResponse(
        status=status,
        service="daycare-updates",
        timestamp=datetime.now(timezone.utc),
        checks={"database": db_status, "pubsub": pubsub_status},
    )
