"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_pool, get_scheduler, get_session
from backend.services.connection_pool import ConnectionPool
from backend.services.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    legacy_connections: int
    scheduler: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
    scheduler: Annotated[SyncScheduler | None, Depends(get_scheduler)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    if scheduler is None:
        scheduler_status = "disabled"
    elif scheduler.status().consecutive_failures > 0:
        scheduler_status = "failing"
    else:
        scheduler_status = "ok" if scheduler.running else "stopped"

    degraded = db_status != "ok" or scheduler_status == "failing"
    return HealthResponse(
        status="degraded" if degraded else "ok",
        version="0.1.0",
        database=db_status,
        legacy_connections=len(pool),
        scheduler=scheduler_status,
    )
