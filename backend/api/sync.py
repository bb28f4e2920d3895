"""Sync API endpoints: copy legacy data into the central store and report on it."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import (
    get_pool,
    get_scheduler,
    get_session,
    get_sync_engine,
    require_selection,
)
from backend.schemas.common import Envelope
from backend.schemas.legacy import (
    ConnectionTestResponse,
    PoolStatsResponse,
    SchedulerStatusResponse,
    SyncOverviewResponse,
    SyncResultResponse,
    SyncStatusEntry,
)
from backend.services.connection_pool import ConnectionPool
from backend.services.folder_service import FolderSelection
from backend.services.scheduler import SyncScheduler
from backend.services.sync_service import SyncEngine, list_sync_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/refresh", response_model=Envelope[SyncResultResponse])
async def refresh(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    force: Annotated[bool, Query()] = False,
) -> Envelope[SyncResultResponse]:
    """Sync the selected folder now. ``force`` ignores the unchanged-file shortcut."""
    result = await engine.sync_folder(selection, force=force)
    if result.failed:
        message = f"Sync finished with {len(result.failed)} failure(s)"
    elif result.nothing_to_do:
        message = "Already up to date"
    else:
        message = f"{len(result.synced)} file(s) synced"
    return Envelope(
        success=not result.failed,
        data=SyncResultResponse.model_validate(result),
        message=message,
    )


@router.get("/status", response_model=Envelope[SyncOverviewResponse])
async def sync_status(
    session: Annotated[AsyncSession, Depends(get_session)],
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
    scheduler: Annotated[SyncScheduler | None, Depends(get_scheduler)],
) -> Envelope[SyncOverviewResponse]:
    rows = await list_sync_status(session)
    overview = SyncOverviewResponse(
        files=[SyncStatusEntry.model_validate(row) for row in rows],
        file_states={path: str(state) for path, state in engine.states().items()},
        scheduler=(
            SchedulerStatusResponse.model_validate(scheduler.status())
            if scheduler is not None
            else None
        ),
        pool=PoolStatsResponse.model_validate(pool.stats()),
    )
    return Envelope(data=overview)


@router.get("/test-connection", response_model=Envelope[ConnectionTestResponse])
async def test_connection(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
) -> Envelope[ConnectionTestResponse]:
    """Open a fresh handle on the article database and time a count query."""
    result = await asyncio.to_thread(pool.test_connection, selection.access_file_path)
    return Envelope(
        data=ConnectionTestResponse.model_validate(result),
        message=f"Connection OK ({result.article_count} articles)",
    )
