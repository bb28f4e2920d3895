"""File watcher endpoints: poll the selected folder's legacy files for changes."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from backend.api.deps import get_sync_engine, get_watcher, require_selection
from backend.schemas.common import Envelope
from backend.schemas.legacy import (
    ChangeCheckResponse,
    ChangeEventResponse,
    FileStatusResponse,
    WatcherResetResponse,
)
from backend.services.folder_service import FolderSelection
from backend.services.sync_service import SyncEngine
from backend.services.watcher_service import FileWatcher, affected_areas, file_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/file-watcher", tags=["file-watcher"])


@router.get("/check-changes", response_model=Envelope[ChangeCheckResponse])
async def check_changes(
    selection: Annotated[FolderSelection, Depends(require_selection)],
    watcher: Annotated[FileWatcher, Depends(get_watcher)],
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    sync: Annotated[bool, Query(description="Sync changed files right away")] = False,
) -> Envelope[ChangeCheckResponse]:
    """Compare the legacy files against their last fingerprints.

    The first call for a file only records a baseline and reports no change.
    """
    events = await asyncio.to_thread(watcher.check_for_changes, selection.files())
    engine.mark_changed(events)

    synced_files = 0
    if events and sync:
        result = await engine.sync_folder(selection)
        synced_files = len(result.synced)

    response = ChangeCheckResponse(
        has_changes=bool(events),
        changes=[ChangeEventResponse.model_validate(e) for e in events],
        affected_areas=affected_areas(events),
        synced_files=synced_files,
    )
    message = f"{len(events)} file(s) changed" if events else "No changes detected"
    return Envelope(data=response, message=message)


@router.post("/reset", response_model=Envelope[WatcherResetResponse])
async def reset_watcher(
    watcher: Annotated[FileWatcher, Depends(get_watcher)],
) -> Envelope[WatcherResetResponse]:
    """Forget every recorded fingerprint; the next check records new baselines."""
    forgotten = watcher.reset()
    return Envelope(data=WatcherResetResponse(forgotten=forgotten), message="Watcher reset")


@router.get("/status", response_model=Envelope[list[FileStatusResponse]])
async def watcher_status(
    selection: Annotated[FolderSelection, Depends(require_selection)],
) -> Envelope[list[FileStatusResponse]]:
    statuses = await asyncio.to_thread(file_status, selection.files())
    return Envelope(data=[FileStatusResponse.model_validate(s) for s in statuses])
