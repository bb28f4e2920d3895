"""Folder selection endpoints: locate, upload, inspect and reset the working folder."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_locator, get_pool, get_session, get_settings, get_watcher
from backend.config import Settings
from backend.schemas.common import Envelope
from backend.schemas.legacy import (
    FolderSelectionResponse,
    FolderSelectRequest,
    FoundFileResponse,
    GlobalSearchResponse,
)
from backend.services import folder_service
from backend.services.connection_pool import ConnectionPool
from backend.services.folder_service import FolderSelection
from backend.services.locator_service import FolderLocator
from backend.services.watcher_service import FileWatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/folder-selection", tags=["folder-selection"])


def _to_response(selection: FolderSelection) -> FolderSelectionResponse:
    return FolderSelectionResponse(
        folder_name=selection.folder_name,
        folder_path=str(selection.folder_path),
        access_file_path=str(selection.access_file_path),
        method=str(selection.method),
        quarter=selection.quarter,
        year=selection.year,
        article_count=selection.article_count,
        file_size=selection.file_size,
        selected_at=selection.selected_at,
    )


@router.post("/select", response_model=Envelope[FolderSelectionResponse])
async def select_folder_endpoint(
    body: FolderSelectRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    locator: Annotated[FolderLocator, Depends(get_locator)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
    watcher: Annotated[FileWatcher, Depends(get_watcher)],
) -> Envelope[FolderSelectionResponse]:
    """Locate the folder's database, validate it and make it the current selection."""
    selection = await asyncio.to_thread(
        folder_service.select_folder, locator, pool, body.folder_name, body.hint_path
    )
    await folder_service.save_current(session, selection)
    watcher.reset()
    return Envelope(
        data=_to_response(selection),
        message=f"Folder '{selection.folder_name}' selected ({selection.article_count} articles)",
    )


@router.post("/upload", response_model=Envelope[FolderSelectionResponse])
async def upload_folder_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
    watcher: Annotated[FileWatcher, Depends(get_watcher)],
    folder_name: Annotated[str, Form(min_length=1, max_length=100)],
    caiss_file: Annotated[UploadFile, File()],
) -> Envelope[FolderSelectionResponse]:
    """Store an uploaded article database and make it the current selection."""
    content = await caiss_file.read(settings.max_upload_size + 1)
    if len(content) > settings.max_upload_size:
        limit_mb = settings.max_upload_size // (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"File too large (max {limit_mb} MB)")

    selection = await asyncio.to_thread(
        folder_service.store_upload,
        settings,
        pool,
        folder_name,
        caiss_file.filename or "",
        content,
    )
    await folder_service.save_current(session, selection)
    watcher.reset()
    return Envelope(
        data=_to_response(selection),
        message=f"Database uploaded for '{selection.folder_name}'",
    )


@router.get("/current", response_model=Envelope[FolderSelectionResponse])
async def current_folder_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Envelope[FolderSelectionResponse]:
    """Return the current selection; ``data`` is null when nothing is selected."""
    selection = await folder_service.get_current(session)
    if selection is None:
        return Envelope(message="No folder selected")
    return Envelope(data=_to_response(selection))


@router.delete("/reset", response_model=Envelope[FolderSelectionResponse])
async def reset_folder_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    pool: Annotated[ConnectionPool, Depends(get_pool)],
    watcher: Annotated[FileWatcher, Depends(get_watcher)],
) -> Envelope[FolderSelectionResponse]:
    """Clear the selection, closing its handles and removing any uploaded file."""
    selection = await folder_service.get_current(session)
    if selection is not None:
        for path in selection.files().values():
            pool.close(path)
    cleared = await folder_service.clear_current(session)
    watcher.reset()
    if cleared is None:
        return Envelope(message="No folder was selected")
    return Envelope(data=_to_response(cleared), message="Folder selection cleared")


@router.get("/global-search", response_model=Envelope[GlobalSearchResponse])
async def global_search_endpoint(
    locator: Annotated[FolderLocator, Depends(get_locator)],
    max_depth: Annotated[int | None, Query(ge=0, le=8)] = None,
) -> Envelope[GlobalSearchResponse]:
    """Search the configured drives for legacy article databases."""
    found = await asyncio.to_thread(locator.global_search, None, max_depth)
    files = [FoundFileResponse.model_validate(f) for f in found]
    return Envelope(
        data=GlobalSearchResponse(files=files, total=len(files)),
        message=f"{len(files)} database(s) found",
    )
