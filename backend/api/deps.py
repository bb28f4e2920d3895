"""Shared API dependencies: DB session, legacy services, current selection."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.exceptions import NoFolderSelected
from backend.services import folder_service
from backend.services.article_service import ArticleQueryService
from backend.services.cache_service import CacheService
from backend.services.connection_pool import ConnectionPool
from backend.services.folder_service import FolderSelection
from backend.services.locator_service import FolderLocator
from backend.services.scheduler import SyncScheduler
from backend.services.sync_service import SyncEngine
from backend.services.watcher_service import FileWatcher


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_pool(request: Request) -> ConnectionPool:
    pool: ConnectionPool = request.app.state.connection_pool
    return pool


def get_locator(request: Request) -> FolderLocator:
    locator: FolderLocator = request.app.state.locator
    return locator


def get_watcher(request: Request) -> FileWatcher:
    watcher: FileWatcher = request.app.state.file_watcher
    return watcher


def get_sync_engine(request: Request) -> SyncEngine:
    engine: SyncEngine = request.app.state.sync_engine
    return engine


def get_cache_service(request: Request) -> CacheService:
    cache_service: CacheService = request.app.state.cache_service
    return cache_service


def get_article_service(request: Request) -> ArticleQueryService:
    service: ArticleQueryService = request.app.state.article_service
    return service


def get_scheduler(request: Request) -> SyncScheduler | None:
    """The background scheduler, or None when periodic sync is disabled."""
    scheduler: SyncScheduler | None = getattr(request.app.state, "scheduler", None)
    return scheduler


async def require_selection(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> FolderSelection:
    """Return the current folder selection. Raises NoFolderSelected if none."""
    selection = await folder_service.get_current(session)
    if selection is None:
        raise NoFolderSelected()
    return selection
