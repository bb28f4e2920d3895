"""Schemas for folder selection, file watching and sync endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FolderSelectRequest(BaseModel):
    """Request to locate and select a point-of-sale folder."""

    folder_name: str = Field(min_length=1, max_length=100)
    hint_path: str | None = Field(default=None, max_length=500)


class FolderSelectionResponse(BaseModel):
    """The selected folder."""

    folder_name: str
    folder_path: str
    access_file_path: str
    method: str
    quarter: str
    year: int | None = None
    article_count: int
    file_size: int
    selected_at: datetime | None = None


class FoundFileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    path: str
    directory: str
    size: int
    size_mb: float
    modified: datetime


class GlobalSearchResponse(BaseModel):
    files: list[FoundFileResponse]
    total: int


class ChangeEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_type: str
    path: str
    changed_fields: list[str]
    detected_at: datetime


class ChangeCheckResponse(BaseModel):
    """Result of polling the watched files."""

    has_changes: bool
    changes: list[ChangeEventResponse] = Field(default_factory=list)
    affected_areas: list[str] = Field(default_factory=list)
    synced_files: int = 0


class FileStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_type: str
    path: str
    exists: bool
    last_modified: datetime | None = None
    size: int | None = None


class WatcherResetResponse(BaseModel):
    forgotten: int


class FileSyncResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_type: str
    path: str
    outcome: str
    records: dict[str, int] = Field(default_factory=dict)
    file_hash: str | None = None
    error: str | None = None


class SyncResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    folder_name: str
    files: list[FileSyncResultResponse]


class SyncStatusEntry(BaseModel):
    """One ``sync_status`` row."""

    model_config = ConfigDict(from_attributes=True)

    file_path: str
    last_modified: float
    file_size: int
    file_hash: str
    folder_name: str
    last_sync: datetime
    sync_count: int


class SchedulerStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    running: bool
    interval_seconds: float
    runs: int
    last_run: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int


class PoolStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    active: int
    max_connections: int
    idle_timeout: float
    oldest_age: float | None = None
    newest_age: float | None = None
    paths: list[str] = Field(default_factory=list)


class SyncOverviewResponse(BaseModel):
    """Everything an operator needs to judge sync health."""

    files: list[SyncStatusEntry]
    file_states: dict[str, str]
    scheduler: SchedulerStatusResponse | None = None
    pool: PoolStatsResponse


class ConnectionTestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    path: str
    article_count: int
    latency_ms: float
