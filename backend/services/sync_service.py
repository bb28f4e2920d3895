"""Sync service: pushes legacy point-of-sale tables into the central store."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select

from backend.exceptions import SyncFailed
from backend.legacy.encoding import DEFAULT_CODE_PAGES, fix_encoding
from backend.models.legacy import LEGACY_TABLES
from backend.models.sync import SyncStatus
from backend.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.legacy.base import LegacyFileType, Row
    from backend.models.legacy import LegacyRecordMixin
    from backend.services.connection_pool import ConnectionPool
    from backend.services.folder_service import FolderSelection
    from backend.services.watcher_service import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


class FileSyncState(StrEnum):
    """Where a legacy file stands relative to the central store."""

    UNKNOWN = "unknown"
    NEEDS_SYNC = "needs_sync"
    SYNCING = "syncing"
    SYNCED = "synced"


class SyncOutcome(StrEnum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    MISSING = "missing"
    FAILED = "failed"


@dataclass
class FileSyncResult:
    """What happened to one legacy file during a folder sync."""

    file_type: LegacyFileType
    path: str
    outcome: SyncOutcome
    records: dict[str, int] = field(default_factory=dict)
    file_hash: str | None = None
    error: str | None = None


@dataclass
class SyncResult:
    """Per-file outcomes of ``SyncEngine.sync_folder``."""

    folder_name: str
    files: list[FileSyncResult] = field(default_factory=list)

    @property
    def synced(self) -> list[FileSyncResult]:
        return [f for f in self.files if f.outcome == SyncOutcome.SYNCED]

    @property
    def failed(self) -> list[FileSyncResult]:
        return [f for f in self.files if f.outcome == SyncOutcome.FAILED]

    @property
    def nothing_to_do(self) -> bool:
        return all(f.outcome in (SyncOutcome.SKIPPED, SyncOutcome.MISSING) for f in self.files)


def compute_file_hash(path: Path | str, mtime: float, folder_name: str) -> str:
    """Tag identifying one observed version of a legacy file within a folder."""
    source = f"{path}_{int(mtime)}_{folder_name}"
    return hashlib.md5(source.encode("utf-8"), usedforsecurity=False).hexdigest()


async def get_sync_status(session: AsyncSession, file_path: str) -> SyncStatus | None:
    result = await session.execute(select(SyncStatus).where(SyncStatus.file_path == file_path))
    return result.scalar_one_or_none()


async def list_sync_status(session: AsyncSession) -> list[SyncStatus]:
    """All sync status rows, most recently synced first."""
    result = await session.execute(select(SyncStatus).order_by(SyncStatus.last_sync.desc()))
    return list(result.scalars().all())


class SyncEngine:
    """Replace-by-hash ingestion of legacy files, one transaction per file.

    Runs for the same file are serialized by a per-path lock; a run that
    finds the file unchanged since the last successful sync does nothing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pool: ConnectionPool,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        code_pages: Sequence[str] = DEFAULT_CODE_PAGES,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.pool = pool
        self.batch_size = batch_size
        self.code_pages = tuple(code_pages)
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._states: dict[str, FileSyncState] = {}

    def state(self, path: Path | str) -> FileSyncState:
        return self._states.get(_file_key(path), FileSyncState.UNKNOWN)

    def states(self) -> dict[str, FileSyncState]:
        return dict(self._states)

    def mark_changed(self, events: Iterable[ChangeEvent]) -> None:
        """Flag files the watcher saw change so the next run picks them up."""
        for event in events:
            self._states[_file_key(event.path)] = FileSyncState.NEEDS_SYNC

    async def needs_sync(self, session: AsyncSession, path: Path) -> bool:
        """True when no sync is recorded or mtime/size differ from the record."""
        status = await get_sync_status(session, _file_key(path))
        if status is None:
            return True
        stat = path.stat()
        return status.last_modified != stat.st_mtime or status.file_size != stat.st_size

    async def sync_folder(self, selection: FolderSelection, *, force: bool = False) -> SyncResult:
        """Sync every legacy file of the folder. A failing file does not stop the others."""
        result = SyncResult(folder_name=selection.folder_name)
        for file_type, path in selection.files().items():
            result.files.append(await self.sync_file(selection, file_type, path, force=force))
        if result.failed:
            logger.warning(
                "Sync of folder '%s' finished with %d failure(s)",
                selection.folder_name,
                len(result.failed),
            )
        elif not result.nothing_to_do:
            logger.info(
                "Sync of folder '%s' finished: %d file(s) synced",
                selection.folder_name,
                len(result.synced),
            )
        return result

    async def sync_file(
        self,
        selection: FolderSelection,
        file_type: LegacyFileType,
        path: Path,
        *,
        force: bool = False,
    ) -> FileSyncResult:
        key = _file_key(path)
        if not path.is_file():
            return FileSyncResult(file_type=file_type, path=key, outcome=SyncOutcome.MISSING)

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # A change reported by the watcher wins over matching mtime and size.
            if not force and self._states.get(key) != FileSyncState.NEEDS_SYNC:
                try:
                    async with self.session_factory() as session:
                        up_to_date = not await self.needs_sync(session, path)
                except Exception as exc:
                    return self._failed(file_type, key, f"Sync check of {key} failed: {exc}", exc)
                if up_to_date:
                    self._states[key] = FileSyncState.SYNCED
                    return FileSyncResult(
                        file_type=file_type, path=key, outcome=SyncOutcome.SKIPPED
                    )

            self._states[key] = FileSyncState.SYNCING
            try:
                file_hash, counts = await self._sync_locked(selection, path, key, force=force)
            except Exception as exc:
                return self._failed(file_type, key, f"Sync of {key} rolled back: {exc}", exc)

            self._states[key] = FileSyncState.SYNCED
            return FileSyncResult(
                file_type=file_type,
                path=key,
                outcome=SyncOutcome.SYNCED,
                records=counts,
                file_hash=file_hash,
            )

    def _failed(
        self, file_type: LegacyFileType, key: str, message: str, exc: Exception
    ) -> FileSyncResult:
        self._states[key] = FileSyncState.NEEDS_SYNC
        error = SyncFailed(message)
        logger.error("%s", error, exc_info=exc)
        return FileSyncResult(
            file_type=file_type, path=key, outcome=SyncOutcome.FAILED, error=str(error)
        )

    async def _sync_locked(
        self, selection: FolderSelection, path: Path, key: str, *, force: bool
    ) -> tuple[str, dict[str, int]]:
        if force:
            # Best effort: a fresh handle may observe newer file contents.
            self.pool.close(path)
        stat = path.stat()
        tables = await asyncio.to_thread(self._read_tables, path)
        file_hash = compute_file_hash(key, stat.st_mtime, selection.folder_name)
        synced_at = self._clock()
        counts: dict[str, int] = {}

        async with self.session_factory() as session, session.begin():
            previous = await get_sync_status(session, key)
            stale_hashes = {file_hash}
            if previous is not None:
                stale_hashes.add(previous.file_hash)

            for table, rows in tables.items():
                model = LEGACY_TABLES[table]
                await session.execute(
                    delete(model).where(model.source_file_hash.in_(stale_hashes))
                )
                records = [
                    self._to_record(model, row, file_hash, selection, synced_at) for row in rows
                ]
                for start in range(0, len(records), self.batch_size):
                    await session.execute(insert(model), records[start : start + self.batch_size])
                counts[table] = len(records)

            if previous is None:
                session.add(
                    SyncStatus(
                        file_path=key,
                        last_modified=stat.st_mtime,
                        file_size=stat.st_size,
                        file_hash=file_hash,
                        folder_name=selection.folder_name,
                        last_sync=synced_at,
                        sync_count=1,
                    )
                )
            else:
                previous.last_modified = stat.st_mtime
                previous.file_size = stat.st_size
                previous.file_hash = file_hash
                previous.folder_name = selection.folder_name
                previous.last_sync = synced_at
                previous.sync_count += 1

        logger.info(
            "Synced %s (%s) for folder '%s'",
            key,
            ", ".join(f"{table}={n}" for table, n in counts.items()) or "no tables",
            selection.folder_name,
        )
        return file_hash, counts

    def _read_tables(self, path: Path) -> dict[str, list[Row]]:
        """Read every known table present in the file. Blocking."""
        tables: dict[str, list[Row]] = {}
        with self.pool.connection(path) as conn:
            present = {name.lower(): name for name in conn.table_names()}
            for table in LEGACY_TABLES:
                actual = present.get(table.lower())
                if actual is not None:
                    tables[table] = conn.select(actual)
        return tables

    def _to_record(
        self,
        model: type[LegacyRecordMixin],
        row: Row,
        file_hash: str,
        selection: FolderSelection,
        synced_at: datetime,
    ) -> dict[str, Any]:
        clean = {name: fix_encoding(value, self.code_pages) for name, value in row.items()}
        return {
            **model.key_columns(clean),
            "payload": clean,
            "source_file_hash": file_hash,
            "source_folder": selection.folder_name,
            "sync_date": synced_at,
            "quarter": selection.quarter,
            "year": selection.year,
        }


def _file_key(path: Path | str) -> str:
    return str(Path(path).absolute())
