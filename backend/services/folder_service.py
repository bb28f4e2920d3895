"""Folder selection: which point-of-sale dataset the application works on."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from backend.legacy.base import LegacyFileType
from backend.models.selection import SelectedFolder
from backend.services.datetime_service import now_utc
from backend.services.locator_service import clean_folder_name
from backend.services.watcher_service import folder_files

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.config import Settings
    from backend.services.connection_pool import ConnectionPool
    from backend.services.locator_service import FolderLocator

logger = logging.getLogger(__name__)

CURRENT_SLOT = "current"
UNDETECTED_QUARTER = "undetected"

_QUARTER_KEYWORDS = {
    "T1": ("q1", "t1", "trim1", "quarter1", "jan", "fev", "mar", "janvier", "fevrier", "mars"),
    "T2": ("q2", "t2", "trim2", "quarter2", "avr", "mai", "jun", "avril", "juin"),
    "T3": ("q3", "t3", "trim3", "quarter3", "jul", "aou", "sep", "juillet", "aout", "septembre"),
    "T4": (
        "q4",
        "t4",
        "trim4",
        "quarter4",
        "oct",
        "nov",
        "dec",
        "octobre",
        "novembre",
        "decembre",
    ),
}
_YEAR_RE = re.compile(r"20\d{2}")
_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")


class SelectionMethod(StrEnum):
    DIRECT_ACCESS = "direct_access"
    FILE_UPLOAD = "file_upload"


@dataclass
class FolderSelection:
    """Resolved description of the folder to operate on."""

    folder_name: str
    folder_path: Path
    access_file_path: Path
    method: SelectionMethod
    quarter: str
    year: int | None
    article_count: int = 0
    file_size: int = 0
    stored_file_path: Path | None = None
    selected_at: datetime | None = None

    def files(self) -> dict[LegacyFileType, Path]:
        """Locations of the folder's legacy files.

        An uploaded selection only carries the article database.
        """
        if self.method == SelectionMethod.FILE_UPLOAD:
            return {LegacyFileType.CAISS: self.access_file_path}
        files = folder_files(self.folder_path)
        files[LegacyFileType.CAISS] = self.access_file_path
        return files

    def file_path(self, file_type: LegacyFileType) -> Path | None:
        return self.files().get(file_type)


def safe_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with an underscore."""
    return _UNSAFE_CHARS_RE.sub("_", name)


def detect_quarter(folder_name: str) -> str:
    """Guess the quarter (``T1``..``T4``) a folder covers from its name."""
    lowered = folder_name.lower()
    for quarter, keywords in _QUARTER_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return quarter
    return UNDETECTED_QUARTER


def detect_year(folder_name: str) -> int | None:
    match = _YEAR_RE.search(folder_name)
    return int(match.group(0)) if match else None


def select_folder(
    locator: FolderLocator,
    pool: ConnectionPool,
    folder_name: str,
    hint_path: str | None = None,
) -> FolderSelection:
    """Locate a folder's database and validate it with a trial connection.

    Blocking; run it in a worker thread from async code.
    """
    name = clean_folder_name(folder_name)
    if not name:
        raise ValueError("Folder name must not be empty")
    access_file = locator.locate(name, hint_path)
    with pool.connection(access_file) as conn:
        article_count = conn.count("Article")
    logger.info("Selected folder '%s' at %s (%d articles)", name, access_file, article_count)
    return FolderSelection(
        folder_name=name,
        folder_path=access_file.parent,
        access_file_path=access_file,
        method=SelectionMethod.DIRECT_ACCESS,
        quarter=detect_quarter(name),
        year=detect_year(name),
        article_count=article_count,
        file_size=access_file.stat().st_size,
    )


def store_upload(
    settings: Settings,
    pool: ConnectionPool,
    folder_name: str,
    filename: str,
    content: bytes,
) -> FolderSelection:
    """Save an uploaded article database and validate it.

    The stored file is removed again if it cannot be opened. Blocking.
    """
    name = clean_folder_name(folder_name)
    if not name:
        raise ValueError("Folder name must not be empty")
    if Path(filename).suffix.lower() != ".mdb":
        raise ValueError("Only .mdb files are accepted")
    if len(content) > settings.max_upload_size:
        limit_mb = settings.max_upload_size // (1024 * 1024)
        raise ValueError(f"File too large (max {limit_mb} MB)")
    if not content:
        raise ValueError("Uploaded file is empty")

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    timestamp = now_utc().strftime("%Y-%m-%d_%H-%M-%S")
    stored = settings.upload_dir / f"{safe_name(name)}_{timestamp}.mdb"
    stored.write_bytes(content)
    try:
        with pool.connection(stored) as conn:
            article_count = conn.count("Article")
    except Exception:
        pool.close(stored)
        stored.unlink(missing_ok=True)
        logger.warning("Rejected uploaded database %s for folder '%s'", filename, name)
        raise
    logger.info("Stored uploaded database for '%s' at %s", name, stored)
    return FolderSelection(
        folder_name=name,
        folder_path=stored.parent,
        access_file_path=stored,
        method=SelectionMethod.FILE_UPLOAD,
        quarter=detect_quarter(name),
        year=detect_year(name),
        article_count=article_count,
        file_size=len(content),
        stored_file_path=stored,
    )


def _to_selection(row: SelectedFolder) -> FolderSelection:
    return FolderSelection(
        folder_name=row.folder_name,
        folder_path=Path(row.folder_path),
        access_file_path=Path(row.access_file_path),
        method=SelectionMethod(row.method),
        quarter=row.quarter,
        year=row.year,
        article_count=row.article_count,
        file_size=row.file_size,
        stored_file_path=Path(row.stored_file_path) if row.stored_file_path else None,
        selected_at=row.selected_at,
    )


async def get_current(session: AsyncSession) -> FolderSelection | None:
    """Return the current selection, or None."""
    row = await session.get(SelectedFolder, CURRENT_SLOT)
    return _to_selection(row) if row is not None else None


async def save_current(session: AsyncSession, selection: FolderSelection) -> FolderSelection:
    """Replace the current selection. Removes a previously uploaded file."""
    previous = await session.get(SelectedFolder, CURRENT_SLOT)
    if previous is not None:
        _discard_upload(previous, keep=selection.stored_file_path)
        await session.delete(previous)
        await session.flush()
    selection.selected_at = now_utc()
    session.add(
        SelectedFolder(
            slot=CURRENT_SLOT,
            folder_name=selection.folder_name,
            folder_path=str(selection.folder_path),
            access_file_path=str(selection.access_file_path),
            stored_file_path=(
                str(selection.stored_file_path) if selection.stored_file_path else None
            ),
            method=str(selection.method),
            quarter=selection.quarter,
            year=selection.year,
            article_count=selection.article_count,
            file_size=selection.file_size,
            selected_at=selection.selected_at,
        )
    )
    await session.commit()
    return selection


async def clear_current(session: AsyncSession) -> FolderSelection | None:
    """Forget the current selection and delete its uploaded file, if any."""
    row = await session.get(SelectedFolder, CURRENT_SLOT)
    if row is None:
        return None
    selection = _to_selection(row)
    _discard_upload(row)
    await session.delete(row)
    await session.commit()
    logger.info("Cleared folder selection '%s'", selection.folder_name)
    return selection


def _discard_upload(row: SelectedFolder, keep: Path | None = None) -> None:
    if not row.stored_file_path:
        return
    stored = Path(row.stored_file_path)
    if keep is not None and stored == keep:
        return
    try:
        stored.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove uploaded database %s: %s", stored, exc)
