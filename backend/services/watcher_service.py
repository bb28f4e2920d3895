"""File watcher: fingerprints legacy database files and reports changes."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from backend.legacy.base import LegacyFileType, path_key
from backend.services.datetime_service import from_timestamp, now_utc

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600

AFFECTED_AREAS: dict[LegacyFileType, tuple[str, ...]] = {
    LegacyFileType.CAISS: ("articles", "families"),
    LegacyFileType.FACTURATION: ("stocks", "statistics"),
    LegacyFileType.FRONTOFFICE: ("tickets",),
}


@dataclass(frozen=True)
class Fingerprint:
    """Observed state of a file."""

    modified_time: float
    size: int
    checksum: str


@dataclass
class ChangeEvent:
    """A file whose fingerprint differs from the last observation."""

    file_type: LegacyFileType
    path: str
    changed_fields: list[str]
    detected_at: datetime = field(default_factory=now_utc)


@dataclass
class FileStatus:
    file_type: LegacyFileType
    path: str
    exists: bool
    last_modified: datetime | None = None
    size: int | None = None


def hash_file(file_path: Path) -> str:
    """Compute MD5 hash of a file."""
    md5 = hashlib.md5(usedforsecurity=False)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            md5.update(chunk)
    return md5.hexdigest()


def fingerprint(path: Path) -> Fingerprint:
    stat = path.stat()
    return Fingerprint(modified_time=stat.st_mtime, size=stat.st_size, checksum=hash_file(path))


def folder_files(folder: Path) -> dict[LegacyFileType, Path]:
    """Map every legacy file type to its expected location inside ``folder``."""
    return {file_type: folder / file_type.file_name for file_type in LegacyFileType}


def affected_areas(events: Iterable[ChangeEvent]) -> list[str]:
    """Application areas whose data is stale after ``events``."""
    areas: list[str] = []
    for event in events:
        for area in AFFECTED_AREAS[event.file_type]:
            if area not in areas:
                areas.append(area)
    return areas


class FileWatcher:
    """Remember a fingerprint per file and emit an event when it changes.

    The first observation of a path only records a baseline. Entries not
    touched for ``ttl_seconds`` are forgotten.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Fingerprint, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def check_for_changes(self, paths: Mapping[LegacyFileType, Path]) -> list[ChangeEvent]:
        """Fingerprint each existing file and report those that changed."""
        self.cleanup()
        events: list[ChangeEvent] = []
        for file_type, path in paths.items():
            if not path.is_file():
                continue
            try:
                current = fingerprint(path)
            except OSError as exc:
                logger.warning("Cannot fingerprint %s: %s", path, exc)
                continue

            key = path_key(path)
            previous = self._entries.get(key)
            self._entries[key] = (current, self._clock())
            if previous is None:
                logger.debug("Baseline recorded for %s", path)
                continue

            changed = _changed_fields(previous[0], current)
            if changed:
                logger.info("Change detected in %s: %s", path, ", ".join(changed))
                events.append(
                    ChangeEvent(file_type=file_type, path=str(path), changed_fields=changed)
                )
        return events

    def reset(self, paths: Iterable[Path] | None = None) -> int:
        """Forget baselines for ``paths``, or for every file when None."""
        if paths is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        count = 0
        for path in paths:
            if self._entries.pop(path_key(path), None) is not None:
                count += 1
        return count

    def cleanup(self) -> None:
        """Remove expired entries."""
        now = self._clock()
        expired = [k for k, (_, t) in self._entries.items() if now - t > self._ttl]
        for k in expired:
            del self._entries[k]


def file_status(paths: Mapping[LegacyFileType, Path]) -> list[FileStatus]:
    """Existence and modification time of each legacy file."""
    statuses: list[FileStatus] = []
    for file_type, path in paths.items():
        if path.is_file():
            stat = path.stat()
            statuses.append(
                FileStatus(
                    file_type=file_type,
                    path=str(path),
                    exists=True,
                    last_modified=from_timestamp(stat.st_mtime),
                    size=stat.st_size,
                )
            )
        else:
            statuses.append(FileStatus(file_type=file_type, path=str(path), exists=False))
    return statuses


def _changed_fields(previous: Fingerprint, current: Fingerprint) -> list[str]:
    changed: list[str] = []
    if previous.modified_time != current.modified_time:
        changed.append("modified_time")
    if previous.size != current.size:
        changed.append("size")
    if previous.checksum != current.checksum:
        changed.append("checksum")
    return changed
