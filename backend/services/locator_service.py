"""Folder locator: finds the legacy database of a named point-of-sale folder."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from backend.exceptions import LegacyFileNotFound
from backend.legacy.base import LegacyFileType
from backend.services.datetime_service import from_timestamp

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from datetime import datetime

    from backend.config import Settings

logger = logging.getLogger(__name__)

_DISPLAY_PREFIX = "Dossier: "
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_USER_FOLDERS = ("Documents", "Desktop", "Downloads")

SKIPPED_DIRECTORIES = frozenset(
    name.lower()
    for name in (
        "System Volume Information",
        "$RECYCLE.BIN",
        "Windows",
        "Program Files",
        "Program Files (x86)",
        "ProgramData",
        ".git",
        "node_modules",
        "vendor",
    )
)


@dataclass
class FoundFile:
    """A match of the global search."""

    path: str
    directory: str
    size: int
    size_mb: float
    modified: datetime


def clean_folder_name(folder_name: str) -> str:
    """Strip the display prefix and surrounding whitespace from a folder name."""
    name = folder_name.strip()
    if name.startswith(_DISPLAY_PREFIX):
        name = name[len(_DISPLAY_PREFIX) :].strip()
    return name


def _normalize(path: str) -> str:
    return path.strip().replace("\\", "/")


def _join(base: str, name: str) -> str:
    return _normalize(base).rstrip("/") + "/" + name


def _is_readable_file(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.R_OK)


class FolderLocator:
    """Search the usual deployment locations for a folder's ``Caiss.mdb``."""

    def __init__(
        self,
        settings: Settings,
        environ: Mapping[str, str] | None = None,
        *,
        is_dir: Callable[[str], bool] = os.path.isdir,
    ) -> None:
        self.settings = settings
        self.environ = os.environ if environ is None else environ
        self._is_dir = is_dir
        self.file_name = LegacyFileType.CAISS.file_name

    def _hint_variants(self, folder_name: str, hint_path: str | None) -> list[str]:
        if hint_path is None:
            return []
        hint = _normalize(clean_folder_name(hint_path))
        if len(hint) <= 3 or hint == folder_name:
            return []
        variants = [hint]
        if not _DRIVE_RE.match(hint) and not hint.startswith("/"):
            variants.append("C:/" + hint)
            variants.append("D:/" + hint)
        return variants

    def _base_directories(self) -> list[str]:
        bases = list(self.settings.locator_deployment_roots)
        bases.append(str(self.settings.data_dir / "databases"))
        for variable in self.settings.locator_search_env_vars:
            value = self.environ.get(variable)
            if value:
                bases.append(value)
        profile = self.environ.get("USERPROFILE") or self.environ.get("HOME")
        if profile:
            bases.extend(_join(profile, sub) for sub in _USER_FOLDERS)
        bases.extend(root for root in self.settings.locator_drive_roots if self._is_dir(root))
        return bases

    def candidates(self, folder_name: str, hint_path: str | None = None) -> list[str]:
        """Deduplicated candidate directories, most likely first."""
        folder_name = clean_folder_name(folder_name)
        locations = self._hint_variants(folder_name, hint_path)
        locations.extend(_join(base, folder_name) for base in self._base_directories())
        unique = list(dict.fromkeys(_normalize(location) for location in locations))
        return sort_candidates(unique, self.settings.locator_primary_namespace)

    def locate(self, folder_name: str, hint_path: str | None = None) -> Path:
        """Return the first readable ``Caiss.mdb`` among the candidates.

        Raises ``LegacyFileNotFound`` carrying every attempted location.
        """
        attempted: list[str] = []
        for directory in self.candidates(folder_name, hint_path):
            candidate = _join(directory, self.file_name)
            attempted.append(candidate)
            if _is_readable_file(candidate):
                logger.info("Found %s for folder '%s'", candidate, folder_name)
                return Path(candidate)
        logger.warning(
            "No %s found for folder '%s' in %d location(s)",
            self.file_name,
            folder_name,
            len(attempted),
        )
        raise LegacyFileNotFound(clean_folder_name(folder_name), attempted)

    def global_search(
        self,
        roots: Iterable[str] | None = None,
        max_depth: int | None = None,
        file_name: str | None = None,
    ) -> list[FoundFile]:
        """Walk every root to a bounded depth and collect all matching files."""
        target = (file_name or self.file_name).lower()
        depth = self.settings.global_search_max_depth if max_depth is None else max_depth
        search_roots = list(roots) if roots is not None else self.settings.global_search_roots
        found: list[FoundFile] = []
        for root in search_roots:
            if not self._is_dir(root):
                continue
            logger.info("Global search for %s under %s (depth %d)", target, root, depth)
            _walk(Path(root), target, depth, found)
        return found


def sort_candidates(locations: list[str], primary_namespace: str) -> list[str]:
    """Primary-namespace locations first, then longer (more specific) paths first."""
    namespace = primary_namespace.lower()
    return sorted(locations, key=lambda loc: (namespace not in loc.lower(), -len(loc)))


def _walk(directory: Path, target: str, depth: int, found: list[FoundFile]) -> None:
    try:
        entries = list(os.scandir(directory))
    except OSError as exc:
        logger.debug("Skipping unreadable directory %s: %s", directory, exc)
        return
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                if depth > 0 and entry.name.lower() not in SKIPPED_DIRECTORIES:
                    _walk(Path(entry.path), target, depth - 1, found)
            elif entry.is_file() and entry.name.lower() == target:
                stat = entry.stat()
                found.append(
                    FoundFile(
                        path=entry.path,
                        directory=str(directory),
                        size=stat.st_size,
                        size_mb=round(stat.st_size / (1024 * 1024), 2),
                        modified=from_timestamp(stat.st_mtime),
                    )
                )
        except OSError as exc:
            logger.debug("Skipping %s: %s", entry.path, exc)
