"""Local article cache: an embedded SQLite copy of a folder's article table."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
)

from backend.exceptions import ConversionFailed
from backend.legacy.encoding import fix_encoding, to_minor_units
from backend.services.folder_service import safe_name

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine

    from backend.config import Settings
    from backend.legacy.base import LegacyExporter, Row
    from backend.services.folder_service import FolderSelection

logger = logging.getLogger(__name__)

_INSERT_BATCH = 1000

cache_metadata = MetaData()

cache_articles = Table(
    "article",
    cache_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", Text, nullable=False),
    Column("libelle", Text, nullable=False),
    Column("code_fam", Text, nullable=False),
    Column("base_ttc", Integer, nullable=False),
    Index("idx_libelle", "libelle"),
    Index("idx_codefam", "code_fam"),
    Index("idx_code", "code"),
)


@dataclass
class CacheHandle:
    """A ready-to-query cache file."""

    folder_name: str
    path: Path
    article_count: int
    built: bool

    @contextmanager
    def engine(self) -> Iterator[Engine]:
        """Open a short-lived engine on the cache file."""
        engine = create_engine(f"sqlite:///{self.path}")
        try:
            yield engine
        finally:
            engine.dispose()


class CacheService:
    """Builds and reuses per-folder article caches.

    A cache is built in a temporary file and moved into place only once it is
    complete, so a failed conversion never leaves a partial cache behind.
    """

    def __init__(self, settings: Settings, exporter: LegacyExporter) -> None:
        self.cache_dir = settings.cache_dir
        self.code_pages = list(settings.legacy_code_pages)
        self.exporter = exporter
        self._lock = threading.Lock()

    def cache_path(self, folder_name: str) -> Path:
        return self.cache_dir / f"{safe_name(folder_name)}_articles.sqlite"

    def ensure_cache(self, selection: FolderSelection) -> CacheHandle:
        """Return the folder's cache, converting the legacy table if there is none."""
        target = self.cache_path(selection.folder_name)
        with self._lock:
            if target.is_file():
                return CacheHandle(
                    folder_name=selection.folder_name,
                    path=target,
                    article_count=_count_rows(target),
                    built=False,
                )
            return self._build(selection, target)

    def rebuild(self, selection: FolderSelection) -> CacheHandle:
        """Convert again, replacing any existing cache."""
        target = self.cache_path(selection.folder_name)
        with self._lock:
            return self._build(selection, target)

    def drop(self, folder_name: str) -> bool:
        """Delete a folder's cache. Returns False if there was none."""
        target = self.cache_path(folder_name)
        with self._lock:
            if not target.exists():
                return False
            target.unlink()
            logger.info("Dropped article cache %s", target)
            return True

    def _build(self, selection: FolderSelection, target: Path) -> CacheHandle:
        source = selection.access_file_path
        if not self.exporter.is_available():
            raise ConversionFailed("The legacy extraction tool is not available on this host")
        if not source.is_file() or not os.access(source, os.R_OK):
            raise ConversionFailed(f"Legacy database is not readable: {source}")

        try:
            rows = self.exporter.export(source, "Article")
        except Exception as exc:
            logger.error("Export of Article from %s failed: %s", source, exc)
            raise ConversionFailed(f"Could not export articles from {source}: {exc}") from exc

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.stem}.", suffix=".tmp", dir=self.cache_dir
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            count = self._write_cache(tmp_path, rows)
            os.replace(tmp_path, target)
        except Exception as exc:
            tmp_path.unlink(missing_ok=True)
            logger.error("Building article cache for '%s' failed: %s", selection.folder_name, exc)
            raise ConversionFailed(
                f"Could not build article cache for '{selection.folder_name}': {exc}"
            ) from exc

        logger.info(
            "Built article cache %s with %d article(s) from %s", target, count, source
        )
        return CacheHandle(
            folder_name=selection.folder_name, path=target, article_count=count, built=True
        )

    def _write_cache(self, path: Path, rows: list[Row]) -> int:
        engine = create_engine(f"sqlite:///{path}")
        try:
            cache_metadata.drop_all(engine)
            cache_metadata.create_all(engine)
            records = [self._to_record(row) for row in rows]
            with engine.begin() as conn:
                for start in range(0, len(records), _INSERT_BATCH):
                    conn.execute(insert(cache_articles), records[start : start + _INSERT_BATCH])
        finally:
            engine.dispose()
        return len(records)

    def _to_record(self, row: Row) -> dict[str, str | int]:
        return {
            "code": fix_encoding(row.get("Code"), self.code_pages),
            "libelle": fix_encoding(row.get("Libelle"), self.code_pages),
            "code_fam": fix_encoding(row.get("CodeFam"), self.code_pages),
            "base_ttc": to_minor_units(row.get("BaseTTC")),
        }


def _count_rows(path: Path) -> int:
    engine = create_engine(f"sqlite:///{path}")
    try:
        with engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(cache_articles)).scalar_one())
    finally:
        engine.dispose()
