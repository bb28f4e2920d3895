"""Legacy database access through the mdbtools command-line programs."""

from __future__ import annotations

import csv
import io
import logging
import shutil
import subprocess
from typing import TYPE_CHECKING

from backend.legacy.base import Row, apply_query
from backend.legacy.encoding import decode_export, to_number
from backend.services.datetime_service import LEGACY_EXPORT_FORMAT

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from backend.legacy.base import Contains

logger = logging.getLogger(__name__)

_EXPORT_TIMEOUT = 120


class MdbTools:
    """Runs mdbtools programs, optionally from a configured directory."""

    def __init__(self, tools_dir: Path | None = None) -> None:
        self.tools_dir = tools_dir

    def _program(self, name: str) -> str:
        if self.tools_dir is not None:
            return str(self.tools_dir / name)
        return name

    def is_available(self) -> bool:
        """Return True if ``mdb-export`` can be found."""
        return shutil.which(self._program("mdb-export")) is not None

    def _run(self, *args: str) -> subprocess.CompletedProcess[bytes]:
        """Run an mdbtools program and capture its raw output."""
        return subprocess.run(
            [self._program(args[0]), *args[1:]],
            check=True,
            capture_output=True,
            timeout=_EXPORT_TIMEOUT,
        )

    def version(self, path: Path) -> str:
        """Return the JET version of ``path``; fails if it is not a database file."""
        return decode_export(self._run("mdb-ver", str(path)).stdout).strip()

    def tables(self, path: Path) -> list[str]:
        """List user tables, one name per output line."""
        output = decode_export(self._run("mdb-tables", "-1", str(path)).stdout)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def export(self, path: Path, table: str) -> list[Row]:
        """Export ``table`` as CSV and parse it into rows keyed by column name."""
        result = self._run("mdb-export", "-D", LEGACY_EXPORT_FORMAT, str(path), table)
        reader = csv.DictReader(io.StringIO(decode_export(result.stdout), newline=""))
        rows = [
            {key: value or "" for key, value in row.items() if key is not None} for row in reader
        ]
        logger.debug("Exported %d row(s) from %s:%s", len(rows), path, table)
        return rows


class MdbConnection:
    """A handle on one database file, caching exported tables until the file changes."""

    def __init__(self, path: Path, tools: MdbTools) -> None:
        self.path = path
        self._tools = tools
        self._tables: dict[str, list[Row]] = {}
        self._mtime = path.stat().st_mtime_ns
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Connection to {self.path} is closed")

    def _rows(self, table: str) -> list[Row]:
        self._check_open()
        mtime = self.path.stat().st_mtime_ns
        if mtime != self._mtime:
            self._tables.clear()
            self._mtime = mtime
        if table not in self._tables:
            self._tables[table] = self._tools.export(self.path, table)
        return self._tables[table]

    def ping(self) -> None:
        self._check_open()
        self._tools.version(self.path)

    def table_names(self) -> list[str]:
        self._check_open()
        return self._tools.tables(self.path)

    def select(
        self,
        table: str,
        *,
        where: Sequence[Contains] = (),
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Row]:
        return apply_query(self._rows(table), where=where, order_by=order_by, top=top)

    def count(self, table: str, *, where: Sequence[Contains] = ()) -> int:
        return len(apply_query(self._rows(table), where=where))

    def sum_by(
        self, table: str, value_column: str, key_column: str, keys: Iterable[str]
    ) -> dict[str, float]:
        wanted = set(keys)
        totals: dict[str, float] = {}
        for row in self._rows(table):
            key = row.get(key_column, "")
            if key in wanted:
                totals[key] = totals.get(key, 0.0) + to_number(row.get(value_column))
        return totals

    def close(self) -> None:
        self._tables.clear()
        self._closed = True


class MdbToolsDriver:
    """Legacy driver and exporter backed by mdbtools."""

    def __init__(self, tools_dir: Path | None = None) -> None:
        self.tools = MdbTools(tools_dir)

    def is_available(self) -> bool:
        return self.tools.is_available()

    def open(self, path: Path) -> MdbConnection:
        if not self.is_available():
            raise FileNotFoundError("mdbtools is not installed (mdb-export not found)")
        connection = MdbConnection(path, self.tools)
        connection.ping()
        return connection

    def export(self, path: Path, table: str) -> list[Row]:
        return self.tools.export(path, table)
