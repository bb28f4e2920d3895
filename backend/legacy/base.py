"""Base protocols and data classes for legacy database access."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

Row = dict[str, str]


class LegacyFileType(StrEnum):
    """The legacy database files that make up one point-of-sale folder."""

    CAISS = "caiss"
    FACTURATION = "facturation"
    FRONTOFFICE = "frontoffice"

    @property
    def file_name(self) -> str:
        return _FILE_NAMES[self]


_FILE_NAMES = {
    LegacyFileType.CAISS: "Caiss.mdb",
    LegacyFileType.FACTURATION: "caiss_facturation.mdb",
    LegacyFileType.FRONTOFFICE: "Caiss_frontoffice.mdb",
}


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring filter on one column."""

    column: str
    needle: str

    def matches(self, row: Row) -> bool:
        return self.needle.lower() in (row.get(self.column) or "").lower()


@runtime_checkable
class LegacyConnection(Protocol):
    """An open handle on one legacy database file."""

    path: Path

    def ping(self) -> None:
        """Run a no-op query. Raises if the handle is no longer usable."""
        ...

    def table_names(self) -> list[str]:
        """List the user tables of the database."""
        ...

    def select(
        self,
        table: str,
        *,
        where: Sequence[Contains] = (),
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Row]:
        """Return rows of ``table`` matching every filter, at most ``top`` of them."""
        ...

    def count(self, table: str, *, where: Sequence[Contains] = ()) -> int:
        """Count rows of ``table`` matching every filter."""
        ...

    def sum_by(
        self, table: str, value_column: str, key_column: str, keys: Iterable[str]
    ) -> dict[str, float]:
        """Sum ``value_column`` grouped by ``key_column``, restricted to ``keys``."""
        ...

    def close(self) -> None:
        """Release the handle."""
        ...


@runtime_checkable
class LegacyDriver(Protocol):
    """Opens connections on legacy database files."""

    def open(self, path: Path) -> LegacyConnection:
        """Open a new handle. Raises on any failure."""
        ...


@runtime_checkable
class LegacyExporter(Protocol):
    """Dumps whole legacy tables as text rows."""

    def is_available(self) -> bool:
        """Return True if the extraction tool can be used on this host."""
        ...

    def export(self, path: Path, table: str) -> list[Row]:
        """Export every row of ``table``."""
        ...


def apply_query(
    rows: Iterable[Row],
    *,
    where: Sequence[Contains] = (),
    order_by: str | None = None,
    top: int | None = None,
) -> list[Row]:
    """Filter, sort and cap exported rows the way the legacy engine would."""
    selected = [row for row in rows if all(f.matches(row) for f in where)]
    if order_by is not None:
        selected.sort(key=lambda row: (row.get(order_by) or "").lower())
    if top is not None:
        selected = selected[:top]
    return selected


def path_key(path: Path | str) -> str:
    """Deterministic cache key for a file path (MD5 of the absolute path)."""
    absolute = Path(path).absolute()
    return hashlib.md5(str(absolute).encode("utf-8"), usedforsecurity=False).hexdigest()
