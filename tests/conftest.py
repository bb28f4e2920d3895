"""Shared test fixtures for the PharmaPOS bridge."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.config import Settings
from backend.legacy.base import Contains, Row, apply_query
from backend.main import create_app
from backend.models.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable, Sequence

logger = logging.getLogger(__name__)


class FakeConnection:
    """In-memory stand-in for an open legacy database handle."""

    def __init__(self, path: Path, tables: dict[str, list[Row]], driver: FakeDriver) -> None:
        self.path = path
        self.tables = tables
        self.driver = driver
        self.closed = False

    def ping(self) -> None:
        if self.closed:
            raise RuntimeError("connection closed")
        if str(self.path) in self.driver.broken_pings:
            raise OSError("ping failed")

    def table_names(self) -> list[str]:
        return list(self.tables)

    def _rows(self, table: str) -> list[Row]:
        if str(self.path) in self.driver.failing_reads:
            raise OSError(f"cannot read {table}")
        for name, rows in self.tables.items():
            if name.lower() == table.lower():
                return rows
        raise KeyError(table)

    def select(
        self,
        table: str,
        *,
        where: Sequence[Contains] = (),
        order_by: str | None = None,
        top: int | None = None,
    ) -> list[Row]:
        self.driver.queries.append((table, top))
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
                totals[key] = totals.get(key, 0.0) + float(row.get(value_column) or 0)
        return totals

    def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Driver and exporter over in-memory tables, keyed by file path.

    ``fail_opens`` makes the next N opens of a path raise, ``broken_pings``
    and ``failing_reads`` hold paths whose handles misbehave.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, list[Row]]] = {}
        self.fail_opens: dict[str, int] = {}
        self.broken_pings: set[str] = set()
        self.failing_reads: set[str] = set()
        self.opened: list[str] = []
        self.queries: list[tuple[str, int | None]] = []
        self.available = True

    def add_database(self, path: Path, tables: dict[str, list[Row]]) -> Path:
        """Register tables for ``path`` and create a placeholder file there."""
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_bytes(b"Standard Jet DB")
        self.tables[str(path)] = tables
        return path

    def open(self, path: Path) -> FakeConnection:
        key = str(path)
        self.opened.append(key)
        remaining = self.fail_opens.get(key, 0)
        if remaining > 0:
            self.fail_opens[key] = remaining - 1
            raise OSError(f"database locked: {path}")
        if key not in self.tables:
            raise FileNotFoundError(key)
        return FakeConnection(Path(path), self.tables[key], self)

    def is_available(self) -> bool:
        return self.available

    def export(self, path: Path, table: str) -> list[Row]:
        conn = self.open(path)
        try:
            return list(conn.select(table))
        finally:
            conn.close()


def article(code: str, libelle: str, code_fam: str = "", price: str = "0") -> Row:
    return {"Code": code, "Libelle": libelle, "CodeFam": code_fam, "BaseTTC": price}


@asynccontextmanager
async def create_test_client(
    settings: Settings, driver: FakeDriver | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, pool, sync
    engine, caches) because ASGITransport does not trigger it. The legacy
    driver is replaced by ``driver``.
    """
    from backend.database import create_engine as create_db_engine
    from backend.database import init_schema
    from backend.services.article_service import ArticleQueryService
    from backend.services.cache_service import CacheService
    from backend.services.connection_pool import ConnectionPool
    from backend.services.locator_service import FolderLocator
    from backend.services.sync_service import SyncEngine
    from backend.services.watcher_service import FileWatcher

    driver = driver if driver is not None else FakeDriver()
    app = create_app(settings)
    settings.validate_runtime()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    await init_schema(engine)

    pool = ConnectionPool(driver, retry_attempts=1, retry_delay=0)
    app.state.connection_pool = pool
    app.state.locator = FolderLocator(settings, environ={})
    app.state.file_watcher = FileWatcher()
    app.state.sync_engine = SyncEngine(session_factory, pool)
    app.state.cache_service = CacheService(settings, driver)
    app.state.article_service = ArticleQueryService(pool)
    app.state.scheduler = None
    app.state.driver = driver

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    pool.close_all()
    await engine.dispose()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    data_dir = tmp_path / "data"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        data_dir=data_dir,
        cache_dir=data_dir / "database_cache",
        upload_dir=data_dir / "uploads",
        sync_enabled=False,
        locator_deployment_roots=[str(tmp_path / "Apicommerce" / "PdV")],
        locator_search_env_vars=[],
        locator_drive_roots=[],
        global_search_roots=[str(tmp_path)],
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
