"""Background trigger that keeps the central store in step with the legacy files."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from backend.services import folder_service
from backend.services.datetime_service import now_utc
from backend.services.watcher_service import FileWatcher

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.services.connection_pool import ConnectionPool
    from backend.services.sync_service import SyncEngine, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStatus:
    running: bool
    interval_seconds: float
    runs: int
    last_run: datetime | None
    last_error: str | None
    consecutive_failures: int


class SyncScheduler:
    """Runs a sync of the selected folder every ``interval`` seconds.

    Failures are logged and counted, never raised: the loop keeps going and
    ``status()`` exposes repeated failures to operators.
    """

    def __init__(
        self,
        engine: SyncEngine,
        pool: ConnectionPool,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float = 10.0,
        watcher: FileWatcher | None = None,
    ) -> None:
        self.engine = engine
        self.pool = pool
        self.session_factory = session_factory
        self.interval = interval
        self.watcher = watcher if watcher is not None else FileWatcher()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._runs = 0
        self._last_run: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Sync scheduler started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        """Stop the background loop and wait for the current run to finish."""
        task = self._task
        if task is None:
            return
        self._stop_event.set()
        await task
        self._task = None
        logger.info("Sync scheduler stopped")

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            interval_seconds=self.interval,
            runs=self._runs,
            last_run=self._last_run,
            last_error=self._last_error,
            consecutive_failures=self._consecutive_failures,
        )

    async def run_once(self) -> SyncResult | None:
        """One tick: sweep idle handles, then sync the selected folder if there is one."""
        self._runs += 1
        self._last_run = now_utc()
        try:
            self.pool.sweep_expired()
            async with self.session_factory() as session:
                selection = await folder_service.get_current(session)
            if selection is None:
                return None
            events = await asyncio.to_thread(self.watcher.check_for_changes, selection.files())
            self.engine.mark_changed(events)
            result = await self.engine.sync_folder(selection)
        except Exception as exc:
            self._record_failure(str(exc))
            logger.exception("Scheduled sync failed")
            return None

        if result.failed:
            self._record_failure("; ".join(f.error or f.path for f in result.failed))
        else:
            self._consecutive_failures = 0
            self._last_error = None
        return result

    def _record_failure(self, message: str) -> None:
        self._consecutive_failures += 1
        self._last_error = message
        if self._consecutive_failures > 1:
            logger.warning(
                "Scheduled sync failed %d time(s) in a row: %s",
                self._consecutive_failures,
                message,
            )

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                continue
        logger.debug("Sync scheduler loop exited")
