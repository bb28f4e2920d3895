"""Bounded pool of open handles on legacy database files."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from backend.exceptions import ConnectionFailed
from backend.legacy.base import path_key

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from backend.config import Settings
    from backend.legacy.base import LegacyConnection, LegacyDriver

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


@dataclass
class PooledConnection:
    """A live handle owned by the pool."""

    key: str
    path: Path
    handle: LegacyConnection
    created_at: float
    last_used_at: float
    borrowers: int = 0


@dataclass
class PoolStats:
    """Snapshot of the pool for status reporting."""

    active: int
    max_connections: int
    idle_timeout: float
    oldest_age: float | None = None
    newest_age: float | None = None
    paths: list[str] = field(default_factory=list)


@dataclass
class ConnectionTest:
    """Outcome of a one-off connection test."""

    path: str
    article_count: int
    latency_ms: float


class ConnectionPool:
    """Keeps at most ``max_connections`` handles open, evicting the least recently used.

    All mutation happens under one lock. Handle creation is retried with a
    linear backoff (``attempt * retry_delay`` seconds between tries).

    Handles checked out through ``connection()`` are never closed under a
    caller: closing, eviction or a flush only detaches them from the pool,
    and the last ``release`` closes them.
    """

    def __init__(
        self,
        driver: LegacyDriver,
        *,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self.driver = driver
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._entries: dict[str, PooledConnection] = {}
        self._detached: dict[int, PooledConnection] = {}

    @classmethod
    def from_settings(cls, settings: Settings, driver: LegacyDriver) -> ConnectionPool:
        return cls(
            driver,
            max_connections=settings.pool_max_connections,
            idle_timeout=settings.pool_idle_timeout_seconds,
            retry_attempts=settings.pool_retry_attempts,
            retry_delay=settings.pool_retry_delay_seconds,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return path_key(path) in self._entries

    def acquire(
        self, path: Path | str, *, verify: bool = True, checkout: bool = False
    ) -> LegacyConnection:
        """Return a live handle for ``path``, opening one if needed.

        With ``verify`` the cached handle is pinged first and replaced if the
        ping fails. With ``checkout`` the handle counts as in use until it is
        passed to ``release``. Raises ``ConnectionFailed`` once every attempt
        has failed.
        """
        path = Path(path)
        key = path_key(path)
        with self._lock:
            self._sweep_expired_locked()
            entry = self._entries.get(key)
            if entry is not None:
                if not verify or self._is_healthy(entry):
                    entry.last_used_at = self._clock()
                    if checkout:
                        entry.borrowers += 1
                    return entry.handle
                logger.warning("Health check failed for %s, reopening", entry.path)
                self._evict_locked(entry, reason="failed health check")

            if len(self._entries) >= self.max_connections:
                idle = [e for e in self._entries.values() if e.borrowers == 0]
                lru = min(idle or self._entries.values(), key=lambda e: e.last_used_at)
                self._evict_locked(lru, reason="pool full")

            handle = self._open_with_retry(path)
            now = self._clock()
            self._entries[key] = PooledConnection(
                key=key,
                path=path,
                handle=handle,
                created_at=now,
                last_used_at=now,
                borrowers=1 if checkout else 0,
            )
            logger.info(
                "Opened legacy connection to %s (%d/%d)",
                path,
                len(self._entries),
                self.max_connections,
            )
            return handle

    def release(self, handle: LegacyConnection) -> None:
        """Hand a handle back to the pool; it stays open for reuse unless it was detached."""
        with self._lock:
            entry = self._entries.get(path_key(handle.path))
            if entry is not None and entry.handle is handle:
                entry.borrowers = max(entry.borrowers - 1, 0)
                entry.last_used_at = self._clock()
                return
            detached = self._detached.get(id(handle))
            if detached is None:
                return
            detached.borrowers -= 1
            if detached.borrowers <= 0:
                del self._detached[id(handle)]
                self._close_handle(detached, reason="released after detach")

    @contextmanager
    def connection(self, path: Path | str, *, verify: bool = True) -> Iterator[LegacyConnection]:
        """Acquire a handle for the duration of a ``with`` block."""
        handle = self.acquire(path, verify=verify, checkout=True)
        try:
            yield handle
        finally:
            self.release(handle)

    def close(self, path: Path | str) -> bool:
        """Close the pooled handle for ``path``. Returns False if none was open."""
        with self._lock:
            entry = self._entries.get(path_key(path))
            if entry is None:
                return False
            self._evict_locked(entry, reason="closed")
            return True

    def close_all(self) -> int:
        """Close every pooled handle. Checked-out handles close when released."""
        with self._lock:
            entries = list(self._entries.values())
            for entry in entries:
                self._evict_locked(entry, reason="pool flush")
        if entries:
            logger.info("Closed %d legacy connection(s)", len(entries))
        return len(entries)

    def sweep_expired(self) -> int:
        """Close handles idle for longer than ``idle_timeout``."""
        with self._lock:
            return self._sweep_expired_locked()

    def stats(self) -> PoolStats:
        with self._lock:
            now = self._clock()
            ages = [now - e.created_at for e in self._entries.values()]
            return PoolStats(
                active=len(self._entries),
                max_connections=self.max_connections,
                idle_timeout=self.idle_timeout,
                oldest_age=max(ages) if ages else None,
                newest_age=min(ages) if ages else None,
                paths=sorted(str(e.path) for e in self._entries.values()),
            )

    def test_connection(self, path: Path | str) -> ConnectionTest:
        """Open a throwaway handle, count articles and report the latency."""
        path = Path(path)
        started = time.perf_counter()
        handle = self._open_with_retry(path)
        try:
            article_count = handle.count("Article")
        finally:
            handle.close()
        latency_ms = (time.perf_counter() - started) * 1000
        return ConnectionTest(path=str(path), article_count=article_count, latency_ms=latency_ms)

    # ── Internals (call with the lock held) ──────────────────

    def _sweep_expired_locked(self) -> int:
        now = self._clock()
        expired = [
            e
            for e in self._entries.values()
            if e.borrowers == 0 and now - e.last_used_at > self.idle_timeout
        ]
        for entry in expired:
            self._evict_locked(entry, reason="idle timeout")
        return len(expired)

    def _is_healthy(self, entry: PooledConnection) -> bool:
        try:
            entry.handle.ping()
        except Exception as exc:
            logger.debug("Ping failed for %s: %s", entry.path, exc)
            return False
        return True

    def _evict_locked(self, entry: PooledConnection, *, reason: str) -> None:
        self._entries.pop(entry.key, None)
        if entry.borrowers > 0:
            self._detached[id(entry.handle)] = entry
            logger.info(
                "Detached legacy connection to %s (%s), %d borrower(s) still using it",
                entry.path,
                reason,
                entry.borrowers,
            )
            return
        self._close_handle(entry, reason=reason)

    def _close_handle(self, entry: PooledConnection, *, reason: str) -> None:
        try:
            entry.handle.close()
        except Exception as exc:
            logger.warning("Error closing legacy connection to %s: %s", entry.path, exc)
        logger.info("Evicted legacy connection to %s (%s)", entry.path, reason)

    def _open_with_retry(self, path: Path) -> LegacyConnection:
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self.driver.open(path)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Attempt %d/%d to open %s failed: %s",
                    attempt,
                    self.retry_attempts,
                    path,
                    exc,
                )
                if attempt < self.retry_attempts:
                    self._sleep(attempt * self.retry_delay)
        raise ConnectionFailed(str(path), self.retry_attempts, last_error) from last_error
