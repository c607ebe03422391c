"""
Connection pool for external DataSources.

Reuses connections per datasource_id to avoid open/close on every request.
Each datasource is bounded to EXTERNAL_DB_POOL_SIZE open connections (idle + leased);
acquire() waits for a free slot and raises PoolExhausted once the wait limit passes.
Includes health-check on checkout, max-age eviction, and thread-safe
singleton initialisation.
"""

import logging
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple

from pydbtx.core.config import settings
from pydbtx.core.errors import PoolExhausted, ReleaseViolation
from pydbtx.models import DataSource

from .connect import connect, cursor_result
from .health import health_check
from .lease import PooledConnection

_log = logging.getLogger(__name__)

_DEFAULT_MAX_AGE_SEC = 600  # 10 minutes


_PING_IDLE_THRESHOLD = 30.0  # only ping connections idle longer than this (seconds)

# Sentinel: "use the manager's acquire timeout" (None already means wait forever)
DEFAULT_TIMEOUT: Any = object()


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # time.monotonic() when the connection was opened
    last_used: float   # time.monotonic() when last returned to pool


class PoolManager:
    """Per-datasource_id bounded connection pool with health-check and max-age."""

    def __init__(
        self,
        *,
        pool_size: int | None = None,
        max_age: float | None = None,
        acquire_timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        self._idle: dict[uuid.UUID, list[_PoolEntry]] = {}
        # idle + leased + reserved (being opened) per datasource
        self._open: dict[uuid.UUID, int] = {}
        # id(conn) -> created_at for every leased connection
        self._leased: dict[uuid.UUID, dict[int, float]] = {}
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._pool_size: int = (
            pool_size if pool_size is not None else settings.EXTERNAL_DB_POOL_SIZE
        )
        self._max_age: float = float(
            max_age
            if max_age is not None
            else getattr(settings, "EXTERNAL_DB_POOL_MAX_AGE_SEC", _DEFAULT_MAX_AGE_SEC)
        )
        self._acquire_timeout: float | None = (
            settings.EXTERNAL_DB_POOL_ACQUIRE_TIMEOUT
            if acquire_timeout is DEFAULT_TIMEOUT
            else acquire_timeout
        )

    @property
    def pool_size(self) -> int:
        return self._pool_size

    @property
    def acquire_timeout(self) -> float | None:
        return self._acquire_timeout

    def acquire(
        self, datasource: DataSource, *, timeout: float | None = DEFAULT_TIMEOUT
    ) -> PooledConnection:
        """
        Lease a healthy connection for *datasource* (from pool or freshly opened).

        Waits up to *timeout* seconds when the datasource already has pool_size
        connections open: None waits forever, 0 does not wait. Raises PoolExhausted.
        """
        if not datasource.is_active:
            raise ValueError(f"DataSource {datasource.name!r} is inactive")
        wait = self._acquire_timeout if timeout is DEFAULT_TIMEOUT else timeout
        ds_id = datasource.id
        entry = self._reserve(ds_id, wait)
        while entry is not None:
            if self._is_usable(entry):
                _log.debug("Reusing pooled connection for datasource %s", ds_id)
                return self._lease(datasource, entry.conn, entry.created_at)
            self._close_quiet(entry.conn)
            entry = self._swap_for_idle(ds_id)

        try:
            conn = connect(datasource)
        except BaseException:
            self._free_slot(ds_id)
            raise
        _log.debug("Opened new connection for datasource %s", ds_id)
        return self._lease(datasource, conn, time.monotonic())

    @contextmanager
    def connection(
        self, datasource: DataSource, *, timeout: float | None = DEFAULT_TIMEOUT
    ) -> Iterator[PooledConnection]:
        """Scoped acquisition: the lease is released on every exit path."""
        lease = self.acquire(datasource, timeout=timeout)
        try:
            yield lease
        finally:
            if not lease.released:
                lease.release()

    def release(
        self, conn: Any, datasource_id: uuid.UUID, *, discard: bool = False
    ) -> None:
        """
        Return a leased connection to the pool.

        discard=True (or a failing reset) closes it instead and frees its slot.
        Raises ReleaseViolation if *conn* is not currently leased.
        """
        with self._lock:
            leased = self._leased.get(datasource_id)
            if not leased or id(conn) not in leased:
                raise ReleaseViolation(
                    f"Connection is not leased from datasource {datasource_id}"
                )
            created_at = leased.pop(id(conn))

        if not discard:
            try:
                conn.rollback()
            except Exception as e:
                _log.warning("Reset on release failed, closing connection: %s", e)
                discard = True

        if discard:
            self._close_quiet(conn)
            self._free_slot(datasource_id)
            return

        with self._cond:
            pool = self._idle.setdefault(datasource_id, [])
            pool.append(
                _PoolEntry(conn=conn, created_at=created_at, last_used=time.monotonic())
            )
            self._cond.notify()

    def query(
        self,
        datasource: DataSource,
        sql: str,
        params: dict | list | tuple | None = None,
    ) -> list[dict[str, Any]] | int:
        """
        Auto-committed single statement: acquire, execute, release as one step.
        Returns rows for statements that produce a result set, otherwise rowcount.
        """
        with self.connection(datasource) as lease:
            return cursor_result(lease.query(sql, params, phase="query"))

    def dispose(self, datasource_id: uuid.UUID | None = None) -> None:
        """Close idle pooled connections. ``None`` = dispose all pools. Leased ones are untouched."""
        with self._cond:
            if datasource_id is not None:
                entries = self._idle.pop(datasource_id, [])
                self._dec_open(datasource_id, len(entries))
            else:
                entries = []
                for ds_id, pool in self._idle.items():
                    entries.extend(pool)
                    self._dec_open(ds_id, len(pool))
                self._idle.clear()
            self._cond.notify_all()
        if entries:
            _log.info("Disposing %d idle connection(s)", len(entries))
        for e in entries:
            self._close_quiet(e.conn)

    def stats(self) -> dict[str, int]:
        """Return pool statistics for monitoring."""
        with self._lock:
            return {
                "datasources": len(self._open),
                "idle_connections": sum(len(p) for p in self._idle.values()),
                "leased_connections": sum(len(m) for m in self._leased.values()),
                "open_connections": sum(self._open.values()),
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reserve(self, ds_id: uuid.UUID, wait: float | None) -> _PoolEntry | None:
        """
        Take an idle entry, or reserve a slot for a new connection (returns None).
        Blocks while the datasource is at capacity.
        """
        deadline = None if wait is None else time.monotonic() + max(wait, 0.0)
        with self._cond:
            while True:
                pool = self._idle.get(ds_id)
                if pool:
                    return pool.pop()
                n_open = self._open.get(ds_id, 0)
                if n_open < self._pool_size:
                    self._open[ds_id] = n_open + 1
                    return None
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    _log.debug("Pool exhausted for datasource %s", ds_id)
                    raise PoolExhausted(ds_id, wait)
                self._cond.wait(remaining)

    def _swap_for_idle(self, ds_id: uuid.UUID) -> _PoolEntry | None:
        """After closing a bad idle entry: take another idle one (freeing our slot) or keep the slot."""
        with self._cond:
            pool = self._idle.get(ds_id)
            if not pool:
                return None
            self._dec_open(ds_id, 1)
            self._cond.notify()
            return pool.pop()

    def _lease(
        self, datasource: DataSource, conn: Any, created_at: float
    ) -> PooledConnection:
        with self._lock:
            self._leased.setdefault(datasource.id, {})[id(conn)] = created_at
        return PooledConnection(self, datasource, conn)

    def _free_slot(self, ds_id: uuid.UUID) -> None:
        with self._cond:
            self._dec_open(ds_id, 1)
            self._cond.notify()

    def _dec_open(self, ds_id: uuid.UUID, n: int) -> None:
        """Caller holds the lock."""
        left = self._open.get(ds_id, 0) - n
        if left > 0:
            self._open[ds_id] = left
        else:
            self._open.pop(ds_id, None)

    def _is_usable(self, entry: _PoolEntry) -> bool:
        if self._is_expired(entry):
            _log.debug("Evicting connection older than %ss", self._max_age)
            return False
        idle_sec = time.monotonic() - entry.last_used
        if idle_sec > _PING_IDLE_THRESHOLD and not health_check(entry.conn):
            _log.warning("Evicting broken connection after %.0fs idle", idle_sec)
            return False
        try:
            entry.conn.rollback()
        except Exception:
            return False
        return True

    def _is_expired(self, entry: _PoolEntry) -> bool:
        return (time.monotonic() - entry.created_at) > self._max_age

    @staticmethod
    def _close_quiet(conn: Any) -> None:
        try:
            conn.close()
        except Exception:
            pass


_pool_manager: PoolManager | None = None
_pool_lock = threading.Lock()


def get_pool_manager() -> PoolManager:
    """Return the singleton PoolManager (thread-safe double-checked locking)."""
    global _pool_manager
    if _pool_manager is None:
        with _pool_lock:
            if _pool_manager is None:
                _pool_manager = PoolManager()
    return _pool_manager
