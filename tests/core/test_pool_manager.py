"""Tests for core.pool.PoolManager and PooledConnection against SQLite files."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from pydbtx.core.errors import PoolExhausted, ReleaseViolation, StatementError
from pydbtx.core.pool import PoolManager, get_pool_manager
from pydbtx.core.pool.connect import connect as real_connect
from pydbtx.models import DataSource


def test_acquire_release_reuses_connection(
    sqlite_ds: DataSource, pool_manager: PoolManager
) -> None:
    lease = pool_manager.acquire(sqlite_ds)
    raw = lease.raw
    lease.release()
    again = pool_manager.acquire(sqlite_ds)
    try:
        assert again.raw is raw
    finally:
        again.release()
    assert pool_manager.stats()["idle_connections"] == 1


def test_double_release_raises(sqlite_ds: DataSource, pool_manager: PoolManager) -> None:
    lease = pool_manager.acquire(sqlite_ds)
    lease.release()
    assert lease.released is True
    with pytest.raises(ReleaseViolation):
        lease.release()


def test_release_of_unknown_connection_raises(
    sqlite_ds: DataSource, pool_manager: PoolManager
) -> None:
    with pytest.raises(ReleaseViolation):
        pool_manager.release(MagicMock(), sqlite_ds.id)


def test_query_after_release_raises(sqlite_ds: DataSource, pool_manager: PoolManager) -> None:
    lease = pool_manager.acquire(sqlite_ds)
    lease.release()
    with pytest.raises(ReleaseViolation):
        lease.query("SELECT 1")


def test_lease_query_wraps_driver_error(
    sqlite_ds: DataSource, pool_manager: PoolManager
) -> None:
    with pool_manager.connection(sqlite_ds) as lease:
        with pytest.raises(StatementError) as ei:
            lease.query("SELECT * FROM missing_table")
    assert ei.value.statement == "SELECT * FROM missing_table"
    assert ei.value.__cause__ is not None
    assert pool_manager.stats()["leased_connections"] == 0


def test_pool_exhausted_without_wait(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, acquire_timeout=0)
    held = pm.acquire(sqlite_ds)
    try:
        with pytest.raises(PoolExhausted) as ei:
            pm.acquire(sqlite_ds)
        assert ei.value.datasource_id == sqlite_ds.id
        assert isinstance(ei.value, TimeoutError)
    finally:
        held.release()
        pm.dispose()


def test_pool_exhausted_after_wait_limit(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1)
    held = pm.acquire(sqlite_ds)
    try:
        started = time.monotonic()
        with pytest.raises(PoolExhausted):
            pm.acquire(sqlite_ds, timeout=0.1)
        assert time.monotonic() - started >= 0.1
    finally:
        held.release()
        pm.dispose()


def test_zero_size_pool_never_connects(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=0, acquire_timeout=0)
    with patch("pydbtx.core.pool.manager.connect") as mock_connect:
        with pytest.raises(PoolExhausted):
            pm.acquire(sqlite_ds)
    mock_connect.assert_not_called()


def test_waiting_acquire_gets_released_connection(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, acquire_timeout=5)
    first = pm.acquire(sqlite_ds)
    got = []
    waiter = threading.Thread(target=lambda: got.append(pm.acquire(sqlite_ds)))
    waiter.start()
    time.sleep(0.05)
    assert got == []
    first.release()
    waiter.join(timeout=2)
    assert len(got) == 1
    assert got[0].raw is first.raw
    got[0].release()
    pm.dispose()


def test_pool_never_exceeds_size(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=2, acquire_timeout=5)
    peak = 0
    lock = threading.Lock()
    errors: list[BaseException] = []

    def worker() -> None:
        nonlocal peak
        try:
            for _ in range(5):
                with pm.connection(sqlite_ds) as lease:
                    with lock:
                        peak = max(peak, pm.stats()["leased_connections"])
                    lease.query("SELECT 1").close()
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert peak <= 2
    stats = pm.stats()
    assert stats["leased_connections"] == 0
    assert stats["open_connections"] <= 2
    pm.dispose()


def test_connection_context_releases_on_error(
    sqlite_ds: DataSource, pool_manager: PoolManager
) -> None:
    with pytest.raises(RuntimeError):
        with pool_manager.connection(sqlite_ds):
            raise RuntimeError("boom")
    stats = pool_manager.stats()
    assert stats["leased_connections"] == 0
    assert stats["idle_connections"] == 1


def test_connect_failure_frees_slot(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, acquire_timeout=0)
    with patch("pydbtx.core.pool.manager.connect", side_effect=OSError("refused")):
        with pytest.raises(OSError):
            pm.acquire(sqlite_ds)
    assert pm.stats()["open_connections"] == 0
    lease = pm.acquire(sqlite_ds)
    lease.release()
    pm.dispose()


def test_discard_closes_connection(sqlite_ds: DataSource, pool_manager: PoolManager) -> None:
    lease = pool_manager.acquire(sqlite_ds)
    lease.release(discard=True)
    stats = pool_manager.stats()
    assert stats["idle_connections"] == 0
    assert stats["open_connections"] == 0


def test_close_connection_after_execute(sqlite_ds: DataSource, pool_manager: PoolManager) -> None:
    sqlite_ds.close_connection_after_execute = True
    lease = pool_manager.acquire(sqlite_ds)
    lease.release()
    assert pool_manager.stats()["idle_connections"] == 0


def test_failed_reset_closes_connection(sqlite_ds: DataSource) -> None:
    conn = MagicMock()
    conn.rollback.side_effect = RuntimeError("broken")
    pm = PoolManager(pool_size=1, acquire_timeout=0)
    with patch("pydbtx.core.pool.manager.connect", return_value=conn):
        lease = pm.acquire(sqlite_ds)
    lease.release()
    conn.close.assert_called_once()
    assert pm.stats()["open_connections"] == 0


def test_expired_connection_is_replaced(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, max_age=-1, acquire_timeout=0)
    with patch("pydbtx.core.pool.manager.connect", wraps=real_connect) as mock_connect:
        first = pm.acquire(sqlite_ds)
        first_raw = first.raw
        first.release()
        second = pm.acquire(sqlite_ds)
        assert second.raw is not first_raw
        second.release()
    assert mock_connect.call_count == 2
    assert pm.stats()["open_connections"] == 1
    pm.dispose()


def test_idle_connection_failing_health_check_is_replaced(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, acquire_timeout=0)
    first = pm.acquire(sqlite_ds)
    first_raw = first.raw
    first.release()
    first_raw.close()
    with patch("pydbtx.core.pool.manager._PING_IDLE_THRESHOLD", -1.0):
        second = pm.acquire(sqlite_ds)
    try:
        assert second.raw is not first_raw
    finally:
        second.release()
    assert pm.stats()["open_connections"] == 1
    pm.dispose()


def test_long_idle_connection_is_pinged_before_reuse(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=1, acquire_timeout=0)
    first = pm.acquire(sqlite_ds)
    first_raw = first.raw
    first.release()
    with (
        patch("pydbtx.core.pool.manager._PING_IDLE_THRESHOLD", -1.0),
        patch("pydbtx.core.pool.manager.health_check", return_value=True) as mock_ping,
    ):
        second = pm.acquire(sqlite_ds)
    assert second.raw is first_raw
    mock_ping.assert_called_once_with(first_raw)
    second.release()
    pm.dispose()


def test_inactive_datasource_rejected(sqlite_ds: DataSource, pool_manager: PoolManager) -> None:
    sqlite_ds.is_active = False
    with pytest.raises(ValueError, match="inactive"):
        pool_manager.acquire(sqlite_ds)


def test_query_is_auto_committed(
    sqlite_ds: DataSource, pool_manager: PoolManager, test_table: str
) -> None:
    n = pool_manager.query(sqlite_ds, "INSERT INTO test(name) VALUES (?)", ("example",))
    assert n == 1
    other = PoolManager(pool_size=1)
    try:
        rows = other.query(sqlite_ds, "SELECT name FROM test")
    finally:
        other.dispose()
    assert rows == [{"name": "example"}]
    assert pool_manager.stats()["leased_connections"] == 0


def test_dispose_closes_idle(sqlite_ds: DataSource) -> None:
    pm = PoolManager(pool_size=2)
    a = pm.acquire(sqlite_ds)
    b = pm.acquire(sqlite_ds)
    a.release()
    pm.dispose(sqlite_ds.id)
    stats = pm.stats()
    assert stats["idle_connections"] == 0
    assert stats["leased_connections"] == 1
    assert stats["open_connections"] == 1
    b.release()
    pm.dispose()
    assert pm.stats()["open_connections"] == 0


def test_get_pool_manager_is_singleton() -> None:
    assert get_pool_manager() is get_pool_manager()
