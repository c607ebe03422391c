"""
TransactionRunner: acquire -> BEGIN -> statements -> COMMIT or ROLLBACK -> release.

A unit of work runs on one dedicated pooled connection. The connection is released
exactly once on every path that obtained it, and the caller always gets the original
failure back, never the rollback's own error. No retries.

    runner = TransactionRunner(datasource)
    runner.run(["INSERT INTO t(name) VALUES ('a')", Statement("INSERT INTO t(name) VALUES (%s)", ("b",))])
    runner.run_callback(lambda tx: tx.query_one("SELECT count(*) AS n FROM t"))
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, NamedTuple

from pydbtx.core.errors import RollbackError, StatementError
from pydbtx.core.pool import (
    DEFAULT_TIMEOUT,
    PooledConnection,
    PoolManager,
    cursor_result,
    get_pool_manager,
)
from pydbtx.models import DataSource

from .session import make_tx_module

_log = logging.getLogger(__name__)


class Statement(NamedTuple):
    """One request: SQL text plus driver-native parameters."""

    sql: str
    params: dict | list | tuple | None = None


class TxState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    BEGAN = "began"
    EXECUTING = "executing"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    RELEASED = "released"
    FAILED = "failed"


def as_statement(item: Statement | str | tuple) -> Statement:
    """Accept Statement, plain SQL, or (sql, params)."""
    if isinstance(item, Statement):
        return item
    if isinstance(item, str):
        return Statement(item)
    return Statement(*item)


def report_rollback_failure(
    exc: BaseException,
    err: Exception,
    on_rollback_error: Callable[[RollbackError], None] | None,
) -> RollbackError:
    """
    Log a failed ROLLBACK and hand it to the side channel. The original error
    keeps propagating; StatementError gets the RollbackError attached.
    """
    rb = RollbackError(f"Rollback failed: {err}", original=exc)
    rb.__cause__ = err
    _log.warning("Rollback failed after %s: %s", type(exc).__name__, err)
    if isinstance(exc, StatementError):
        exc.rollback_error = rb
    if on_rollback_error is not None:
        try:
            on_rollback_error(rb)
        except Exception:
            _log.exception("on_rollback_error callback raised")
    return rb


class TransactionRunner:
    """
    Run units of work atomically on one pooled connection of *datasource*.

    - acquire_timeout: wait limit for the pool (None = forever, 0 = no wait);
      defaults to the pool's own setting.
    - on_rollback_error: called with RollbackError when ROLLBACK itself fails.
    - state / history: TxState trail of the most recently started run. Each run
      records into its own list, so runs sharing one runner never interleave.
    """

    def __init__(
        self,
        datasource: DataSource,
        *,
        pool_manager: PoolManager | None = None,
        acquire_timeout: float | None = DEFAULT_TIMEOUT,
        on_rollback_error: Callable[[RollbackError], None] | None = None,
    ) -> None:
        self._datasource = datasource
        self._pool = pool_manager if pool_manager is not None else get_pool_manager()
        self._acquire_timeout = acquire_timeout
        self._on_rollback_error = on_rollback_error
        self._history: list[TxState] = [TxState.IDLE]

    @property
    def state(self) -> TxState:
        return self._history[-1]

    @property
    def history(self) -> list[TxState]:
        return list(self._history)

    def run(self, statements: Iterable[Statement | str | tuple]) -> list[Any]:
        """
        Execute *statements* in order inside one transaction.
        Returns one result per statement (list[dict] for result sets, rowcount otherwise).
        The first failing statement aborts the rest and is re-raised as StatementError.
        """
        stmts = [as_statement(s) for s in statements]
        with self.transaction() as lease:
            return self._execute_all(lease, stmts)

    def run_callback(self, work: Callable[[Any], Any]) -> Any:
        """Call work(tx) inside one transaction and return its value after COMMIT."""
        with self.transaction() as lease:
            return work(make_tx_module(lease))

    @contextmanager
    def transaction(self) -> Iterator[PooledConnection]:
        """
        Scoped transaction on a dedicated connection: COMMIT when the block exits
        normally, ROLLBACK when it raises (including KeyboardInterrupt). Release always.
        """
        history: list[TxState] = []
        self._history = history
        self._set(history, TxState.ACQUIRING)
        try:
            lease = self._pool.acquire(self._datasource, timeout=self._acquire_timeout)
        except BaseException:
            self._set(history, TxState.FAILED)
            raise

        discard = False
        try:
            self._begin(lease, history)
            try:
                self._set(history, TxState.EXECUTING)
                yield lease
                self._commit(lease, history)
            except BaseException as exc:
                discard = not self._rollback(lease, exc, history)
                raise
            self._set(history, TxState.COMMITTED)
        finally:
            lease.release(discard=discard)
            self._set(history, TxState.RELEASED)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _begin(self, lease: PooledConnection, history: list[TxState]) -> None:
        try:
            cursor_result(lease.query("BEGIN", phase="begin"))
        except BaseException:
            self._set(history, TxState.FAILED)
            raise
        self._set(history, TxState.BEGAN)

    def _execute_all(self, lease: PooledConnection, stmts: list[Statement]) -> list[Any]:
        results: list[Any] = []
        for index, stmt in enumerate(stmts):
            try:
                cur = lease.query(stmt.sql, stmt.params)
            except StatementError as e:
                e.index = index
                _log.debug("Statement #%d failed, skipping %d more", index, len(stmts) - index - 1)
                raise
            results.append(cursor_result(cur))
        return results

    def _commit(self, lease: PooledConnection, history: list[TxState]) -> None:
        self._set(history, TxState.COMMITTING)
        cursor_result(lease.query("COMMIT", phase="commit"))

    def _rollback(
        self, lease: PooledConnection, exc: BaseException, history: list[TxState]
    ) -> bool:
        """ROLLBACK after *exc*. Returns False when the rollback itself failed."""
        self._set(history, TxState.ROLLING_BACK)
        try:
            cursor_result(lease.query("ROLLBACK", phase="rollback"))
        except Exception as e:
            report_rollback_failure(exc, e, self._on_rollback_error)
            self._set(history, TxState.FAILED)
            return False
        self._set(history, TxState.ROLLED_BACK)
        return True

    def _set(self, history: list[TxState], state: TxState) -> None:
        history.append(state)
        _log.debug("transaction %s: %s", self._datasource.name, state.value)


def run_in_transaction(
    datasource: DataSource,
    statements: Iterable[Statement | str | tuple],
    *,
    pool_manager: PoolManager | None = None,
    acquire_timeout: float | None = DEFAULT_TIMEOUT,
    on_rollback_error: Callable[[RollbackError], None] | None = None,
) -> list[Any]:
    """One-shot TransactionRunner(datasource, ...).run(statements)."""
    runner = TransactionRunner(
        datasource,
        pool_manager=pool_manager,
        acquire_timeout=acquire_timeout,
        on_rollback_error=on_rollback_error,
    )
    return runner.run(statements)
