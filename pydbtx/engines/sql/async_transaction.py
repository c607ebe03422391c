"""
AsyncTransactionRunner: TransactionRunner for asyncio callers over an asyncpg pool.

Same contract as the sync runner: acquire -> BEGIN -> statements -> COMMIT or
ROLLBACK -> release, release exactly once. Cancellation while the work runs still
goes through ROLLBACK and release before CancelledError propagates.

    pool = await create_asyncpg_pool(datasource)
    runner = AsyncTransactionRunner(pool)
    await runner.run([Statement("INSERT INTO t(name) VALUES ($1)", ("a",))])
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from pydbtx.core.config import settings
from pydbtx.core.errors import PoolExhausted, RollbackError, StatementError

from .executor import is_select_like
from .transaction import Statement, TxState, as_statement, report_rollback_failure

_log = logging.getLogger(__name__)

ASYNC_DB_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)

_DEFAULT: Any = object()

_RETURNING = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def _status_rowcount(status: str | None) -> int:
    """asyncpg returns command tags such as 'INSERT 0 3' or 'UPDATE 2'; the last field is the count."""
    parts = (status or "").split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class AsyncConnection:
    """A leased asyncpg connection; database rejections become StatementError."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @property
    def raw(self) -> Any:
        return self._conn

    async def query(
        self,
        sql: str,
        params: list | tuple | None = None,
        *,
        phase: str = "statement",
    ) -> list[dict[str, Any]] | int:
        """Rows for SELECT/WITH and for DML with a RETURNING clause, rowcount otherwise."""
        if isinstance(params, dict):
            raise TypeError("asyncpg takes positional parameters ($1, $2, ...)")
        args = tuple(params) if params is not None else ()
        try:
            if is_select_like(sql) or _RETURNING.search(sql):
                rows = await self._conn.fetch(sql, *args)
                return [dict(r) for r in rows]
            return _status_rowcount(await self._conn.execute(sql, *args))
        except ASYNC_DB_ERRORS as e:
            raise StatementError(sql, str(e), phase=phase) from e

    async def query_one(
        self, sql: str, params: list | tuple | None = None
    ) -> dict[str, Any] | None:
        rows = await self.query(sql, params)
        if isinstance(rows, list) and rows:
            return rows[0]
        return None


class AsyncTransactionRunner:
    """
    Run units of work atomically on one connection leased from an asyncpg pool
    (or any pool with ``await acquire(timeout=)`` and ``await release(conn)``).
    """

    def __init__(
        self,
        pool: Any,
        *,
        acquire_timeout: float | None = _DEFAULT,
        on_rollback_error: Callable[[RollbackError], None] | None = None,
        name: str = "asyncpg",
    ) -> None:
        self._pool = pool
        self._acquire_timeout: float | None = (
            settings.EXTERNAL_DB_POOL_ACQUIRE_TIMEOUT
            if acquire_timeout is _DEFAULT
            else acquire_timeout
        )
        self._on_rollback_error = on_rollback_error
        self._name = name
        self._history: list[TxState] = [TxState.IDLE]

    @property
    def state(self) -> TxState:
        return self._history[-1]

    @property
    def history(self) -> list[TxState]:
        """TxState trail of the most recently started run (one list per run)."""
        return list(self._history)

    async def run(self, statements: Iterable[Statement | str | tuple]) -> list[Any]:
        """Execute *statements* in order inside one transaction; first failure aborts the rest."""
        stmts = [as_statement(s) for s in statements]
        async with self.transaction() as tx:
            results: list[Any] = []
            for index, stmt in enumerate(stmts):
                try:
                    results.append(await tx.query(stmt.sql, stmt.params))
                except StatementError as e:
                    e.index = index
                    raise
            return results

    async def run_callback(
        self, work: Callable[[AsyncConnection], Awaitable[Any]]
    ) -> Any:
        """Await work(tx) inside one transaction and return its value after COMMIT."""
        async with self.transaction() as tx:
            return await work(tx)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """COMMIT on normal exit, ROLLBACK on any exception or cancellation, release always."""
        history: list[TxState] = []
        self._history = history
        self._set(history, TxState.ACQUIRING)
        try:
            conn = await self._pool.acquire(timeout=self._acquire_timeout)
        except asyncio.TimeoutError as e:
            self._set(history, TxState.FAILED)
            raise PoolExhausted(self._name, self._acquire_timeout) from e
        except BaseException:
            self._set(history, TxState.FAILED)
            raise

        tx = AsyncConnection(conn)
        discard = False
        try:
            await self._begin(tx, history)
            try:
                self._set(history, TxState.EXECUTING)
                yield tx
                self._set(history, TxState.COMMITTING)
                await tx.query("COMMIT", phase="commit")
            except BaseException as exc:
                discard = not await self._rollback(tx, exc, history)
                raise
            self._set(history, TxState.COMMITTED)
        finally:
            if discard:
                # Unknown session state after a failed ROLLBACK: do not hand it out again
                conn.terminate()
            await self._pool.release(conn)
            self._set(history, TxState.RELEASED)

    async def _begin(self, tx: AsyncConnection, history: list[TxState]) -> None:
        try:
            await tx.query("BEGIN", phase="begin")
        except BaseException:
            self._set(history, TxState.FAILED)
            raise
        self._set(history, TxState.BEGAN)

    async def _rollback(
        self, tx: AsyncConnection, exc: BaseException, history: list[TxState]
    ) -> bool:
        self._set(history, TxState.ROLLING_BACK)
        try:
            await tx.query("ROLLBACK", phase="rollback")
        except Exception as e:
            report_rollback_failure(exc, e, self._on_rollback_error)
            self._set(history, TxState.FAILED)
            return False
        self._set(history, TxState.ROLLED_BACK)
        return True

    def _set(self, history: list[TxState], state: TxState) -> None:
        history.append(state)
        _log.debug("transaction %s: %s", self._name, state.value)
