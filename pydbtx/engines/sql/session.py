"""
Transaction handle for callback units of work: query, query_one, execute, insert, update, delete.

Every call runs on the one leased connection inside the open transaction; nothing
here commits. Driver errors surface as StatementError.
"""

from types import SimpleNamespace
from typing import Any

from pydbtx.core.pool import PooledConnection, cursor_result, cursor_to_dicts, rowcount


def make_tx_module(lease: PooledConnection) -> Any:
    """Build the `tx` object handed to TransactionRunner.run_callback(work)."""

    def query(sql: str, params: dict | list | tuple | None = None) -> list[dict[str, Any]]:
        cur = lease.query(sql, params)
        try:
            return cursor_to_dicts(cur)
        finally:
            cur.close()

    def query_one(sql: str, params: dict | list | tuple | None = None) -> dict[str, Any] | None:
        rows = query(sql, params)
        return rows[0] if rows else None

    def execute(sql: str, params: dict | list | tuple | None = None) -> int:
        cur = lease.query(sql, params)
        try:
            return rowcount(cur)
        finally:
            cur.close()

    def run(sql: str, params: dict | list | tuple | None = None) -> list[dict[str, Any]] | int:
        return cursor_result(lease.query(sql, params))

    return SimpleNamespace(
        query=query,
        query_one=query_one,
        execute=execute,
        insert=execute,
        update=execute,
        delete=execute,
        run=run,
        connection=lease,
    )
