"""
Execute a SQL script against a DataSource.

Supports:
- Single statement: returns [list[dict]] (result sets) or [int] (rowcount for DML)
- Multiple statements separated by ';': returns one result per statement, e.g.
  - [[{...}, {...}], [{...}]] for multiple SELECTs
  - [rowcount1, [{...}], rowcount3] for mixed DML/SELECT

Statements auto-commit one by one unless transactional=True, which runs the whole
script through TransactionRunner (all or nothing).
"""

import re
from collections.abc import Callable
from typing import Any

from pydbtx.core.errors import StatementError
from pydbtx.core.pool import (
    DB_ERRORS,
    PoolManager,
    connect,
    cursor_result,
    execute,
    get_pool_manager,
)
from pydbtx.models import DataSource

from .transaction import TransactionRunner


def is_select_like(sql: str) -> bool:
    """True if the statement is SELECT or WITH (CTE); otherwise DML (INSERT/UPDATE/DELETE etc)."""
    s = sql.strip()
    s = re.sub(r"^[\s;]+", "", s)
    if not s:
        return True
    first = s.split()[0].upper() if s.split() else ""
    return first in ("SELECT", "WITH")


def _split_statements(sql: str) -> list[str]:
    """Split SQL into statements on ``;`` while respecting quoted strings.

    Handles single-quoted (``'...'``), double-quoted (``"..."``), and
    dollar-quoted (``$$...$$``) literals so that semicolons inside them
    are not treated as statement terminators.
    """
    stmts: list[str] = []
    current: list[str] = []
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]

        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
            i += 1
            while i < length:
                c = sql[i]
                current.append(c)
                if c == quote:
                    if i + 1 < length and sql[i + 1] == quote:
                        current.append(sql[i + 1])
                        i += 2
                        continue
                    i += 1
                    break
                if c == "\\" and i + 1 < length:
                    current.append(sql[i + 1])
                    i += 2
                    continue
                i += 1
            continue

        if ch == "$" and i + 1 < length and sql[i + 1] == "$":
            tag_end = sql.find("$$", i + 2)
            if tag_end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : tag_end + 2])
                i = tag_end + 2
            continue

        if ch == "-" and i + 1 < length and sql[i + 1] == "-":
            end = sql.find("\n", i)
            if end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : end + 1])
                i = end + 1
            continue

        if ch == "/" and i + 1 < length and sql[i + 1] == "*":
            end = sql.find("*/", i + 2)
            if end == -1:
                current.append(sql[i:])
                i = length
            else:
                current.append(sql[i : end + 2])
                i = end + 2
            continue

        if ch == ";":
            stmt = "".join(current).strip()
            if stmt:
                stmts.append(stmt)
            current = []
            i += 1
            continue

        current.append(ch)
        i += 1

    tail = "".join(current).strip()
    if tail:
        stmts.append(tail)
    return stmts


def _run_sequential(
    run_one: Callable[[str], Any], statements: list[str]
) -> list[Any]:
    results: list[Any] = []
    for index, stmt in enumerate(statements):
        try:
            cur = run_one(stmt)
        except StatementError as e:
            e.index = index
            raise
        results.append(cursor_result(cur))
    return results


def execute_sql(
    datasource: DataSource,
    sql: str,
    *,
    use_pool: bool = True,
    transactional: bool = False,
    pool_manager: PoolManager | None = None,
) -> list[Any]:
    """
    Run SQL against the datasource. No parameter binding; SQL is final.

    Always returns a list of per-statement results (one element per statement).
    use_pool: if True, lease from PoolManager; else connect/close.
    transactional: wrap all statements in BEGIN/COMMIT (requires use_pool).
    A failing statement raises StatementError with its index; earlier statements
    stay committed unless transactional=True.
    """
    statements = _split_statements(sql)

    if transactional:
        if not use_pool:
            raise ValueError("transactional execution requires use_pool=True")
        return TransactionRunner(datasource, pool_manager=pool_manager).run(statements)

    if use_pool:
        pm = pool_manager if pool_manager is not None else get_pool_manager()
        with pm.connection(datasource) as lease:
            return _run_sequential(lambda s: lease.query(s, phase="query"), statements)

    conn = connect(datasource)
    try:

        def _run_one(stmt: str) -> Any:
            try:
                return execute(conn, stmt)
            except DB_ERRORS as e:
                raise StatementError(stmt, str(e), phase="query") from e

        return _run_sequential(_run_one, statements)
    finally:
        try:
            conn.close()
        except Exception:
            pass
