"""
DB connection helpers for external DataSources.

Uses psycopg (PostgreSQL), pymysql (MySQL) or sqlite3 (SQLite) based on product_type.
Connections are opened in driver auto-commit mode: BEGIN / COMMIT / ROLLBACK sent
as ordinary statements are the only transaction control in effect.
"""

import sqlite3
from typing import Any

import psycopg
import pymysql

from pydbtx.core.config import settings
from pydbtx.models import ProductTypeEnum

# Driver-level exception bases: anything raised by the database itself
DB_ERRORS: tuple[type[BaseException], ...] = (
    psycopg.Error,
    pymysql.err.Error,
    sqlite3.Error,
)

_DEFAULT_PORTS = {
    ProductTypeEnum.POSTGRES: 5432,
    ProductTypeEnum.MYSQL: 3306,
}


def _get(datasource: Any, key: str) -> Any:
    """Get attribute or dict key from DataSource, dict, or Pydantic model."""
    if isinstance(datasource, dict):
        return datasource.get(key)
    return getattr(datasource, key, None)


def _resolve_product_type(
    datasource: Any, product_type: ProductTypeEnum | None
) -> ProductTypeEnum:
    pt = product_type or _get(datasource, "product_type")
    if pt is None:
        raise ValueError("product_type is required (from datasource or argument)")
    if isinstance(pt, str):
        return ProductTypeEnum(pt)
    return pt


def _statement_timeout_ms() -> int | None:
    timeout_sec = settings.EXTERNAL_DB_STATEMENT_TIMEOUT
    if timeout_sec is None or timeout_sec <= 0:
        return None
    return int(timeout_sec * 1000)


def connect(
    datasource: Any,
    *,
    product_type: ProductTypeEnum | None = None,
) -> Any:
    """
    Open a connection to an external DB from DataSource or connection dict.

    - datasource: DataSource model or dict with host, port, database, username,
      password, and product_type (or pass product_type=).
    - SQLite only needs database (file path or ":memory:").
    - EXTERNAL_DB_STATEMENT_TIMEOUT is set once per session (Postgres:
      statement_timeout, MySQL: max_execution_time). SQLite has none.
    """
    pt = _resolve_product_type(datasource, product_type)
    database = _get(datasource, "database")
    if database is None:
        raise ValueError("datasource must provide database")

    timeout = settings.EXTERNAL_DB_CONNECT_TIMEOUT

    if pt == ProductTypeEnum.SQLITE:
        return sqlite3.connect(
            database,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    host = _get(datasource, "host")
    port = _get(datasource, "port") or _DEFAULT_PORTS.get(pt)
    username = _get(datasource, "username")
    password = _get(datasource, "password")

    for name, val in [
        ("host", host),
        ("username", username),
    ]:
        if val is None:
            raise ValueError(f"datasource must provide {name}")
    password = password if password is not None else ""
    timeout_ms = _statement_timeout_ms()

    if pt == ProductTypeEnum.POSTGRES:
        extra: dict[str, Any] = {}
        if timeout_ms is not None:
            extra["options"] = f"-c statement_timeout={timeout_ms}"
        return psycopg.connect(
            host=host,
            port=int(port),
            dbname=database,
            user=username,
            password=password,
            connect_timeout=timeout,
            autocommit=True,
            **extra,
        )
    if pt == ProductTypeEnum.MYSQL:
        return pymysql.connect(
            host=host,
            port=int(port),
            database=database,
            user=username,
            password=password,
            connect_timeout=timeout,
            autocommit=True,
            init_command=(
                f"SET SESSION max_execution_time = {timeout_ms}"
                if timeout_ms is not None
                else None
            ),
        )
    raise ValueError(f"Unsupported product_type: {pt}")


def execute(
    conn: Any,
    sql: str,
    params: dict | list | tuple | None = None,
) -> Any:
    """
    Execute SQL and return the cursor. Caller uses cursor_to_dicts(cursor) or cursor.rowcount.

    Sends exactly one statement: transaction control (BEGIN / COMMIT / ROLLBACK)
    must reach the server unchanged, even inside an aborted transaction.
    """
    cur = conn.cursor()
    if params is not None:
        cur.execute(sql, params)
    else:
        cur.execute(sql)
    return cur


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor result to list of dicts. Works for psycopg, pymysql and sqlite3."""
    desc = cursor.description
    if not desc:
        return []
    names = [d[0] for d in desc]
    return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]


def rowcount(cursor: Any) -> int:
    """Affected rows for DML; drivers report -1 or None when unknown."""
    rc = cursor.rowcount
    if rc is None or rc < 0:
        return 0
    return rc


def cursor_result(cursor: Any) -> list[dict[str, Any]] | int:
    """Rows for statements that produce a result set, rowcount otherwise. Closes the cursor."""
    try:
        if cursor.description:
            return cursor_to_dicts(cursor)
        return rowcount(cursor)
    finally:
        try:
            cursor.close()
        except Exception:
            pass
