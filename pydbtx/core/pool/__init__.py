"""
DB connection and bounded connection pool for external DataSources.

No driver layer: psycopg and pymysql are installed via pip, sqlite3 ships with Python;
DataSource (product_type, host, ...) is enough.
"""

from .connect import (
    DB_ERRORS,
    connect,
    cursor_result,
    cursor_to_dicts,
    execute,
    rowcount,
)
from .health import health_check
from .lease import PooledConnection
from .manager import DEFAULT_TIMEOUT, PoolManager, get_pool_manager

__all__ = [
    "DB_ERRORS",
    "DEFAULT_TIMEOUT",
    "connect",
    "execute",
    "cursor_to_dicts",
    "cursor_result",
    "rowcount",
    "health_check",
    "PooledConnection",
    "PoolManager",
    "get_pool_manager",
]
