"""
PooledConnection: an exclusive lease of one connection from PoolManager.
"""

from typing import Any

from pydbtx.core.errors import ReleaseViolation, StatementError
from pydbtx.models import DataSource, ProductTypeEnum

from .connect import DB_ERRORS, execute


class PooledConnection:
    """
    One borrower holds a lease at a time. release() must run exactly once;
    a second call (or a query after release) raises ReleaseViolation.
    """

    def __init__(self, manager: Any, datasource: DataSource, conn: Any) -> None:
        self._manager = manager
        self._datasource = datasource
        self._conn = conn
        self._released = False

    @property
    def raw(self) -> Any:
        """The underlying DB-API connection."""
        return self._conn

    @property
    def datasource(self) -> DataSource:
        return self._datasource

    @property
    def product_type(self) -> ProductTypeEnum:
        return self._datasource.product_type

    @property
    def released(self) -> bool:
        return self._released

    def query(
        self,
        sql: str,
        params: dict | list | tuple | None = None,
        *,
        phase: str = "statement",
    ) -> Any:
        """Execute one statement on the leased connection and return the cursor."""
        if self._released:
            raise ReleaseViolation("Connection used after release")
        try:
            return execute(self._conn, sql, params)
        except DB_ERRORS as e:
            raise StatementError(sql, str(e), phase=phase) from e

    def release(self, *, discard: bool = False) -> None:
        """Return the connection to the pool; discard=True closes it instead."""
        if self._released:
            raise ReleaseViolation("Connection released twice")
        self._released = True
        self._manager.release(
            self._conn,
            self._datasource.id,
            discard=discard or self._datasource.close_connection_after_execute,
        )

    def __enter__(self) -> "PooledConnection":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if not self._released:
            self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "leased"
        return f"<PooledConnection {self._datasource.name!r} {state}>"
