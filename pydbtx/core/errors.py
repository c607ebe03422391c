"""
Error taxonomy for pooled transactional work.

PoolExhausted and ReleaseViolation come from the pool; StatementError and
RollbackError come from a unit of work. All share PydbtxError.
"""

from typing import Any


class PydbtxError(Exception):
    """Base class for errors raised by pydbtx."""


class PoolExhausted(PydbtxError, TimeoutError):
    """No connection became available within the acquire wait limit."""

    def __init__(self, datasource_id: Any, timeout: float | None) -> None:
        self.datasource_id = datasource_id
        self.timeout = timeout
        super().__init__(
            f"No connection available for datasource {datasource_id} "
            f"within {timeout}s"
        )


class ReleaseViolation(PydbtxError, RuntimeError):
    """A connection was released that is not currently leased (e.g. released twice)."""


class TransactionError(PydbtxError):
    """Base class for failures of a unit of work."""


class StatementError(TransactionError):
    """
    The database rejected a statement (including BEGIN / COMMIT).

    - statement: SQL text that failed.
    - index: 0-based position in the unit of work, None outside a sequence.
    - phase: "begin", "statement", "commit" or "query" (auto-commit path).
    - rollback_error: set when the rollback that followed this failure failed too.
    The driver exception is chained as __cause__.
    """

    def __init__(
        self,
        statement: str,
        message: str | None = None,
        *,
        index: int | None = None,
        phase: str = "statement",
    ) -> None:
        self.statement = statement
        self.index = index
        self.phase = phase
        self.rollback_error: RollbackError | None = None
        super().__init__(message or f"Statement failed: {statement}")

    def __str__(self) -> str:
        base = super().__str__()
        if self.index is not None:
            return f"{base} (statement #{self.index})"
        return base


class RollbackError(TransactionError):
    """ROLLBACK failed after an earlier failure; never replaces the original error."""

    def __init__(self, message: str, *, original: BaseException | None = None) -> None:
        self.original = original
        super().__init__(message)
