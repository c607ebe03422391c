"""
pydbtx: transactional units of work over pooled database connections.
"""

from pydbtx.core.errors import (
    PoolExhausted,
    PydbtxError,
    ReleaseViolation,
    RollbackError,
    StatementError,
    TransactionError,
)
from pydbtx.core.pool import PooledConnection, PoolManager, get_pool_manager
from pydbtx.engines.sql import (
    Statement,
    TransactionRunner,
    TxState,
    execute_sql,
    run_in_transaction,
)
from pydbtx.models import DataSource, ProductTypeEnum

__version__ = "0.1.0"

__all__ = [
    "DataSource",
    "PoolExhausted",
    "PoolManager",
    "PooledConnection",
    "ProductTypeEnum",
    "PydbtxError",
    "ReleaseViolation",
    "RollbackError",
    "Statement",
    "StatementError",
    "TransactionError",
    "TransactionRunner",
    "TxState",
    "execute_sql",
    "get_pool_manager",
    "run_in_transaction",
]
