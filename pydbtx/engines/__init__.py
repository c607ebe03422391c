"""
Engines: transactional and auto-commit SQL execution.
"""

from pydbtx.engines.sql import (
    Statement,
    TransactionRunner,
    TxState,
    execute_sql,
    run_in_transaction,
)

__all__ = [
    "Statement",
    "TransactionRunner",
    "TxState",
    "execute_sql",
    "run_in_transaction",
]
