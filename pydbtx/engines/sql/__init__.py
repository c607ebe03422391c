"""
SQL execution over pooled connections.

Exports: TransactionRunner, run_in_transaction, Statement, TxState, execute_sql.
The asyncio runner lives in pydbtx.engines.sql.async_transaction (needs asyncpg).
"""

from pydbtx.engines.sql.executor import execute_sql
from pydbtx.engines.sql.transaction import (
    Statement,
    TransactionRunner,
    TxState,
    run_in_transaction,
)

__all__ = [
    "Statement",
    "TransactionRunner",
    "TxState",
    "execute_sql",
    "run_in_transaction",
]
