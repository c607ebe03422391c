"""
asyncpg connection pool for PostgreSQL DataSources.

Used by AsyncTransactionRunner; sizing and timeouts come from settings.
"""

from typing import Any

import asyncpg

from pydbtx.core.config import settings
from pydbtx.models import DataSource, ProductTypeEnum


async def create_asyncpg_pool(
    datasource: DataSource,
    *,
    min_size: int | None = None,
    max_size: int | None = None,
) -> Any:
    """Create an asyncpg pool for a PostgreSQL datasource."""
    if datasource.product_type != ProductTypeEnum.POSTGRES:
        raise ValueError(
            f"asyncpg pools need a postgres datasource, got {datasource.product_type.value}"
        )
    max_size = max_size if max_size is not None else settings.EXTERNAL_DB_POOL_SIZE
    min_size = min_size if min_size is not None else settings.EXTERNAL_DB_POOL_MIN_SIZE
    return await asyncpg.create_pool(
        host=datasource.host,
        port=datasource.port or 5432,
        user=datasource.username,
        password=datasource.password or "",
        database=datasource.database,
        min_size=min(min_size, max_size),
        max_size=max_size,
        timeout=settings.EXTERNAL_DB_CONNECT_TIMEOUT,
        command_timeout=settings.EXTERNAL_DB_STATEMENT_TIMEOUT or None,
    )
