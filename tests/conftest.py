from collections.abc import Iterator

import pytest

from pydbtx.core.pool import PoolManager
from pydbtx.models import DataSource, ProductTypeEnum


@pytest.fixture
def sqlite_ds(tmp_path) -> DataSource:
    """SQLite file datasource; every connection to it sees the same data."""
    return DataSource(
        name="itest-sqlite",
        product_type=ProductTypeEnum.SQLITE,
        database=str(tmp_path / "pydbtx.db"),
    )


@pytest.fixture
def pool_manager() -> Iterator[PoolManager]:
    pm = PoolManager(pool_size=2, acquire_timeout=1.0)
    yield pm
    pm.dispose()


@pytest.fixture
def test_table(sqlite_ds: DataSource, pool_manager: PoolManager) -> str:
    pool_manager.query(
        sqlite_ds,
        "CREATE TABLE test (id INTEGER PRIMARY KEY, name TEXT NOT NULL UNIQUE)",
    )
    return "test"
