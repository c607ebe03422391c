"""Unit tests for models (DataSource, ProductTypeEnum)."""

import uuid

from pydbtx.models import DataSource, ProductTypeEnum


def test_datasource_defaults() -> None:
    ds = DataSource(name="pg", product_type=ProductTypeEnum.POSTGRES, database="app")
    assert isinstance(ds.id, uuid.UUID)
    assert ds.is_active is True
    assert ds.close_connection_after_execute is False
    assert ds.host is None


def test_datasource_product_type_from_string() -> None:
    ds = DataSource(name="lite", product_type="sqlite", database=":memory:")
    assert ds.product_type is ProductTypeEnum.SQLITE


def test_product_type_values() -> None:
    assert {p.value for p in ProductTypeEnum} == {"postgres", "mysql", "sqlite"}
