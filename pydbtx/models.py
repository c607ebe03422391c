"""
DataSource description for external databases.

A DataSource carries everything connect() needs; it is keyed in the pool by id.
"""

import uuid
from enum import Enum

from sqlmodel import Field, SQLModel


class ProductTypeEnum(str, Enum):
    """Supported database product types (postgres, mysql, sqlite)."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class DataSource(SQLModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(max_length=255)
    product_type: ProductTypeEnum
    host: str | None = Field(default=None, max_length=255)
    port: int | None = Field(default=None)
    # Database name; for SQLite the file path (or ":memory:")
    database: str = Field(max_length=1024)
    username: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, max_length=512)
    is_active: bool = Field(default=True)
    close_connection_after_execute: bool = Field(
        default=False,
        description="If True, close the DB connection on release instead of returning it to the pool.",
    )
