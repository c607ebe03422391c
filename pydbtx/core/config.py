"""
Settings for external DataSource connections and pooling.

Values come from the environment (or a .env file); unknown keys are ignored.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Max open connections (idle + leased) per datasource
    EXTERNAL_DB_POOL_SIZE: int = 20
    # Lower bound for asyncpg pools
    EXTERNAL_DB_POOL_MIN_SIZE: int = 2
    # Idle connections older than this are closed on checkout (seconds)
    EXTERNAL_DB_POOL_MAX_AGE_SEC: int = 600
    # Default wait limit for PoolManager.acquire; None = wait forever, 0 = no wait
    EXTERNAL_DB_POOL_ACQUIRE_TIMEOUT: float | None = 30.0
    EXTERNAL_DB_CONNECT_TIMEOUT: int = 10
    # Per-statement timeout in seconds; None or 0 disables it
    EXTERNAL_DB_STATEMENT_TIMEOUT: float | None = None

    @field_validator("EXTERNAL_DB_POOL_SIZE", "EXTERNAL_DB_POOL_MIN_SIZE")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("pool sizes must be >= 0")
        return v

    @field_validator("EXTERNAL_DB_POOL_ACQUIRE_TIMEOUT", mode="before")
    @classmethod
    def _parse_acquire_timeout(cls, v: object) -> object:
        """Accept 'none' / 'null' from the environment as "wait forever"."""
        if isinstance(v, str) and v.strip().lower() in ("none", "null"):
            return None
        return v


settings = Settings()  # type: ignore
