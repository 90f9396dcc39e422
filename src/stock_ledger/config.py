"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Stock Ledger Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./stock_ledger.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    sqlite_busy_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Seconds a SQLite connection waits on a locked database before failing.",
    )
    host: str = Field(default="127.0.0.1", description="Interface the API server binds to.")
    port: int = Field(default=8000, gt=0, lt=65536)
    access_control_allow_origin: str = Field(
        default="*",
        description="Allowed CORS origins for the API.",
    )
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used to bucket movements into calendar days.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root level for the stock_ledger loggers.",
    )
    default_location_name: str = Field(
        default="Main Store",
        description="Location used as the implicit source/sink for sales, returns and initial loads.",
    )
    low_stock_threshold: int = Field(default=10, ge=0)
    expiry_window_days: int = Field(default=30, ge=1)
    audit_log_capacity: int = Field(
        default=50,
        ge=1,
        description="Number of audit entries retained; older entries are evicted first.",
    )
    serialize_stock_writes: bool = Field(
        default=True,
        description="Serialize stock checks and inserts per product inside this process.",
    )
    token_secret: str = Field(default="stock-ledger-secret-key")
    token_salt: str = Field(default="stock-ledger-api-token")
    token_default_age: int = Field(default=3600, gt=0)
    token_max_age: int = Field(default=60 * 60 * 24 * 30, gt=0)

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
