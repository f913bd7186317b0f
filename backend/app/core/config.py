from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


def _ensure_async_driver(value: str) -> str:
    try:
        url = make_url(value)
    except ArgumentError:
        return value

    drivername = url.drivername.lower()
    if drivername in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        drivername = "postgresql+asyncpg"
    elif drivername in {"sqlite", "sqlite+pysqlite"}:
        drivername = "sqlite+aiosqlite"
    else:
        return value

    return url.set(drivername=drivername).render_as_string(hide_password=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///../data/battlehub.db",
        description="SQLAlchemy async database URL for the ledger store",
    )
    db_busy_timeout_seconds: float = Field(
        default=30.0,
        description="How long a SQLite connection waits on a locked database before failing",
        gt=0,
    )
    admin_key: str = Field(
        default="change-me",
        description="Shared secret expected in the X-Admin-Key header of admin routes",
    )
    rake_rate: float = Field(
        default=0.15,
        description="Fraction of each pot retained by the platform",
        ge=0,
        lt=1,
    )
    payout_batch_size: int = Field(
        default=50,
        description="Number of matches handled per batch payout chunk",
        ge=1,
    )
    payout_concurrency: int = Field(
        default=10,
        description="Maximum simultaneous payout operations inside a chunk",
        ge=1,
    )
    payout_limit: int = Field(
        default=0,
        description="Cap on matches considered per batch payout run (0 means unlimited)",
        ge=0,
    )
    payout_batch_pause_seconds: float = Field(
        default=0.2,
        description="Pause inserted between batch payout chunks to bound store load",
        ge=0,
    )
    scheduler_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between scheduler ticks",
        gt=0,
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        return _ensure_async_driver(value.strip())

    @field_validator("admin_key")
    @classmethod
    def _require_admin_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("ADMIN_KEY must not be blank")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
