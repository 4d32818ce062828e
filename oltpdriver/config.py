"""
Process-level settings for the workload driver.

Uses Pydantic Settings to load environment variables (and an optional `.env`)
for database defaults, logging and engine limits. Per-benchmark workload
details live in the TOML workload file instead (see
`oltpdriver.workload.workload_file`); the database values here only fill in
what that file leaves out.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database defaults
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("oltpdriver", alias="DB_NAME")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Engine defaults
    queue_limit: int = Field(10_000, ge=1, alias="DRIVER_QUEUE_LIMIT")
    grace_seconds: float = Field(10.0, gt=0, alias="DRIVER_GRACE_SECONDS")
    results_dir: str = Field("results", alias="DRIVER_RESULTS_DIR")
    seed: Optional[int] = Field(None, alias="DRIVER_SEED")
    interval_monitor_ms: int = Field(0, ge=0, alias="DRIVER_INTERVAL_MONITOR_MS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
