"""
Pytest configuration for the workload driver.

Provides fixtures for:
- Transaction registries and validated workload configurations
- Workload files written to a temporary directory
- Database connectivity for integration tests
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional, Sequence

import psycopg
import pytest

from oltpdriver.config import Settings
from oltpdriver.domain.models import (
    DatabaseConfig,
    TransactionType,
    TransactionTypes,
    WorkloadConfiguration,
)
from oltpdriver.workload.phases import PhaseModel

DEFAULT_TYPE_NAMES = ("NewOrder", "Payment", "OrderStatus")


def make_types(names: Sequence[str], benchmark: str = "synthetic", offset: int = 0) -> TransactionTypes:
    return TransactionTypes(
        [
            TransactionType(id=offset + position, name=name, benchmark=benchmark)
            for position, name in enumerate(names, start=1)
        ]
    )


@pytest.fixture
def txn_types() -> TransactionTypes:
    return make_types(DEFAULT_TYPE_NAMES)


@pytest.fixture
def workload_factory(txn_types: TransactionTypes) -> Callable[..., WorkloadConfiguration]:
    """
    Build a validated workload from phase keyword dicts (as `add_phase` takes them).
    """

    def _build(
        phases: Sequence[Dict[str, Any]],
        terminals: int = 2,
        types: Optional[TransactionTypes] = None,
        benchmark: str = "synthetic",
        **kwargs: Any,
    ) -> WorkloadConfiguration:
        types = types if types is not None else txn_types
        model = PhaseModel(terminals, len(types), trace=kwargs.get("trace") is not None)
        for spec in phases:
            model.add_phase(**spec)
        return WorkloadConfiguration(
            benchmark=benchmark,
            database=DatabaseConfig(),
            terminals=terminals,
            transaction_types=types,
            phases=model.validate_all(),
            **kwargs,
        )

    return _build


@pytest.fixture
def write_workload_file(tmp_path: Path) -> Callable[[str], Path]:
    def _write(text: str, name: str = "workload.toml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "oltpdriver"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_database(test_settings: Settings) -> DatabaseConfig:
    return DatabaseConfig(
        host=test_settings.db_host,
        port=test_settings.db_port,
        name=test_settings.db_name,
        user=test_settings.db_user,
        password=test_settings.db_password,
        batch_size=50,
        pool_size=4,
    )


@pytest.fixture(scope="session")
def db_connection_available(test_database: DatabaseConfig) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_database.dsn, connect_timeout=5) as conn:
            conn.execute("SELECT 1").fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_database: DatabaseConfig, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_database.dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()
