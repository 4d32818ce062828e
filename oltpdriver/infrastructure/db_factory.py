"""
Database connection factory for the workload driver.

Terminals never own connections: they borrow one from a bounded
`psycopg_pool.ConnectionPool` per target database for the duration of a
transaction. The pool is sized by the benchmark's `pool_size`, independently
of the terminal count, so terminals contend for connections the way real
clients of a shared pool do.

The PoolManager singleton keys pools by DSN and closes them on exit. Dedicated
connections (schema creation, scripts, loaders) are retried on transient
connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Optional

import psycopg
from psycopg import Connection, IsolationLevel as PgIsolationLevel
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from oltpdriver.config import get_settings
from oltpdriver.domain.models import DatabaseConfig, IsolationLevel

_ISOLATION_LEVELS = {
    IsolationLevel.READ_UNCOMMITTED: PgIsolationLevel.READ_UNCOMMITTED,
    IsolationLevel.READ_COMMITTED: PgIsolationLevel.READ_COMMITTED,
    IsolationLevel.REPEATABLE_READ: PgIsolationLevel.REPEATABLE_READ,
    IsolationLevel.SERIALIZABLE: PgIsolationLevel.SERIALIZABLE,
}


def build_dsn(database: Optional[DatabaseConfig] = None) -> str:
    """Compose a DSN from a benchmark's database config, or from settings."""
    if database is not None:
        return database.dsn
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def pg_isolation(level: IsolationLevel) -> PgIsolationLevel:
    return _ISOLATION_LEVELS[level]


class PoolManager:
    """
    Thread-safe singleton managing one connection pool per DSN.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pools: Dict[str, ConnectionPool] = {}
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_pool(self, database: DatabaseConfig, isolation: IsolationLevel) -> ConnectionPool:
        """
        Get or create the pool for `database`.

        Connections are configured with the benchmark's isolation level when
        handed out.
        """
        key = f"{database.dsn}#{isolation.value}"
        # The lock is not reentrant; pool creation must not call back into the manager.
        with self._lock:
            pool = self._pools.get(key)
            if pool is None:
                level = pg_isolation(isolation)

                def _configure(conn: Connection) -> None:
                    conn.isolation_level = level

                pool = ConnectionPool(
                    conninfo=database.dsn,
                    min_size=1,
                    max_size=database.pool_size,
                    configure=_configure,
                    open=True,
                )
                self._pools[key] = pool
            return pool

    @contextmanager
    def connection(
        self, database: DatabaseConfig, isolation: IsolationLevel
    ) -> Generator[Connection, None, None]:
        """
        Borrow a pooled connection; the transaction is committed on clean
        exit and rolled back on error by the pool.
        """
        with self.get_pool(database, isolation).connection() as conn:
            yield conn

    def release(self, database: DatabaseConfig, isolation: IsolationLevel) -> None:
        """Close and forget the pool of one benchmark, if it was ever opened."""
        with self._lock:
            pool = self._pools.pop(f"{database.dsn}#{isolation.value}", None)
        if pool is not None:
            pool.close()

    def close_all(self) -> None:
        """
        Close all managed pools and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            pools, self._pools = self._pools, {}
        for pool in pools.values():
            pool.close()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(database: Optional[DatabaseConfig] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection
    errors. Use this for one-off work (DDL, scripts, loaders); terminals use
    the pool.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(build_dsn(database))


def get_pool(database: DatabaseConfig, isolation: IsolationLevel) -> ConnectionPool:
    """Get or create the managed pool for a benchmark's database."""
    return PoolManager().get_pool(database, isolation)


__all__ = [
    "PoolManager",
    "build_dsn",
    "get_pool",
    "get_sync_connection",
    "pg_isolation",
]
