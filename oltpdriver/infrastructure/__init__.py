"""
Infrastructure package for the workload driver.

Centralizes database connectivity concerns (DSNs, pooling, retries). Keep
this layer focused on I/O and resource management, decoupled from the
execution engine.
"""

from oltpdriver.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_pool,
    get_sync_connection,
    pg_isolation,
)

__all__ = [
    "PoolManager",
    "build_dsn",
    "get_pool",
    "get_sync_connection",
    "pg_isolation",
]
