"""
Key-value benchmark against a PostgreSQL-compatible database.

A single `kv_records` table with `scale_factor * ROWS_PER_SCALE` rows is read,
updated, extended and range-scanned. Terminals borrow connections from a
bounded psycopg pool configured with the benchmark's isolation level, so
serialization failures and deadlocks show up as RETRY outcomes.

Supported transaction types: ReadRecord, UpdateRecord, InsertRecord,
ScanRecords. A workload may declare any subset of them, in any order.

Properties (workload file `[benchmarks.<name>.properties]`):

- `scan_length`: rows returned by ScanRecords, default 10.
- `value_length`: characters in each value, default 100.

Trace parameters, when present, pin the key of a transaction (first
parameter).
"""

from __future__ import annotations

import random
import string
from concurrent.futures import ThreadPoolExecutor
from functools import cached_property
from pathlib import Path
from typing import Callable, ClassVar, Dict, List, Tuple

from psycopg import Connection
from psycopg_pool import ConnectionPool

from oltpdriver.benchmarks.abstract import (
    AbstractBenchmarkModule,
    StatementMap,
    TransactionContext,
)
from oltpdriver.domain.errors import ConfigurationError, UserAbortError
from oltpdriver.domain.models import SUCCESS, Outcome, TransactionType, WorkloadConfiguration
from oltpdriver.infrastructure.db_factory import PoolManager, get_pool, get_sync_connection
from oltpdriver.utils.logging import get_logger

log = get_logger(__name__)

ROWS_PER_SCALE = 1_000
TABLE = "kv_records"

_ALPHABET = string.ascii_letters + string.digits


def _value(rng: random.Random, length: int) -> str:
    return "".join(rng.choices(_ALPHABET, k=length))


class KeyValueBenchmark(AbstractBenchmarkModule):
    """
    Read/update/insert/scan workload over one table.
    """

    name: ClassVar[str] = "keyvalue"
    description: ClassVar[str] = "Point reads, updates, inserts and range scans on one table"

    statements: ClassVar[StatementMap] = {
        "Schema": {
            "create_table": {
                "default": f"""
                    CREATE TABLE IF NOT EXISTS {TABLE} (
                        key BIGINT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """,
                "cockroachdb": f"""
                    CREATE TABLE IF NOT EXISTS {TABLE} (
                        key INT8 PRIMARY KEY,
                        value STRING NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """,
                "yugabyte": f"""
                    CREATE TABLE IF NOT EXISTS {TABLE} (
                        key BIGINT,
                        value TEXT NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        PRIMARY KEY (key ASC)
                    )
                """,
            },
            "truncate": f"TRUNCATE TABLE {TABLE}",
            "copy": f"COPY {TABLE} (key, value) FROM STDIN",
        },
        "ReadRecord": {
            "select": f"SELECT value FROM {TABLE} WHERE key = %s",
        },
        "UpdateRecord": {
            "update": f"UPDATE {TABLE} SET value = %s, updated_at = now() WHERE key = %s",
        },
        "InsertRecord": {
            "insert": f"""
                INSERT INTO {TABLE} (key, value) VALUES (%s, %s)
                ON CONFLICT (key) DO NOTHING
            """,
        },
        "ScanRecords": {
            "scan": f"SELECT key, value FROM {TABLE} WHERE key >= %s ORDER BY key LIMIT %s",
        },
    }

    def __init__(self, workload: WorkloadConfiguration) -> None:
        super().__init__(workload)
        properties = workload.extra
        self.rows = max(int(workload.scale_factor * ROWS_PER_SCALE), 1)
        self.scan_length = int(properties.get("scan_length", 10))  # type: ignore[arg-type]
        self.value_length = int(properties.get("value_length", 100))  # type: ignore[arg-type]
        if self.scan_length < 1 or self.value_length < 1:
            raise ConfigurationError("scan_length and value_length must be positive")
        self._procedures: Dict[str, Callable[[Connection, TransactionContext], None]] = {
            "readrecord": self._read,
            "updaterecord": self._update,
            "insertrecord": self._insert,
            "scanrecords": self._scan,
        }
        unknown = [
            t.name for t in workload.transaction_types if t.name.lower() not in self._procedures
        ]
        if unknown:
            raise ConfigurationError(
                f"Unknown {self.name} transaction type(s): {', '.join(unknown)}. "
                "Supported: ReadRecord, UpdateRecord, InsertRecord, ScanRecords"
            )

    @cached_property
    def pool(self) -> ConnectionPool:
        return get_pool(self.workload.database, self.workload.isolation)

    def _sql(self, procedure: str, statement: str) -> str:
        return self.dialect_map()[procedure][statement]

    # Transactions ------------------------------------------------------------

    def execute(self, txn_type: TransactionType, context: TransactionContext) -> Outcome:
        procedure = self._procedures[txn_type.name.lower()]
        with self.pool.connection() as conn:
            procedure(conn, context)
        return SUCCESS

    def _key(self, context: TransactionContext, upper: int) -> int:
        if context.params:
            return int(context.params[0])
        return context.rng.randint(1, upper)

    def _read(self, conn: Connection, context: TransactionContext) -> None:
        key = self._key(context, self.rows)
        row = conn.execute(self._sql("ReadRecord", "select"), (key,)).fetchone()
        if row is None:
            raise UserAbortError(f"key {key} not found")

    def _update(self, conn: Connection, context: TransactionContext) -> None:
        key = self._key(context, self.rows)
        cur = conn.execute(
            self._sql("UpdateRecord", "update"),
            (_value(context.rng, self.value_length), key),
        )
        if cur.rowcount == 0:
            raise UserAbortError(f"key {key} not found")

    def _insert(self, conn: Connection, context: TransactionContext) -> None:
        # Keys above the loaded range; collisions between terminals are user aborts.
        if context.params:
            key = int(context.params[0])
        else:
            key = context.rng.randint(self.rows + 1, self.rows * 3)
        cur = conn.execute(
            self._sql("InsertRecord", "insert"),
            (key, _value(context.rng, self.value_length)),
        )
        if cur.rowcount == 0:
            raise UserAbortError(f"key {key} already exists")

    def _scan(self, conn: Connection, context: TransactionContext) -> None:
        key = self._key(context, self.rows)
        conn.execute(self._sql("ScanRecords", "scan"), (key, self.scan_length)).fetchall()

    # Lifecycle -----------------------------------------------------------------

    def create_database(self) -> None:
        with get_sync_connection(self.workload.database) as conn:
            conn.execute(self._sql("Schema", "create_table"))
        log.info("[CREATE] schema created", extra={"benchmark": self.name, "table": TABLE})

    def clear_database(self) -> None:
        with get_sync_connection(self.workload.database) as conn:
            conn.execute(self._sql("Schema", "truncate"))
        log.info("[CLEAR] table truncated", extra={"benchmark": self.name, "table": TABLE})

    def _chunks(self) -> List[Tuple[int, int]]:
        """Split 1..rows into contiguous key ranges of at most one batch each."""
        batch = self.workload.database.batch_size
        return [(low, min(low + batch - 1, self.rows)) for low in range(1, self.rows + 1, batch)]

    def _load_range(self, bounds: Tuple[int, int]) -> int:
        low, high = bounds
        rng = random.Random(low)
        with get_sync_connection(self.workload.database) as conn:
            with conn.cursor() as cur:
                with cur.copy(self._sql("Schema", "copy")) as copy:
                    for key in range(low, high + 1):
                        copy.write_row((key, _value(rng, self.value_length)))
        return high - low + 1

    def load_database(self) -> None:
        """
        Bulk-load the table with COPY, one batch per connection, spread over
        `loader_threads` threads.
        """
        chunks = self._chunks()
        threads = max(self.workload.loader_threads, 1)
        log.info(
            f"[LOAD] loading {self.rows:,} rows with {threads} thread(s)",
            extra={"benchmark": self.name, "batches": len(chunks)},
        )
        with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="loader") as executor:
            loaded = sum(executor.map(self._load_range, chunks))
        log.info("[LOAD] finished", extra={"benchmark": self.name, "rows": loaded})

    def run_script(self, path: Path) -> None:
        sql = Path(path).read_text(encoding="utf-8")
        with get_sync_connection(self.workload.database) as conn:
            conn.execute(sql)
        log.info("[SCRIPT] executed", extra={"benchmark": self.name, "script": str(path)})

    def close(self) -> None:
        if "pool" in self.__dict__:
            PoolManager().release(self.workload.database, self.workload.isolation)
            del self.__dict__["pool"]


__all__ = ["ROWS_PER_SCALE", "TABLE", "KeyValueBenchmark"]
