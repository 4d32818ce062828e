"""
Benchmark contract consumed by the execution engine.

A benchmark supplies its ordered transaction types (through the workload
configuration), a callable that executes one transaction of a given type, and
the lifecycle hooks behind the create/clear/load/script commands. Concrete
benchmarks implement the `BenchmarkModule` protocol, usually by subclassing
`AbstractBenchmarkModule`.

`execute` returns a tagged `Outcome`. Exceptions are allowed too: the worker
hands them to `classify_error`, whose default maps `UserAbortError` to
USER_ABORT, `RetryableError` and PostgreSQL serialization failures/deadlocks
to RETRY, and everything else to UNEXPECTED_ERROR.
"""

from __future__ import annotations

import abc
import random
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any, ClassVar, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from psycopg import errors as pg_errors

from oltpdriver.domain.errors import RetryableError, UserAbortError
from oltpdriver.domain.models import (
    Outcome,
    OutcomeKind,
    Phase,
    TransactionType,
    WorkloadConfiguration,
)

_RETRYABLE_PG_ERRORS = (pg_errors.SerializationFailure, pg_errors.DeadlockDetected)

# procedure -> statement name -> SQL, or {dialect: SQL} with a "default" key.
StatementMap = Mapping[str, Mapping[str, "str | Mapping[str, str]"]]


@dataclass(frozen=True)
class TransactionContext:
    """
    What a benchmark sees while executing one transaction.

    `warmup` tells the benchmark whether the current phase is still inside its
    warmup window, e.g. to skip side bookkeeping that should not be measured.
    """

    terminal: int
    phase: Phase
    warmup: bool
    rng: random.Random
    params: Optional[Tuple[Any, ...]] = None


@runtime_checkable
class BenchmarkModule(Protocol):
    """
    Common interface all benchmarks must implement.

    Attributes
    ----------
    name : str
        Registry identifier.
    description : str
        Human-friendly summary of the workload.
    """

    name: str
    description: str
    workload: WorkloadConfiguration

    def execute(self, txn_type: TransactionType, context: TransactionContext) -> Outcome:
        """Execute one transaction of `txn_type` against the target."""
        ...

    def classify_error(self, exc: BaseException) -> Outcome:
        ...

    def create_database(self) -> None:
        ...

    def clear_database(self) -> None:
        ...

    def load_database(self) -> None:
        ...

    def run_script(self, path: Path) -> None:
        ...

    def dialect_map(self) -> Dict[str, Dict[str, str]]:
        ...

    def close(self) -> None:
        ...


class AbstractBenchmarkModule(abc.ABC):
    """
    ABC helper for class-based benchmarks.

    Subclasses set `name`, `description`, optionally `statements`, and
    implement `execute`.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    statements: ClassVar[StatementMap] = {}

    def __init__(self, workload: WorkloadConfiguration) -> None:
        self.workload = workload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.workload.benchmark})"

    @abc.abstractmethod
    def execute(
        self, txn_type: TransactionType, context: TransactionContext
    ) -> Outcome:  # pragma: no cover - interface only
        raise NotImplementedError

    def classify_error(self, exc: BaseException) -> Outcome:
        if isinstance(exc, UserAbortError):
            return Outcome(OutcomeKind.USER_ABORT, str(exc) or None)
        if isinstance(exc, (RetryableError, *_RETRYABLE_PG_ERRORS)):
            return Outcome(OutcomeKind.RETRY, str(exc) or None)
        return Outcome(OutcomeKind.UNEXPECTED_ERROR, f"{type(exc).__name__}: {exc}")

    def create_database(self) -> None:
        raise NotImplementedError(f"{self.name} does not create a schema")

    def clear_database(self) -> None:
        raise NotImplementedError(f"{self.name} does not clear data")

    def load_database(self) -> None:
        raise NotImplementedError(f"{self.name} does not load data")

    def run_script(self, path: Path) -> None:
        raise NotImplementedError(f"{self.name} cannot run SQL scripts")

    @cached_property
    def _dialects(self) -> Dict[str, Dict[str, str]]:
        dialect = self.workload.database.type.value
        resolved: Dict[str, Dict[str, str]] = {}
        for procedure, statements in self.statements.items():
            resolved[procedure] = {}
            for stmt_name, sql in statements.items():
                if isinstance(sql, Mapping):
                    sql = sql.get(dialect, sql["default"])
                resolved[procedure][stmt_name] = " ".join(sql.split())
        return resolved

    def dialect_map(self) -> Dict[str, Dict[str, str]]:
        """Statements resolved for the configured database type (computed once)."""
        return self._dialects

    def close(self) -> None:
        """Release resources held by the benchmark."""


__all__ = [
    "AbstractBenchmarkModule",
    "BenchmarkModule",
    "StatementMap",
    "TransactionContext",
]
