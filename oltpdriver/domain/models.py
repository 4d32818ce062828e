"""
Domain models for the workload driver.

Defines the transaction-type registry, the scheduling phase, the outcome
values produced by each transaction attempt and the immutable workload
configuration built once at startup. Hot-path values (`TransactionType`,
`OutcomeRecord`) are slotted dataclasses; connection parameters are pydantic
models because they are validated straight from the workload file.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from oltpdriver.domain.errors import ConfigurationError


class DatabaseType(str, enum.Enum):
    """Supported targets. All of them speak the PostgreSQL wire protocol."""

    POSTGRES = "postgres"
    COCKROACHDB = "cockroachdb"
    YUGABYTE = "yugabyte"

    @classmethod
    def get(cls, name: str) -> "DatabaseType":
        try:
            return cls(name.strip().lower())
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ConfigurationError(
                f"Unknown database type '{name}'. Supported: {choices}"
            ) from None


class IsolationLevel(str, enum.Enum):
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"

    @classmethod
    def get(cls, name: str) -> "IsolationLevel":
        # Accept JDBC-style names too (TRANSACTION_SERIALIZABLE).
        key = name.strip().lower().removeprefix("transaction_")
        try:
            return cls(key)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ConfigurationError(
                f"Unknown isolation level '{name}'. Supported: {choices}"
            ) from None


class DatabaseConfig(BaseModel):
    """
    Connection parameters for one benchmark's target database.
    """

    type: DatabaseType = Field(DatabaseType.POSTGRES, description="Target database flavour.")
    host: str = Field("localhost", description="Database host.")
    port: int = Field(5432, ge=1, le=65535, description="Database port.")
    name: str = Field("oltpdriver", description="Database name.")
    user: str = Field("postgres", description="Login role.")
    password: str = Field("postgres", description="Login password.")
    batch_size: int = Field(128, ge=1, description="Rows per batch for bulk loading.")
    pool_size: int = Field(12, ge=1, description="Maximum pooled connections.")

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


@dataclass(frozen=True, slots=True)
class TransactionType:
    """
    One kind of transaction a benchmark can execute.

    `id` is globally unique across concurrently-run benchmarks; id 0 is
    reserved for the `INVALID` sentinel.
    """

    id: int
    name: str
    benchmark: str = ""

    def __str__(self) -> str:
        return self.name


INVALID = TransactionType(id=0, name="INVALID")


class TransactionTypes(Sequence[TransactionType]):
    """
    Ordered, immutable transaction-type registry.

    Iteration and indexing follow declaration order and never include the
    `INVALID` sentinel, so position `i` lines up with weight `i` of a phase.
    """

    def __init__(self, types: Sequence[TransactionType]) -> None:
        ids: Dict[int, TransactionType] = {}
        names: Dict[str, TransactionType] = {}
        for txn_type in types:
            if txn_type.id < 1:
                raise ConfigurationError(
                    f"Transaction type '{txn_type.name}' has id {txn_type.id}; ids must be >= 1"
                )
            if txn_type.id in ids:
                raise ConfigurationError(f"Duplicate transaction type id {txn_type.id}")
            key = txn_type.name.lower()
            if key in names:
                raise ConfigurationError(f"Duplicate transaction type name '{txn_type.name}'")
            ids[txn_type.id] = txn_type
            names[key] = txn_type
        self._types: Tuple[TransactionType, ...] = tuple(types)
        self._by_id = ids
        self._by_name = names

    def __getitem__(self, index):  # type: ignore[override]
        return self._types[index]

    def __len__(self) -> int:
        return len(self._types)

    def __iter__(self) -> Iterator[TransactionType]:
        return iter(self._types)

    def __repr__(self) -> str:
        return f"TransactionTypes({', '.join(t.name for t in self._types)})"

    def get(self, id: int) -> TransactionType:
        """Return the type with `id`; 0 yields `INVALID`."""
        if id == INVALID.id:
            return INVALID
        try:
            return self._by_id[id]
        except KeyError:
            raise KeyError(f"No transaction type with id {id}") from None

    def by_name(self, name: str) -> TransactionType:
        try:
            return self._by_name[name.lower()]
        except KeyError:
            raise KeyError(f"No transaction type named '{name}'") from None


class Arrival(str, enum.Enum):
    REGULAR = "regular"
    POISSON = "poisson"


class RateMode(str, enum.Enum):
    DISABLED = "disabled"
    UNLIMITED = "unlimited"
    LIMITED = "limited"


@dataclass(frozen=True)
class Rate:
    """Rate state of a phase: disabled, unlimited, or `value` txn/s."""

    mode: RateMode
    value: int = 0

    @property
    def disabled(self) -> bool:
        return self.mode is RateMode.DISABLED

    @property
    def limited(self) -> bool:
        return self.mode is RateMode.LIMITED

    def __str__(self) -> str:
        return str(self.value) if self.limited else self.mode.value


@dataclass(frozen=True)
class Phase:
    """
    One stage of the schedule, validated by `PhaseModel` before execution.
    """

    index: int
    duration: float
    warmup: float
    rate: Rate
    arrival: Arrival
    weights: Tuple[float, ...]
    active_terminals: int
    serial: bool = False

    @property
    def timed(self) -> bool:
        return self.duration > 0

    @property
    def disabled(self) -> bool:
        return self.rate.disabled

    @property
    def total_seconds(self) -> float:
        """Wall-clock slot this phase occupies in the schedule timeline."""
        return self.warmup + self.duration

    @property
    def weight_count(self) -> int:
        return len(self.weights)

    def mean_interval(self) -> Optional[float]:
        """Per-worker mean inter-arrival interval, or None when not rate limited."""
        if not self.rate.limited:
            return None
        return self.active_terminals / self.rate.value


@dataclass(frozen=True)
class Grouping:
    """Reporting-only slice of the transaction mix."""

    name: str
    weights: Tuple[float, ...]


class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    USER_ABORT = "user_abort"
    RETRY = "retry"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Tagged result of one transaction attempt."""

    kind: OutcomeKind
    message: Optional[str] = None

    @classmethod
    def coerce(cls, value: "Outcome | OutcomeKind | None") -> "Outcome":
        if isinstance(value, Outcome):
            return value
        if value is None:
            return SUCCESS
        return cls(OutcomeKind(value))


SUCCESS = Outcome(OutcomeKind.SUCCESS)


@dataclass(frozen=True, slots=True)
class OutcomeRecord:
    """
    One completed transaction attempt.

    Timestamps are wall-clock epoch seconds; `elapsed` is seconds since the
    start of the measurement window (negative during a warmup window).
    """

    txn_type: TransactionType
    phase: int
    terminal: int
    start: float
    end: float
    elapsed: float
    latency: float
    warmup: bool
    kind: OutcomeKind

    def sort_key(self) -> Tuple[float, int, int, float, float]:
        return (self.end, self.txn_type.id, self.terminal, self.start, self.latency)


@dataclass(frozen=True)
class TraceEntry:
    """One recorded transaction: its type plus the parameters it was run with."""

    txn_type: TransactionType
    params: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkloadConfiguration:
    """
    Everything needed to run one benchmark, built once at startup.
    """

    benchmark: str
    database: DatabaseConfig
    terminals: int
    transaction_types: TransactionTypes
    phases: Tuple[Phase, ...]
    isolation: IsolationLevel = IsolationLevel.SERIALIZABLE
    scale_factor: float = 1.0
    loader_threads: int = 1
    record_abort_messages: bool = False
    queue_limit: int = 10_000
    groupings: Tuple[Grouping, ...] = ()
    trace: Optional[Tuple[TraceEntry, ...]] = None
    extra: Dict[str, object] = field(default_factory=dict, compare=False)

    @property
    def total_seconds(self) -> float:
        return sum(phase.total_seconds for phase in self.phases)


__all__ = [
    "INVALID",
    "SUCCESS",
    "Arrival",
    "DatabaseConfig",
    "DatabaseType",
    "Grouping",
    "IsolationLevel",
    "Outcome",
    "OutcomeKind",
    "OutcomeRecord",
    "Phase",
    "Rate",
    "RateMode",
    "TraceEntry",
    "TransactionType",
    "TransactionTypes",
    "WorkloadConfiguration",
]
