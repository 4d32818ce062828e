"""
Workload file reader.

A workload file is TOML: an optional top-level `[database]` table with the
connection defaults, and one `[benchmarks.<name>]` table per benchmark with its
terminals, transaction types, groupings and phases. The raw document is
validated with pydantic, then turned into immutable `WorkloadConfiguration`
objects through `PhaseModel`, so every schedule invariant is checked before a
single worker exists.

Usage:
    from oltpdriver.workload.workload_file import load_workloads

    workloads = load_workloads("config/synthetic.toml", ["synthetic"])
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from oltpdriver.config import Settings, get_settings
from oltpdriver.domain.errors import ConfigurationError
from oltpdriver.domain.models import (
    DatabaseConfig,
    IsolationLevel,
    TraceEntry,
    TransactionType,
    TransactionTypes,
    WorkloadConfiguration,
)
from oltpdriver.utils.logging import get_logger
from oltpdriver.workload.phases import PhaseModel, validate_grouping
from oltpdriver.workload.trace import TraceReader

log = get_logger(__name__)

_STRICT = ConfigDict(extra="forbid")


class DatabaseSection(BaseModel):
    """Partial connection parameters; unset fields fall through to defaults."""

    type: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    batch_size: Optional[int] = None
    pool_size: Optional[int] = None

    model_config = _STRICT

    def values(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TransactionTypeSection(BaseModel):
    name: str = Field(..., min_length=1)
    id: Optional[int] = Field(None, ge=1)

    model_config = _STRICT


class GroupingSection(BaseModel):
    name: str
    weights: List[float]

    model_config = _STRICT


class PhaseSection(BaseModel):
    rate: Union[int, str]
    weights: List[float] = Field(default_factory=list)
    arrival: str = "regular"
    serial: bool = False
    active_terminals: Optional[int] = None
    time: float = 0
    warmup: float = 0

    model_config = _STRICT


class BenchmarkSection(BaseModel):
    terminals: int = 1
    isolation: str = IsolationLevel.SERIALIZABLE.value
    scale_factor: float = Field(1.0, gt=0)
    loader_threads: int = Field(1, ge=1)
    record_abort_messages: bool = False
    queue_limit: Optional[int] = Field(None, ge=1)
    database: DatabaseSection = Field(default_factory=DatabaseSection)
    transaction_types: List[TransactionTypeSection] = Field(..., min_length=1)
    groupings: List[GroupingSection] = Field(default_factory=list)
    phases: List[PhaseSection] = Field(..., min_length=1)
    properties: Dict[str, Any] = Field(default_factory=dict)

    model_config = _STRICT


class WorkloadFile(BaseModel):
    database: DatabaseSection = Field(default_factory=DatabaseSection)
    benchmarks: Dict[str, BenchmarkSection] = Field(default_factory=dict)

    model_config = _STRICT


def _format_validation_error(path: Path, exc: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return f"Invalid workload file {path}: " + "; ".join(problems)


def read_workload_file(path: Path | str) -> WorkloadFile:
    """
    Parse and validate a workload file.

    Raises
    ------
    ConfigurationError
        If the file cannot be read, is not valid TOML or does not match the
        workload schema.
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            raw = tomllib.load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read workload file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Workload file {path} is not valid TOML: {exc}") from exc
    try:
        return WorkloadFile.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(path, exc)) from exc


def _database_config(
    settings: Settings, defaults: DatabaseSection, override: DatabaseSection
) -> DatabaseConfig:
    values: Dict[str, Any] = {
        "host": settings.db_host,
        "port": settings.db_port,
        "name": settings.db_name,
        "user": settings.db_user,
        "password": settings.db_password,
    }
    values.update(defaults.values())
    values.update(override.values())
    try:
        return DatabaseConfig.model_validate(values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid database settings: {problems}") from exc


def _transaction_types(
    benchmark: str, sections: Sequence[TransactionTypeSection], offset: int
) -> TransactionTypes:
    types = [
        TransactionType(
            id=offset + (section.id if section.id is not None else position),
            name=section.name,
            benchmark=benchmark,
        )
        for position, section in enumerate(sections, start=1)
    ]
    return TransactionTypes(types)


def build_workload(
    name: str,
    section: BenchmarkSection,
    database: DatabaseConfig,
    id_offset: int = 0,
    trace: Optional[TraceReader] = None,
    queue_limit: int = 10_000,
) -> WorkloadConfiguration:
    """
    Turn one validated `[benchmarks.<name>]` table into a workload.

    Parameters
    ----------
    name : str
        Benchmark name (the table key).
    section : BenchmarkSection
        Validated table contents.
    database : DatabaseConfig
        Effective connection parameters.
    id_offset : int
        Added to every transaction id so ids stay unique across benchmarks.
    trace : TraceReader | None
        Trace to replay instead of weighted selection.
    queue_limit : int
        Fallback backlog bound when the table does not set one.
    """
    types = _transaction_types(name, section.transaction_types, id_offset)
    model = PhaseModel(section.terminals, len(types), trace=trace is not None)
    for phase in section.phases:
        model.add_phase(
            rate=phase.rate,
            weights=phase.weights,
            time=phase.time,
            warmup=phase.warmup,
            arrival=phase.arrival,
            serial=phase.serial,
            active_terminals=phase.active_terminals,
        )
    phases = model.validate_all()
    groupings = tuple(
        validate_grouping(grouping.name, grouping.weights, len(types))
        for grouping in section.groupings
    )
    entries: Optional[tuple[TraceEntry, ...]] = None
    if trace is not None:
        entries = trace.read_all(types)
        log.info(
            f"[TRACE] loaded {len(entries)} transactions",
            extra={"benchmark": name, "trace": str(trace.transactions_path)},
        )
    return WorkloadConfiguration(
        benchmark=name,
        database=database,
        terminals=section.terminals,
        transaction_types=types,
        phases=phases,
        isolation=IsolationLevel.get(section.isolation),
        scale_factor=section.scale_factor,
        loader_threads=section.loader_threads,
        record_abort_messages=section.record_abort_messages,
        queue_limit=section.queue_limit or queue_limit,
        groupings=groupings,
        trace=entries,
        extra=dict(section.properties),
    )


def load_workloads(
    path: Path | str,
    benchmarks: Sequence[str],
    trace: Optional[TraceReader] = None,
    settings: Optional[Settings] = None,
) -> List[WorkloadConfiguration]:
    """
    Read the workload file and build one configuration per requested benchmark.

    Transaction ids are offset per benchmark, in request order, so they are
    unique across benchmarks that run concurrently.

    Raises
    ------
    ConfigurationError
        If the file is invalid, a requested benchmark has no table, or any
        schedule invariant is violated.
    """
    settings = settings or get_settings()
    if not benchmarks:
        raise ConfigurationError("No benchmark selected")
    if trace is not None and len(benchmarks) > 1:
        raise ConfigurationError("A trace can only be replayed against a single benchmark")
    document = read_workload_file(path)
    workloads: List[WorkloadConfiguration] = []
    offset = 0
    for name in benchmarks:
        section = document.benchmarks.get(name)
        if section is None:
            available = ", ".join(sorted(document.benchmarks)) or "none"
            raise ConfigurationError(
                f"Workload file {path} has no [benchmarks.{name}] table (found: {available})"
            )
        database = _database_config(settings, document.database, section.database)
        workload = build_workload(
            name,
            section,
            database,
            id_offset=offset,
            trace=trace,
            queue_limit=settings.queue_limit,
        )
        offset = max(t.id for t in workload.transaction_types)
        workloads.append(workload)
        log.info(
            f"[WORKLOAD] {name}: {workload.terminals} terminals, "
            f"{len(workload.phases)} phase(s), {len(workload.transaction_types)} transaction types",
            extra={"benchmark": name, "database": database.type.value},
        )
    return workloads


__all__ = [
    "BenchmarkSection",
    "DatabaseSection",
    "PhaseSection",
    "WorkloadFile",
    "build_workload",
    "load_workloads",
    "read_workload_file",
]
