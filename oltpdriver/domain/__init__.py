"""
Domain package for the workload driver.

Exports the transaction, phase, outcome and configuration models shared by the
engine, the benchmarks and the reporting layer, plus the error taxonomy.
"""

from oltpdriver.domain.errors import (
    ConfigurationError,
    OrchestrationError,
    QueueLimitError,
    RetryableError,
    RunAbortedError,
    UserAbortError,
    WorkloadError,
)
from oltpdriver.domain.models import (
    INVALID,
    SUCCESS,
    Arrival,
    DatabaseConfig,
    DatabaseType,
    Grouping,
    IsolationLevel,
    Outcome,
    OutcomeKind,
    OutcomeRecord,
    Phase,
    Rate,
    RateMode,
    TraceEntry,
    TransactionType,
    TransactionTypes,
    WorkloadConfiguration,
)

__all__ = [
    "INVALID",
    "SUCCESS",
    "Arrival",
    "ConfigurationError",
    "DatabaseConfig",
    "DatabaseType",
    "Grouping",
    "IsolationLevel",
    "OrchestrationError",
    "Outcome",
    "OutcomeKind",
    "OutcomeRecord",
    "Phase",
    "QueueLimitError",
    "Rate",
    "RateMode",
    "RetryableError",
    "RunAbortedError",
    "TraceEntry",
    "TransactionType",
    "TransactionTypes",
    "UserAbortError",
    "WorkloadConfiguration",
    "WorkloadError",
]
