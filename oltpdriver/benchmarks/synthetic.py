"""
Synthetic benchmark: exercises the engine without a database.

Each transaction sleeps for a latency drawn from the terminal's generator and
then succeeds, aborts, asks for a retry or fails according to configurable
ratios. Useful for dry runs of a workload file, for calibrating the driver
host and for tests that need deterministic outcome mixes.

Properties (workload file `[benchmarks.<name>.properties]`):

- `latency_ms`: mean service time, default 1.0.
- `latency_jitter_ms`: uniform jitter added on top, default 0.
- `abort_ratio`, `retry_ratio`, `error_ratio`: outcome mix, default 0.
- `abort_message`: message attached to user aborts.

When a trace supplies parameters, the first parameter overrides the latency
(milliseconds) of that transaction.
"""

from __future__ import annotations

import time
from typing import ClassVar, Mapping

from oltpdriver.benchmarks.abstract import AbstractBenchmarkModule, TransactionContext
from oltpdriver.domain.errors import ConfigurationError, RetryableError, UserAbortError
from oltpdriver.domain.models import SUCCESS, Outcome, TransactionType, WorkloadConfiguration
from oltpdriver.utils.logging import get_logger

log = get_logger(__name__)


class SyntheticError(RuntimeError):
    """Injected unexpected failure."""


def _ratio(properties: Mapping[str, object], key: str) -> float:
    value = float(properties.get(key, 0.0))  # type: ignore[arg-type]
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"Synthetic property '{key}' must be within [0, 1], got {value}")
    return value


class SyntheticBenchmark(AbstractBenchmarkModule):
    """
    Database-free benchmark with a configurable latency and outcome mix.
    """

    name: ClassVar[str] = "synthetic"
    description: ClassVar[str] = "Sleep-based transactions with a configurable outcome mix"

    def __init__(self, workload: WorkloadConfiguration) -> None:
        super().__init__(workload)
        properties = workload.extra
        self.latency = float(properties.get("latency_ms", 1.0)) / 1000.0  # type: ignore[arg-type]
        self.jitter = float(properties.get("latency_jitter_ms", 0.0)) / 1000.0  # type: ignore[arg-type]
        if self.latency < 0 or self.jitter < 0:
            raise ConfigurationError("Synthetic latency settings must be non-negative")
        self.abort_ratio = _ratio(properties, "abort_ratio")
        self.retry_ratio = _ratio(properties, "retry_ratio")
        self.error_ratio = _ratio(properties, "error_ratio")
        if self.abort_ratio + self.retry_ratio + self.error_ratio > 1.0:
            raise ConfigurationError("Synthetic outcome ratios must not add up to more than 1")
        self.abort_message = str(properties.get("abort_message", "synthetic rollback"))

    def _service_time(self, context: TransactionContext) -> float:
        if context.params:
            return float(context.params[0]) / 1000.0
        if self.jitter:
            return self.latency + context.rng.uniform(0.0, self.jitter)
        return self.latency

    def execute(self, txn_type: TransactionType, context: TransactionContext) -> Outcome:
        service_time = self._service_time(context)
        if service_time > 0:
            time.sleep(service_time)
        draw = context.rng.random()
        if draw < self.abort_ratio:
            raise UserAbortError(self.abort_message)
        draw -= self.abort_ratio
        if draw < self.retry_ratio:
            raise RetryableError(f"{txn_type.name} conflicted")
        draw -= self.retry_ratio
        if draw < self.error_ratio:
            raise SyntheticError(f"{txn_type.name} failed")
        return SUCCESS

    def create_database(self) -> None:
        log.info("[CREATE] synthetic benchmark has no schema", extra={"benchmark": self.name})

    def clear_database(self) -> None:
        log.info("[CLEAR] synthetic benchmark has no data", extra={"benchmark": self.name})

    def load_database(self) -> None:
        log.info("[LOAD] synthetic benchmark has no data", extra={"benchmark": self.name})


__all__ = ["SyntheticBenchmark", "SyntheticError"]
