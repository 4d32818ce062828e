"""
Error taxonomy for the workload driver.

Only configuration errors and in-run faults (queue overload, orchestration
faults) halt a run. Transaction-level failures are never raised through the
worker loop; benchmarks signal them with `UserAbortError` / `RetryableError`
(or by returning an `Outcome`), and the worker records them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints only
    from oltpdriver.workload.results import Results


class WorkloadError(Exception):
    """Base class for every framework-level error."""


class ConfigurationError(WorkloadError):
    """Invalid workload configuration, detected before any worker starts."""


class RunAbortedError(WorkloadError):
    """
    A fatal fault during execution.

    The dispatcher attaches whatever outcome records were collected before the
    fault to `results` so callers can still flush them.
    """

    def __init__(self, message: str, results: Optional["Results"] = None) -> None:
        super().__init__(message)
        self.results = results


class QueueLimitError(RunAbortedError):
    """Scheduled-but-undispatched arrivals exceeded the configured bound."""


class OrchestrationError(RunAbortedError):
    """A worker failed to honor the stop signal or died unexpectedly."""


class UserAbortError(Exception):
    """Raised by benchmark code for an expected, application-level rollback."""


class RetryableError(Exception):
    """Raised by benchmark code when the target reported a transient conflict."""


__all__ = [
    "ConfigurationError",
    "OrchestrationError",
    "QueueLimitError",
    "RetryableError",
    "RunAbortedError",
    "UserAbortError",
    "WorkloadError",
]
