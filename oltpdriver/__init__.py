"""
oltpdriver - rate-controlled database workload driver.

Simulates many concurrent client terminals issuing transactions against a
target database under a scheduled arrival pattern (closed loop, or open loop
with regular or Poisson arrivals), and aggregates the outcomes into
throughput and latency statistics:

- Phase schedules with warmup windows, rate limits and serial passes
- Weighted transaction selection or trace replay
- One worker thread per terminal, phase transitions driven by a dispatcher
- Raw, windowed and JSON result exports
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from oltpdriver.benchmarks.abstract import (
    AbstractBenchmarkModule,
    BenchmarkModule,
    TransactionContext,
)
from oltpdriver.config import Settings, get_settings
from oltpdriver.orchestrator import (
    RunOptions,
    RunReport,
    available_benchmarks,
    run_workload,
)
from oltpdriver.utils.logging import configure_logging, get_logger
from oltpdriver.utils.profiler import ProfileStats, profile_block
from oltpdriver.workload.dispatcher import Dispatcher
from oltpdriver.workload.results import Results

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Orchestration
    "Dispatcher",
    "Results",
    "RunOptions",
    "RunReport",
    "available_benchmarks",
    "run_workload",
    # Benchmark contract
    "AbstractBenchmarkModule",
    "BenchmarkModule",
    "TransactionContext",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
