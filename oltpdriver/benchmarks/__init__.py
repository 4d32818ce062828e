"""
Benchmark modules package.

Each benchmark implements the `BenchmarkModule` contract consumed by the
execution engine. Registration happens statically in
`oltpdriver.orchestrator._benchmark_factories`.
"""

from oltpdriver.benchmarks.abstract import (
    AbstractBenchmarkModule,
    BenchmarkModule,
    StatementMap,
    TransactionContext,
)
from oltpdriver.benchmarks.keyvalue import KeyValueBenchmark
from oltpdriver.benchmarks.synthetic import SyntheticBenchmark

__all__ = [
    "AbstractBenchmarkModule",
    "BenchmarkModule",
    "KeyValueBenchmark",
    "StatementMap",
    "SyntheticBenchmark",
    "TransactionContext",
]
