"""
End-to-end engine tests: real worker threads, short phases, no database.
"""

from __future__ import annotations

import threading
import time

import pytest

from oltpdriver.benchmarks.abstract import AbstractBenchmarkModule
from oltpdriver.benchmarks.synthetic import SyntheticBenchmark
from oltpdriver.domain.errors import (
    ConfigurationError,
    QueueLimitError,
    RetryableError,
    UserAbortError,
)
from oltpdriver.domain.models import (
    SUCCESS,
    OutcomeKind,
    TraceEntry,
    TransactionType,
    TransactionTypes,
)
from oltpdriver.workload.dispatcher import Dispatcher
from oltpdriver.workload.results import windowed_throughput
from oltpdriver.workload.state import PhaseCursor
from oltpdriver.workload.worker import Worker, WorkerState

RATE = 50
PHASE_SECONDS = 1.0
TERMINALS = 2
SEED = 42


class _ScriptedBenchmark(AbstractBenchmarkModule):
    """Outcome is chosen by the transaction name."""

    name = "scripted"
    description = "test benchmark with fixed outcomes per type"

    def __init__(self, workload, service_time: float = 0.0) -> None:
        super().__init__(workload)
        self.service_time = service_time
        self.calls = 0
        self.warmup_calls = 0
        self._lock = threading.Lock()

    def execute(self, txn_type, context):
        with self._lock:
            self.calls += 1
            self.warmup_calls += int(context.warmup)
        if self.service_time:
            time.sleep(self.service_time)
        if txn_type.name == "Abort":
            raise UserAbortError("insufficient funds")
        if txn_type.name == "Retry":
            raise RetryableError("write conflict")
        if txn_type.name == "Boom":
            raise RuntimeError("driver bug in benchmark")
        return SUCCESS


class _TraceBenchmark(_ScriptedBenchmark):
    """Remembers the parameters, phase and terminal of every replayed entry."""

    def __init__(self, workload) -> None:
        super().__init__(workload)
        self.replayed = []

    def execute(self, txn_type, context):
        with self._lock:
            self.replayed.append((context.params[0], context.phase.index, context.terminal))
        return super().execute(txn_type, context)

@pytest.fixture
def scripted_types() -> TransactionTypes:
    return TransactionTypes(
        [
            TransactionType(id=i, name=name, benchmark="scripted")
            for i, name in enumerate(["Ok", "Abort", "Retry", "Boom"], start=1)
        ]
    )


def _run(workload, benchmark=None, **kwargs):
    benchmark = benchmark or SyntheticBenchmark(workload)
    return Dispatcher([(workload, benchmark)], seed=SEED, **kwargs).run()


def test_dispatcher_requires_a_workload() -> None:
    with pytest.raises(ConfigurationError):
        Dispatcher([])


def test_regular_arrivals_issue_rate_times_duration(workload_factory) -> None:
    workload = workload_factory(
        [{"rate": RATE, "weights": [1, 1, 1], "time": PHASE_SECONDS}],
        terminals=TERMINALS,
        extra={"latency_ms": 0},
    )

    results = _run(workload)

    expected = RATE * PHASE_SECONDS
    assert abs(len(results.records) - expected) <= TERMINALS
    assert {record.terminal for record in results.records} == {0, 1}
    halves = windowed_throughput(
        results.records, PHASE_SECONDS / 2, workload.transaction_types, duration=PHASE_SECONDS
    )
    assert [row.requests for row in halves] == pytest.approx([expected / 2] * 2, abs=TERMINALS + 1)
    assert results.measured_seconds == pytest.approx(PHASE_SECONDS, abs=0.1)
    assert results.profile["label"] == "workload"


def test_disabled_phase_delays_the_next_phase(workload_factory) -> None:
    workload = workload_factory(
        [
            {"rate": "disabled", "weights": [1, 1, 1], "time": 0.6},
            {"rate": 20, "weights": [1, 1, 1], "time": 0.5},
        ],
        terminals=1,
        extra={"latency_ms": 0},
    )

    results = _run(workload)

    assert results.records
    assert {record.phase for record in results.records} == {2}
    assert min(record.elapsed for record in results.records) >= 0.55
    # The disabled phase is not part of the measured time.
    assert results.measured_seconds == pytest.approx(0.5, abs=0.1)
    assert results.window_seconds == pytest.approx(1.1, abs=0.1)


def test_serial_untimed_phase_runs_one_pass_on_one_terminal(workload_factory, scripted_types) -> None:
    workload = workload_factory(
        [{"rate": "unlimited", "weights": [1, 1, 1, 1], "serial": True}],
        terminals=3,
        types=scripted_types,
        benchmark="scripted",
        record_abort_messages=True,
    )
    benchmark = _ScriptedBenchmark(workload)

    results = _run(workload, benchmark)

    assert [record.txn_type.name for record in results.records] == ["Ok", "Abort", "Retry", "Boom"]
    assert {record.terminal for record in results.records} == {0}
    assert [record.kind for record in results.records] == [
        OutcomeKind.SUCCESS,
        OutcomeKind.USER_ABORT,
        OutcomeKind.RETRY,
        OutcomeKind.UNEXPECTED_ERROR,
    ]
    assert results.abort_messages == {"Abort/insufficient funds": 1}
    assert benchmark.calls == 4


def test_failures_never_stop_workers(workload_factory, scripted_types) -> None:
    workload = workload_factory(
        [{"rate": 40, "weights": [0, 0, 0, 1], "time": 0.5}],
        terminals=TERMINALS,
        types=scripted_types,
        benchmark="scripted",
    )

    results = _run(workload, _ScriptedBenchmark(workload))

    assert results.errors.total() == len(results.records) >= 15
    assert results.success.total() == 0


def test_warmup_records_are_excluded_from_statistics(workload_factory, scripted_types) -> None:
    workload = workload_factory(
        [{"rate": "unlimited", "weights": [1, 0, 0, 0], "time": 0.6, "warmup": 0.3}],
        terminals=1,
        types=scripted_types,
        benchmark="scripted",
    )
    benchmark = _ScriptedBenchmark(workload, service_time=0.01)

    results = _run(workload, benchmark)

    warmup = [record for record in results.records if record.warmup]
    assert warmup
    assert benchmark.warmup_calls == len(warmup)
    assert results.requests == len(results.measured_records)
    assert results.measured_seconds == pytest.approx(0.6, abs=0.1)


def test_queue_overload_aborts_with_partial_results(workload_factory, scripted_types) -> None:
    workload = workload_factory(
        [{"rate": 100, "weights": [1, 0, 0, 0], "time": 5}],
        terminals=1,
        types=scripted_types,
        benchmark="scripted",
        queue_limit=3,
    )
    started = time.monotonic()

    with pytest.raises(QueueLimitError) as excinfo:
        _run(workload, _ScriptedBenchmark(workload, service_time=0.2))

    assert time.monotonic() - started < 4
    assert excinfo.value.results is not None
    assert len(excinfo.value.results.records) >= 1


def test_concurrent_benchmarks_keep_separate_timelines(workload_factory, txn_types) -> None:
    other_types = TransactionTypes(
        [TransactionType(id=10 + t.id, name=t.name, benchmark="other") for t in txn_types]
    )
    first = workload_factory(
        [{"rate": 20, "weights": [1, 1, 1], "time": 0.5}],
        terminals=1,
        extra={"latency_ms": 0},
    )
    second = workload_factory(
        [
            {"rate": "disabled", "weights": [1, 1, 1], "time": 0.3},
            {"rate": 20, "weights": [1, 1, 1], "time": 0.5},
        ],
        terminals=1,
        types=other_types,
        benchmark="other",
        extra={"latency_ms": 0},
    )

    results = Dispatcher(
        [(first, SyntheticBenchmark(first)), (second, SyntheticBenchmark(second))], seed=SEED
    ).run()

    by_benchmark = {record.txn_type.benchmark for record in results.records}
    assert by_benchmark == {"synthetic", "other"}
    assert {r.terminal for r in results.records if r.txn_type.benchmark == "other"} == {1}
    assert results.window_seconds == pytest.approx(0.8, abs=0.1)


def test_same_seed_gives_same_transaction_mix(workload_factory) -> None:
    def mix():
        workload = workload_factory(
            [{"rate": 40, "weights": [1, 1, 1], "time": 0.5}],
            terminals=1,
            extra={"latency_ms": 0},
        )
        return [r.txn_type.name for r in _run(workload).records][:15]

    first, second = mix(), mix()
    assert len(first) == 15
    assert first == second


def test_trace_entries_run_once_when_later_phases_add_terminals(
    workload_factory, scripted_types
) -> None:
    trace = tuple(TraceEntry(scripted_types[0], (str(i),)) for i in range(6))
    workload = workload_factory(
        [
            {"rate": "unlimited", "weights": [1, 0, 0, 0], "active_terminals": 1},
            {"rate": "unlimited", "weights": [1, 0, 0, 0], "active_terminals": 2},
        ],
        terminals=2,
        types=scripted_types,
        benchmark="scripted",
        trace=trace,
    )
    benchmark = _TraceBenchmark(workload)

    results = _run(workload, benchmark)

    params = [param for param, _, _ in benchmark.replayed]
    assert sorted(params, key=int) == ["0", "1", "2", "3", "4", "5"]
    assert len(results.records) == 6
    # The untimed first phase drains the trace on its single terminal, in file order.
    assert params == ["0", "1", "2", "3", "4", "5"]
    assert {terminal for _, _, terminal in benchmark.replayed} == {0}


def test_worker_thread_joins_cleanly_after_stop(workload_factory) -> None:
    workload = workload_factory(
        [{"rate": RATE, "weights": [1, 1, 1], "time": PHASE_SECONDS}],
        terminals=1,
        extra={"latency_ms": 0},
    )
    stop = threading.Event()
    stop.set()
    worker = Worker(
        terminal=0,
        workload=workload,
        benchmark=SyntheticBenchmark(workload),
        cursor=PhaseCursor(threading.Event()),
        stop=stop,
        on_fatal=lambda worker, exc: None,
        measure_origin=lambda: 0.0,
    )

    worker.start()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert worker.state is WorkerState.TERMINATED
