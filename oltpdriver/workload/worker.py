"""
Worker: one persistent thread per simulated terminal.

A worker follows the dispatcher-published phase, waits for its next arrival,
picks a transaction, runs it through the benchmark and records the outcome in
its own accumulator. Transaction failures are classified and recorded, never
propagated. Framework faults (queue overload, bugs in the loop itself) are
handed to the dispatcher through the fatal-error callback and end the worker.
"""

from __future__ import annotations

import enum
import random
import threading
import time
from typing import Callable, Optional, Sequence

from oltpdriver.benchmarks.abstract import BenchmarkModule, TransactionContext
from oltpdriver.domain.errors import OrchestrationError, QueueLimitError, WorkloadError
from oltpdriver.domain.models import (
    Outcome,
    OutcomeRecord,
    TransactionType,
    WorkloadConfiguration,
)
from oltpdriver.utils.logging import get_logger
from oltpdriver.workload.arrival import ArrivalController
from oltpdriver.workload.results import Accumulator
from oltpdriver.workload.selector import (
    TraceSelector,
    TransactionSelector,
    make_selector,
)
from oltpdriver.workload.state import PhaseCursor, PhaseState, clock

log = get_logger(__name__)

# Upper bound for a single idle wait so the stop flag is re-checked regularly.
IDLE_WAIT_SECONDS = 0.5


class WorkerState(str, enum.Enum):
    INITIALIZING = "initializing"
    WARMUP = "warmup"
    MEASURE = "measure"
    DONE = "done"
    TERMINATED = "terminated"


def worker_rng(seed: Optional[int], terminal: int, stream: str = "") -> random.Random:
    """
    Reproducible per-terminal generator; unseeded runs draw from the OS.

    A non-empty `stream` derives an independent generator for the same
    terminal, so draws on one stream never shift the sequence of another.
    """
    if seed is None:
        return random.Random()
    if stream:
        return random.Random(f"{seed}:{terminal}:{stream}")
    return random.Random(f"{seed}:{terminal}")


class Worker(threading.Thread):
    """
    Virtual terminal.

    Parameters
    ----------
    terminal : int
        Index of the terminal within its benchmark (0-based); terminals with
        an index >= a phase's active terminals idle through that phase.
    workload : WorkloadConfiguration
        Benchmark configuration (phases, types, queue limit, trace).
    benchmark : BenchmarkModule
        Collaborator executing transactions.
    cursor : PhaseCursor
        Published phase of this benchmark.
    stop : threading.Event
        Global stop signal.
    on_fatal : callable
        Fatal-error channel to the dispatcher.
    measure_origin : callable
        Returns the wall-clock origin of the measurement window, used to
        compute `OutcomeRecord.elapsed`.
    seed : int | None
        Base seed; the worker generators are derived from it and `terminal`.
        Arrival times use a dedicated stream per phase, selection and the
        benchmark context share the terminal's main generator.
    trace : TraceSelector | None
        Playback cursor shared by every terminal of a trace-driven benchmark.
    """

    def __init__(
        self,
        terminal: int,
        workload: WorkloadConfiguration,
        benchmark: BenchmarkModule,
        cursor: PhaseCursor,
        stop: threading.Event,
        on_fatal: Callable[["Worker", WorkloadError], None],
        measure_origin: Callable[[], float],
        seed: Optional[int] = None,
        terminal_id: Optional[int] = None,
        trace: Optional[TraceSelector] = None,
    ) -> None:
        super().__init__(name=f"{workload.benchmark}-terminal-{terminal}", daemon=True)
        self.terminal = terminal
        self.terminal_id = terminal if terminal_id is None else terminal_id
        self.workload = workload
        self.benchmark = benchmark
        self.state = WorkerState.INITIALIZING
        self.accumulator = Accumulator(self.terminal_id, workload.record_abort_messages)
        self.seed = seed
        self.rng = worker_rng(seed, self.terminal_id)
        self._cursor = cursor
        self._stop_event = stop
        self._on_fatal = on_fatal
        self._measure_origin = measure_origin
        self._arrival: Optional[ArrivalController] = None
        self._selector: Optional[TransactionSelector] = None
        self._trace = trace
        self._pass_done = False
        self._active = False

    # Thread entry point --------------------------------------------------

    def run(self) -> None:
        try:
            self._loop()
        except QueueLimitError as exc:
            self._on_fatal(self, exc)
        except Exception as exc:  # noqa: BLE001 - any loop fault must reach the dispatcher
            log.exception(
                "[WORKER FAILED] terminal loop crashed",
                extra={"benchmark": self.workload.benchmark, "terminal": self.terminal_id},
            )
            self._on_fatal(self, OrchestrationError(f"{self.name} crashed: {exc}"))
        finally:
            self.state = WorkerState.TERMINATED

    def _loop(self) -> None:
        seen: Optional[PhaseState] = None
        while not self._stop_event.is_set():
            state = self._cursor.current
            if state.finished:
                self.state = WorkerState.DONE
                return
            if state is not seen:
                self._enter_phase(state)
                seen = state
            if state.phase is None:
                self._cursor.wait_for_change(state, IDLE_WAIT_SECONDS)
                continue

            now = clock()
            if not self._active or self._pass_done or state.expired(now):
                self._idle(state, now)
                continue

            self.state = WorkerState.WARMUP if state.is_warmup(now) else WorkerState.MEASURE
            if self._trace is None:
                delay = self._arrival.poll(now)  # type: ignore[union-attr]
                if delay > 0:
                    self._wait(state, now, delay)
                    continue

            selector = self._trace or self._selector
            selection = selector.next()  # type: ignore[union-attr]
            if selection is None:
                self._pass_done = True
                self._cursor.report_done(state, self.terminal)
                continue
            if self._trace is None:
                self._arrival.take()  # type: ignore[union-attr]
            self._execute(state, selection.txn_type, selection.params)

    # Phase handling --------------------------------------------------------

    def _enter_phase(self, state: PhaseState) -> None:
        phase = state.phase
        self._pass_done = False
        if phase is None:
            self._active = False
            return
        self._active = self.terminal < phase.active_terminals and not phase.disabled
        if not self._active:
            return
        if self._trace is not None:
            if self._trace.exhausted:
                self._pass_done = True
                self._cursor.report_done(state, self.terminal)
            return
        self._arrival = ArrivalController(
            phase,
            slot=self.terminal,
            started_at=state.started_at,
            rng=worker_rng(self.seed, self.terminal_id, f"arrival:{phase.index}"),
            queue_limit=self.workload.queue_limit,
        )
        self._selector = make_selector(phase, self.workload.transaction_types, self.rng)
        log.debug(
            "[PHASE ENTER] terminal joined phase",
            extra={"terminal": self.terminal_id, "phase": phase.index},
        )

    def _idle(self, state: PhaseState, now: float) -> None:
        # Inactive, pass complete or timed out: nothing new starts until the next publish.
        self._wait(state, now, None)

    def _wait(self, state: PhaseState, now: float, delay: Optional[float]) -> None:
        timeout = IDLE_WAIT_SECONDS if delay is None else min(delay, IDLE_WAIT_SECONDS)
        remaining = state.remaining(now)
        if remaining is not None and remaining > 0:
            timeout = min(timeout, remaining)
        self._cursor.wait_for_change(state, timeout)

    # Execution -------------------------------------------------------------

    def _execute(
        self, state: PhaseState, txn_type: TransactionType, params: Optional[Sequence]
    ) -> None:
        phase = state.phase
        dispatched = clock()
        warmup = state.is_warmup(dispatched)
        context = TransactionContext(
            terminal=self.terminal_id,
            phase=phase,  # type: ignore[arg-type]
            warmup=warmup,
            rng=self.rng,
            params=tuple(params) if params is not None else None,
        )
        wall_start = time.time()
        started = time.perf_counter()
        try:
            outcome = Outcome.coerce(self.benchmark.execute(txn_type, context))
        except Exception as exc:  # noqa: BLE001 - classified and recorded, never propagated
            outcome = self.benchmark.classify_error(exc)
            log.debug(
                "[TXN FAILED] transaction raised",
                extra={
                    "terminal": self.terminal_id,
                    "txn": txn_type.name,
                    "outcome": outcome.kind.value,
                    "error": str(exc),
                },
            )
        latency = round(time.perf_counter() - started, 6)
        wall_end = wall_start + latency
        self.accumulator.add(
            OutcomeRecord(
                txn_type=txn_type,
                phase=phase.index,  # type: ignore[union-attr]
                terminal=self.terminal_id,
                start=wall_start,
                end=wall_end,
                elapsed=wall_end - self._measure_origin(),
                latency=latency,
                warmup=warmup,
                kind=outcome.kind,
            ),
            outcome.message,
        )


__all__ = ["IDLE_WAIT_SECONDS", "Worker", "WorkerState", "worker_rng"]
