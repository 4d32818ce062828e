"""
Dispatcher: runs every benchmark's phase schedule across its workers.

Workers are created once per terminal and persist for the whole run. The
dispatcher only publishes phase boundaries; workers time themselves against
the published `PhaseState`. Timed phase boundaries are anchored to the
schedule (start of the previous phase + warmup + duration), so small publish
delays never stretch the timeline. Untimed (serial) phases end when every
active worker has reported the end of its pass.

Two channels reach the dispatcher from workers: per-transaction outcomes stay
in worker-owned accumulators until the final merge, and fatal faults arrive
through `_on_fatal`, which stops the run immediately.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from oltpdriver.benchmarks.abstract import BenchmarkModule
from oltpdriver.domain.errors import (
    ConfigurationError,
    OrchestrationError,
    RunAbortedError,
    WorkloadError,
)
from oltpdriver.domain.models import Phase, WorkloadConfiguration
from oltpdriver.utils.logging import get_logger
from oltpdriver.utils.profiler import profile_block
from oltpdriver.workload.results import Results
from oltpdriver.workload.selector import TraceSelector
from oltpdriver.workload.state import PhaseCursor, PhaseState, clock
from oltpdriver.workload.worker import Worker

log = get_logger(__name__)

DEFAULT_GRACE_SECONDS = 10.0


@dataclass
class _Schedule:
    """Phase timeline of one benchmark."""

    workload: WorkloadConfiguration
    benchmark: BenchmarkModule
    cursor: PhaseCursor
    workers: List[Worker] = field(default_factory=list)
    trace: Optional[TraceSelector] = None
    position: int = -1
    deadline: float = math.inf
    origin_wall: float = 0.0
    measured_seconds: float = 0.0
    ended_at: Optional[float] = None
    finished: bool = False

    @property
    def phase(self) -> Optional[Phase]:
        phases = self.workload.phases
        return phases[self.position] if 0 <= self.position < len(phases) else None

    def measure_origin(self) -> float:
        return self.origin_wall


class Dispatcher:
    """
    Start, drive and stop all workers of one run.

    Parameters
    ----------
    workloads : sequence of (WorkloadConfiguration, BenchmarkModule)
        Benchmarks to run concurrently; each keeps its own phase timeline.
    interval_ms : int
        Interval monitor period in milliseconds; 0 disables monitoring.
    grace_seconds : float
        How long to wait for each worker to honor the stop signal.
    seed : int | None
        Base seed for the per-terminal generators.
    """

    def __init__(
        self,
        workloads: Sequence[Tuple[WorkloadConfiguration, BenchmarkModule]],
        interval_ms: int = 0,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        seed: Optional[int] = None,
    ) -> None:
        if not workloads:
            raise ConfigurationError("At least one benchmark is required to run a workload")
        self.interval_ms = interval_ms
        self.grace_seconds = grace_seconds
        self.seed = seed
        self.stop_event = threading.Event()
        self._wakeup = threading.Event()
        self._fatal_lock = threading.Lock()
        self._fatal: Optional[WorkloadError] = None
        self._mono_base = 0.0
        self._wall_base = 0.0
        self._schedules = [
            _Schedule(workload=workload, benchmark=benchmark, cursor=PhaseCursor(self._wakeup))
            for workload, benchmark in workloads
        ]

    @property
    def workers(self) -> List[Worker]:
        return [worker for schedule in self._schedules for worker in schedule.workers]

    # Fatal channel ---------------------------------------------------------

    def _on_fatal(self, worker: Worker, exc: WorkloadError) -> None:
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = exc
                log.error(
                    "[FATAL] worker reported a fatal fault; stopping the run",
                    extra={"terminal": worker.terminal_id, "error": str(exc)},
                )
        self.stop_event.set()
        self._wakeup.set()

    # Lifecycle ---------------------------------------------------------------

    def _create_workers(self) -> None:
        terminal_offset = 0
        for schedule in self._schedules:
            workload = schedule.workload
            if workload.trace is not None:
                schedule.trace = TraceSelector(workload.trace)
            log.info(
                f"Creating {workload.terminals} virtual terminals...",
                extra={"benchmark": workload.benchmark},
            )
            schedule.workers = [
                Worker(
                    terminal=index,
                    terminal_id=terminal_offset + index,
                    workload=workload,
                    benchmark=schedule.benchmark,
                    cursor=schedule.cursor,
                    stop=self.stop_event,
                    on_fatal=self._on_fatal,
                    measure_origin=schedule.measure_origin,
                    seed=self.seed,
                    trace=schedule.trace,
                )
                for index in range(workload.terminals)
            ]
            terminal_offset += workload.terminals

    def _to_wall(self, mono: float) -> float:
        return self._wall_base + (mono - self._mono_base)

    def _advance(self, schedule: _Schedule, started_at: float) -> None:
        """Publish the next phase of `schedule` starting at `started_at`."""
        if schedule.phase is not None:
            self._close_phase(schedule, started_at)
        schedule.position += 1
        phase = schedule.phase
        benchmark = schedule.workload.benchmark
        if phase is None:
            schedule.finished = True
            schedule.deadline = math.inf
            schedule.ended_at = started_at
            log.info(f"[SCHEDULE COMPLETE] {benchmark.upper()}", extra={"benchmark": benchmark})
            return
        state = PhaseState(
            phase=phase,
            started_at=started_at,
            wall_started_at=self._to_wall(started_at),
        )
        if schedule.position == 0:
            schedule.origin_wall = state.wall_started_at + phase.warmup
        schedule.deadline = state.ends_at if state.ends_at is not None else math.inf
        schedule.cursor.publish(state)
        log.info(
            f"[PHASE START] {benchmark.upper()} phase {phase.index}/{len(schedule.workload.phases)}",
            extra={
                "benchmark": benchmark,
                "phase": phase.index,
                "rate": str(phase.rate),
                "arrival": phase.arrival.value,
                "serial": phase.serial,
                "active_terminals": phase.active_terminals,
                "duration": phase.duration,
                "warmup": phase.warmup,
            },
        )
        if phase.disabled and not phase.timed:
            # Nothing will ever report completion for a disabled untimed phase.
            self._advance(schedule, started_at)

    def _close_phase(self, schedule: _Schedule, ended_at: float) -> None:
        phase = schedule.phase
        state = schedule.cursor.current
        if phase is None or state.phase is None:
            return
        measured = max(ended_at - state.warmup_until, 0.0)
        if not phase.disabled:
            schedule.measured_seconds += measured
        log.info(
            f"[PHASE END] phase {phase.index}",
            extra={"benchmark": schedule.workload.benchmark, "phase": phase.index},
        )

    def _untimed_complete(self, schedule: _Schedule) -> bool:
        phase = schedule.phase
        if phase is None or phase.timed:
            return False
        return schedule.cursor.done_count() >= phase.active_terminals

    def _monitor(self, last_counts: List[int], interval: float) -> None:
        counts = [worker.accumulator.completed for worker in self.workers]
        delta = sum(counts) - sum(last_counts)
        last_counts[:] = counts
        log.info(
            f"[MONITOR] Throughput: {delta / interval:.2f} txn/sec",
            extra={"completed": sum(counts), "interval_ms": self.interval_ms},
        )

    def _drive(self) -> None:
        now = clock()
        self._mono_base = now
        self._wall_base = time.time()
        for schedule in self._schedules:
            self._advance(schedule, now)

        interval = self.interval_ms / 1000.0 if self.interval_ms > 0 else None
        next_tick = now + interval if interval else math.inf
        last_counts = [0] * len(self.workers)

        while not self.stop_event.is_set():
            now = clock()
            for schedule in self._schedules:
                if schedule.finished:
                    continue
                # Loop so zero-length phases (e.g. untimed ones already done) chain at once.
                while not schedule.finished and (
                    now >= schedule.deadline or self._untimed_complete(schedule)
                ):
                    boundary = schedule.deadline if now >= schedule.deadline else now
                    self._advance(schedule, boundary)
            if all(schedule.finished for schedule in self._schedules):
                return
            if interval and now >= next_tick:
                self._monitor(last_counts, interval)
                next_tick += interval
            wake_at = min([s.deadline for s in self._schedules] + [next_tick])
            timeout = max(wake_at - clock(), 0.0)
            self._wakeup.wait(timeout if math.isfinite(timeout) else None)
            self._wakeup.clear()

    def _shutdown(self) -> None:
        self.stop_event.set()
        for schedule in self._schedules:
            schedule.cursor.publish(
                PhaseState(phase=None, started_at=clock(), finished=True)
            )
        stragglers = []
        deadline = clock() + self.grace_seconds
        for worker in self.workers:
            worker.join(timeout=max(deadline - clock(), 0.0))
            if worker.is_alive():
                stragglers.append(worker.name)
        if stragglers:
            raise OrchestrationError(
                f"{len(stragglers)} worker(s) did not stop within {self.grace_seconds}s: "
                + ", ".join(stragglers),
                results=self._merge(partial=True),
            )

    def _merge(self, partial: bool = False) -> Results:
        parts = [
            worker.accumulator.to_results() for worker in self.workers if not worker.is_alive()
        ]
        results = Results.combine(parts)
        results.started_at = self._wall_base or None
        results.ended_at = time.time()
        results.measured_seconds = max(s.measured_seconds for s in self._schedules) or None
        results.window_seconds = self._window_seconds()
        if partial:
            log.warning(
                "[PARTIAL RESULTS] merged outcome records collected before the fault",
                extra={"records": len(results.records)},
            )
        return results

    def _window_seconds(self) -> Optional[float]:
        """Span from the first measured instant to the end of the last phase."""
        spans = [
            max(self._to_wall(s.ended_at) - s.origin_wall, 0.0)
            for s in self._schedules
            if s.ended_at is not None
        ]
        return max(spans) if spans else None

    def run(self) -> Results:
        """
        Execute every phase of every benchmark and return the merged results.

        Raises
        ------
        QueueLimitError, OrchestrationError
            On fatal in-run faults; `exc.results` carries the partial results.
        """
        self._create_workers()
        for schedule in self._schedules:
            workload = schedule.workload
            phases = len(workload.phases)
            log.info(
                f"Launching the {workload.benchmark.upper()} Benchmark with "
                f"{phases} Phase{'s' if phases > 1 else ''}...",
                extra={"benchmark": workload.benchmark, "terminals": workload.terminals},
            )

        with profile_block("workload") as stats:
            for worker in self.workers:
                worker.start()
            try:
                self._drive()
            finally:
                end = clock()
                for schedule in self._schedules:
                    if not schedule.finished:
                        self._close_phase(schedule, end)
                self._shutdown()

        if self._fatal is not None:
            fatal = self._fatal
            results = self._merge(partial=True)
            if isinstance(fatal, RunAbortedError):
                fatal.results = results
                raise fatal
            raise OrchestrationError(str(fatal), results=results)

        results = self._merge()
        results.profile = stats.as_dict()
        log.info(f"Rate limited reqs/s: {results}", extra=results.summary())
        return results


__all__ = ["DEFAULT_GRACE_SECONDS", "Dispatcher"]
