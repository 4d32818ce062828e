"""
Shared phase cursor published by the dispatcher and read by every worker.

The current phase is an immutable `PhaseState` swapped in with a single
reference assignment, so workers read a consistent snapshot each iteration
without taking a lock. The condition variable is only used by idle workers
waiting for the next publish, and by the dispatcher to learn that the active
workers of an untimed phase have finished their pass.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional, Set

from oltpdriver.domain.models import Phase

clock = time.monotonic


@dataclass(frozen=True)
class PhaseState:
    """
    Snapshot of the schedule as seen by workers.

    `phase` is None before the first phase starts and after the last one ends
    (`finished` distinguishes the two).
    """

    phase: Optional[Phase]
    started_at: float = 0.0
    wall_started_at: float = 0.0
    finished: bool = False

    @property
    def warmup_until(self) -> float:
        return self.started_at + (self.phase.warmup if self.phase else 0.0)

    @property
    def ends_at(self) -> Optional[float]:
        if self.phase is None or not self.phase.timed:
            return None
        return self.started_at + self.phase.total_seconds

    def is_warmup(self, now: float) -> bool:
        return self.phase is not None and now < self.warmup_until

    def expired(self, now: float) -> bool:
        ends_at = self.ends_at
        return ends_at is not None and now >= ends_at

    def remaining(self, now: float) -> Optional[float]:
        ends_at = self.ends_at
        return None if ends_at is None else max(ends_at - now, 0.0)


INITIAL = PhaseState(phase=None)


class PhaseCursor:
    """Atomically published current phase of one workload."""

    def __init__(self, wakeup: Optional[threading.Event] = None) -> None:
        self._state: PhaseState = INITIAL
        self._wakeup = wakeup
        self._changed = threading.Condition()
        self._done: Set[int] = set()

    @property
    def current(self) -> PhaseState:
        return self._state

    def publish(self, state: PhaseState) -> None:
        with self._changed:
            self._state = state
            self._done = set()
            self._changed.notify_all()

    def wait_for_change(self, seen: PhaseState, timeout: Optional[float]) -> bool:
        """Block until a new state is published or `timeout` elapses."""
        with self._changed:
            return self._changed.wait_for(lambda: self._state is not seen, timeout)

    def report_done(self, seen: PhaseState, terminal: int) -> None:
        """Record that `terminal` finished its pass of the phase in `seen`."""
        with self._changed:
            if self._state is seen:
                self._done.add(terminal)
                self._changed.notify_all()
        if self._wakeup is not None:
            self._wakeup.set()

    def done_count(self) -> int:
        with self._changed:
            return len(self._done)


__all__ = ["INITIAL", "PhaseCursor", "PhaseState", "clock"]
