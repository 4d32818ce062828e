"""
Arrival controller: decides when a worker's next transaction may fire.

Closed-loop (unlimited) phases never wait. Open-loop phases target an
aggregate rate of `n` transactions/second spread over `active_terminals`
workers, so each worker runs its own schedule with a mean inter-arrival
interval of `active_terminals / n` seconds. REGULAR spacing is fixed and
staggered per worker slot; POISSON spacing is exponential and drawn from a
generator dedicated to arrivals, so the schedule of a seeded run does not
depend on how often the worker polls or on any other draws it makes.

Arrivals whose deadline has passed but that have not been dispatched yet are
kept in a pending queue. A worker that falls too far behind its schedule
exceeds the queue bound and the run fails with `QueueLimitError`, instead of
silently growing the backlog.
"""

from __future__ import annotations

import math
import random
from collections import deque
from typing import Deque, Optional

from oltpdriver.domain.errors import QueueLimitError
from oltpdriver.domain.models import Arrival, Phase


class ArrivalController:
    """
    Per-worker, per-phase arrival schedule.

    Parameters
    ----------
    phase : Phase
        The phase being executed.
    slot : int
        Position of the worker among the phase's active terminals (0-based).
    started_at : float
        Monotonic timestamp at which the phase started.
    rng : random.Random
        Generator reserved for Poisson sampling; nothing else may draw from it.
    queue_limit : int
        Maximum number of due-but-undispatched arrivals.
    """

    def __init__(
        self,
        phase: Phase,
        slot: int,
        started_at: float,
        rng: random.Random,
        queue_limit: int,
    ) -> None:
        self.phase = phase
        self.slot = slot
        self.queue_limit = queue_limit
        self._rng = rng
        self._pending: Deque[float] = deque()
        self._interval = phase.mean_interval()
        self._next: float = math.inf
        if self._interval is not None:
            if phase.arrival is Arrival.REGULAR:
                # Stagger slots by 1/rate so the aggregate stream is evenly spaced.
                self._next = started_at + slot * (self._interval / phase.active_terminals)
            else:
                self._next = started_at + self.next_interval()

    @property
    def closed_loop(self) -> bool:
        return not self.phase.disabled and self._interval is None

    @property
    def mean_interval(self) -> Optional[float]:
        return self._interval

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def next_deadline(self) -> float:
        return self._next

    def next_interval(self) -> float:
        """Draw the gap between two consecutive arrivals of this worker."""
        if self._interval is None:
            return 0.0
        if self.phase.arrival is Arrival.POISSON:
            return self._rng.expovariate(1.0 / self._interval)
        return self._interval

    def poll(self, now: float) -> float:
        """
        Return how long to wait before the next transaction may fire.

        Zero means a transaction may be dispatched right away; `math.inf`
        means this phase never fires (disabled).

        Raises
        ------
        QueueLimitError
            When the pending backlog exceeds `queue_limit`.
        """
        if self.phase.disabled:
            return math.inf
        if self._interval is None:
            return 0.0
        while self._next <= now:
            self._pending.append(self._next)
            self._next += self.next_interval()
            if len(self._pending) > self.queue_limit:
                raise QueueLimitError(
                    f"Phase {self.phase.index}, slot {self.slot}: {len(self._pending)} "
                    f"scheduled requests are waiting (limit {self.queue_limit}); "
                    "the target cannot keep up with the requested rate"
                )
        if self._pending:
            return 0.0
        return self._next - now

    def take(self) -> Optional[float]:
        """Consume one due arrival and return its scheduled time."""
        if self._interval is None:
            return None
        return self._pending.popleft() if self._pending else None


__all__ = ["ArrivalController"]
