"""
Transaction selection strategies.

- SerialSelector: registry order, one pass (untimed) or looping (timed).
- WeightedSelector: cumulative-weight table + bisect over a uniform draw.
- TraceSelector: replays recorded entries once, in file order.

Each worker builds its own serial or weighted selector per phase and passes
its own generator. A trace is the exception: one TraceSelector per benchmark
is shared by all of its terminals, which pull entries under a lock.
"""

from __future__ import annotations

import abc
import random
import threading
from bisect import bisect_right
from itertools import accumulate
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

from oltpdriver.domain.models import Phase, TraceEntry, TransactionType


class Selection(NamedTuple):
    txn_type: TransactionType
    params: Optional[Tuple[Any, ...]] = None


class TransactionSelector(abc.ABC):
    @abc.abstractmethod
    def next(self) -> Optional[Selection]:
        """Return the next transaction to run, or None when there is nothing left."""
        raise NotImplementedError


class SerialSelector(TransactionSelector):
    def __init__(self, types: Sequence[TransactionType], loop: bool) -> None:
        self._types = list(types)
        self._loop = loop
        self._position = 0

    def next(self) -> Optional[Selection]:
        if not self._types:
            return None
        if self._position >= len(self._types) and not self._loop:
            return None
        txn_type = self._types[self._position % len(self._types)]
        self._position += 1
        return Selection(txn_type)


class WeightedSelector(TransactionSelector):
    def __init__(
        self,
        types: Sequence[TransactionType],
        weights: Sequence[float],
        rng: random.Random,
    ) -> None:
        if len(types) != len(weights):
            raise ValueError("one weight per transaction type is required")
        self._types = list(types)
        self._cumulative: List[float] = list(accumulate(weights))
        self._total = self._cumulative[-1] if self._cumulative else 0.0
        if self._total <= 0:
            raise ValueError("weights must sum to a positive value")
        self._rng = rng

    def next(self) -> Optional[Selection]:
        draw = self._rng.random() * self._total
        # bisect_right skips zero-weight entries whose cumulative value equals the draw.
        index = bisect_right(self._cumulative, draw)
        return Selection(self._types[min(index, len(self._types) - 1)])


class TraceSelector(TransactionSelector):
    """
    Shared playback cursor over a recorded trace.

    Every entry is handed out exactly once, in file order, to whichever
    terminal asks next. The position survives phase changes, so a trace that
    spans several phases resumes where the previous phase stopped.
    """

    def __init__(self, entries: Sequence[TraceEntry]) -> None:
        self._entries = tuple(entries)
        self._position = 0
        self._lock = threading.Lock()

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._position >= len(self._entries)

    def next(self) -> Optional[Selection]:
        with self._lock:
            if self._position >= len(self._entries):
                return None
            entry = self._entries[self._position]
            self._position += 1
        return Selection(entry.txn_type, entry.params)


def make_selector(
    phase: Phase,
    types: Sequence[TransactionType],
    rng: random.Random,
) -> TransactionSelector:
    """Pick the selection strategy for a phase; trace playback is built by the dispatcher."""
    if phase.serial:
        return SerialSelector(types, loop=phase.timed)
    return WeightedSelector(types, phase.weights, rng)


__all__ = [
    "Selection",
    "SerialSelector",
    "TraceSelector",
    "TransactionSelector",
    "WeightedSelector",
    "make_selector",
]
