"""
Outcome accumulation and aggregation.

Every worker owns an `Accumulator` and appends to it without locking. The
dispatcher turns accumulators into `Results` at explicit merge points only.
`Results.merge` is associative and commutative: histograms add up and the
record sequence is kept sorted by a total order, so merging worker results in
any order yields an identical aggregate.

The windowed throughput series is a pure function of the measured records,
which is what lets a raw per-transaction export be re-aggregated into the
same windows the aggregator produces directly.
"""

from __future__ import annotations

import csv
import heapq
import math
import statistics
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, TextIO

from oltpdriver.domain.models import (
    OutcomeKind,
    OutcomeRecord,
    TransactionType,
    TransactionTypes,
)

RAW_CSV_HEADER = [
    "Transaction Type Index",
    "Transaction Name",
    "Phase",
    "Terminal",
    "Start Time (seconds)",
    "End Time (seconds)",
    "Elapsed (seconds)",
    "Latency (microseconds)",
    "Outcome",
]


class Histogram(Counter):
    """Occurrence counts per key (transaction type or abort message)."""

    def merge(self, other: Mapping[Hashable, int]) -> "Histogram":
        merged = Histogram(self)
        merged.update(other)
        return merged


def _empty_histograms() -> Dict[OutcomeKind, Histogram]:
    return {kind: Histogram() for kind in OutcomeKind}


class Accumulator:
    """
    Worker-owned outcome sink.

    Counters are plain attributes so the dispatcher's interval monitor can read
    them from another thread without pausing the worker.
    """

    def __init__(self, terminal: int, record_abort_messages: bool = False) -> None:
        self.terminal = terminal
        self.record_abort_messages = record_abort_messages
        self.records: List[OutcomeRecord] = []
        self.histograms = _empty_histograms()
        self.abort_messages = Histogram()
        self.completed = 0
        self.measured_success = 0

    def add(self, record: OutcomeRecord, message: Optional[str] = None) -> None:
        self.records.append(record)
        self.completed += 1
        if record.warmup:
            return
        self.histograms[record.kind][record.txn_type] += 1
        if record.kind is OutcomeKind.SUCCESS:
            self.measured_success += 1
        elif (
            record.kind is OutcomeKind.USER_ABORT
            and self.record_abort_messages
            and message
        ):
            self.abort_messages[f"{record.txn_type.name}/{message}"] += 1

    def to_results(self) -> "Results":
        return Results(
            histograms={kind: Histogram(hist) for kind, hist in self.histograms.items()},
            abort_messages=Histogram(self.abort_messages),
            records=sorted(self.records, key=OutcomeRecord.sort_key),
        )


@dataclass
class Results:
    """
    Aggregated outcome of a run.
    """

    histograms: Dict[OutcomeKind, Histogram] = field(default_factory=_empty_histograms)
    abort_messages: Histogram = field(default_factory=Histogram)
    records: List[OutcomeRecord] = field(default_factory=list)
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    measured_seconds: Optional[float] = None
    window_seconds: Optional[float] = None
    profile: Dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "Results") -> "Results":
        """Combine two results; associative and commutative."""
        histograms = {
            kind: self.histograms.get(kind, Histogram()).merge(other.histograms.get(kind, {}))
            for kind in OutcomeKind
        }
        records = list(
            heapq.merge(self.records, other.records, key=OutcomeRecord.sort_key)
        )
        return Results(
            histograms=histograms,
            abort_messages=self.abort_messages.merge(other.abort_messages),
            records=records,
            started_at=_pick(min, self.started_at, other.started_at),
            ended_at=_pick(max, self.ended_at, other.ended_at),
            measured_seconds=_pick(max, self.measured_seconds, other.measured_seconds),
            window_seconds=_pick(max, self.window_seconds, other.window_seconds),
        )

    __add__ = merge

    @classmethod
    def combine(cls, parts: Iterable["Results"]) -> "Results":
        merged = cls()
        for part in parts:
            merged = merged.merge(part)
        return merged

    # Histogram views ----------------------------------------------------

    @property
    def success(self) -> Histogram:
        return self.histograms[OutcomeKind.SUCCESS]

    @property
    def aborts(self) -> Histogram:
        return self.histograms[OutcomeKind.USER_ABORT]

    @property
    def retries(self) -> Histogram:
        return self.histograms[OutcomeKind.RETRY]

    @property
    def errors(self) -> Histogram:
        return self.histograms[OutcomeKind.UNEXPECTED_ERROR]

    # Measured statistics --------------------------------------------------

    @property
    def measured_records(self) -> List[OutcomeRecord]:
        return [record for record in self.records if not record.warmup]

    @property
    def committed_records(self) -> List[OutcomeRecord]:
        return [
            record
            for record in self.records
            if not record.warmup and record.kind is OutcomeKind.SUCCESS
        ]

    @property
    def requests(self) -> int:
        return sum(hist.total() for hist in self.histograms.values())

    def requests_per_second(self) -> float:
        if not self.measured_seconds:
            return 0.0
        return self.requests / self.measured_seconds

    def goodput(self) -> float:
        """Committed transactions per second."""
        if not self.measured_seconds:
            return 0.0
        return self.success.total() / self.measured_seconds

    def latency_distribution(self) -> Dict[str, float]:
        """Latency percentiles (milliseconds) over committed, measured records."""
        return latency_stats([record.latency for record in self.committed_records])

    def summary(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "measured_seconds": self.measured_seconds,
            "requests_per_second": round(self.requests_per_second(), 2),
            "goodput_per_second": round(self.goodput(), 2),
            "latency_ms": self.latency_distribution(),
            "outcomes": {kind.value: hist.total() for kind, hist in self.histograms.items()},
        }

    def __str__(self) -> str:
        return (
            f"Results(requests={self.requests}, "
            f"rps={self.requests_per_second():.2f}, goodput={self.goodput():.2f})"
        )


def _pick(func, left: Optional[float], right: Optional[float]) -> Optional[float]:
    values = [value for value in (left, right) if value is not None]
    return func(values) if values else None


def latency_stats(latencies: Sequence[float]) -> Dict[str, float]:
    if not latencies:
        return {}
    ordered = sorted(latencies)

    def pct(q: float) -> float:
        # Nearest-rank percentile.
        rank = max(math.ceil(q * len(ordered)) - 1, 0)
        return round(ordered[rank] * 1000.0, 3)

    return {
        "min": round(ordered[0] * 1000.0, 3),
        "p25": pct(0.25),
        "median": pct(0.50),
        "p75": pct(0.75),
        "p90": pct(0.90),
        "p95": pct(0.95),
        "p99": pct(0.99),
        "max": round(ordered[-1] * 1000.0, 3),
        "average": round(statistics.fmean(ordered) * 1000.0, 3),
    }


# Windowed throughput ------------------------------------------------------


@dataclass(frozen=True)
class WindowRow:
    index: int
    start_seconds: float
    requests: int
    throughput: float
    latency_ms: Dict[str, float]
    per_type: Dict[str, int]


def windowed_throughput(
    records: Iterable[OutcomeRecord],
    window: float,
    types: Sequence[TransactionType],
    duration: Optional[float] = None,
    txn_type: Optional[TransactionType] = None,
) -> List[WindowRow]:
    """
    Bucket committed, measured records into windows of `window` seconds.

    The bucket of a record is `floor(elapsed / window)`. Without `duration`
    one row is emitted per bucket from 0 to the last populated one; with
    `duration` exactly `ceil(duration / window)` rows are emitted and later
    completions fall into the last row. Empty buckets carry zero counts.
    """
    if window <= 0:
        raise ValueError("window size must be positive")
    buckets: Dict[int, List[OutcomeRecord]] = {}
    selected = [
        record
        for record in records
        if not record.warmup
        and record.kind is OutcomeKind.SUCCESS
        and (txn_type is None or record.txn_type == txn_type)
    ]
    row_count: Optional[int] = None
    if duration is not None:
        row_count = max(math.ceil(duration / window), 1)
    for record in selected:
        index = max(int(math.floor(record.elapsed / window)), 0)
        if row_count is not None:
            index = min(index, row_count - 1)
        buckets.setdefault(index, []).append(record)
    if row_count is None:
        row_count = (max(buckets) + 1) if buckets else 0

    names = [t.name for t in types] if txn_type is None else [txn_type.name]
    rows: List[WindowRow] = []
    for index in range(row_count):
        bucket = buckets.get(index, [])
        per_type = Counter(record.txn_type.name for record in bucket)
        rows.append(
            WindowRow(
                index=index,
                start_seconds=index * window,
                requests=len(bucket),
                throughput=len(bucket) / window,
                latency_ms=latency_stats([record.latency for record in bucket]),
                per_type={name: per_type.get(name, 0) for name in names},
            )
        )
    return rows


def window_csv_header(type_names: Sequence[str]) -> List[str]:
    return [
        "time(sec)",
        "requests",
        "throughput(req/sec)",
        "avg_lat(ms)",
        "min_lat(ms)",
        "25th_lat(ms)",
        "median_lat(ms)",
        "75th_lat(ms)",
        "90th_lat(ms)",
        "95th_lat(ms)",
        "99th_lat(ms)",
        "max_lat(ms)",
        *type_names,
    ]


def write_windowed_csv(rows: Sequence[WindowRow], stream: TextIO, type_names: Sequence[str]) -> None:
    writer = csv.writer(stream)
    writer.writerow(window_csv_header(type_names))
    keys = ("average", "min", "p25", "median", "p75", "p90", "p95", "p99", "max")
    for row in rows:
        writer.writerow(
            [
                f"{row.start_seconds:g}",
                row.requests,
                f"{row.throughput:.3f}",
                *(f"{row.latency_ms.get(key, 0.0):.3f}" for key in keys),
                *(row.per_type.get(name, 0) for name in type_names),
            ]
        )


# Raw export ---------------------------------------------------------------


def write_raw_csv(records: Iterable[OutcomeRecord], stream: TextIO) -> int:
    """Write measured records sorted by completion time; return the row count."""
    writer = csv.writer(stream)
    writer.writerow(RAW_CSV_HEADER)
    rows = 0
    for record in sorted(
        (record for record in records if not record.warmup), key=OutcomeRecord.sort_key
    ):
        writer.writerow(
            [
                record.txn_type.id,
                record.txn_type.name,
                record.phase,
                record.terminal,
                f"{record.start:.6f}",
                f"{record.end:.6f}",
                repr(record.elapsed),
                round(record.latency * 1_000_000),
                record.kind.value,
            ]
        )
        rows += 1
    return rows


def read_raw_csv(stream: TextIO, types: TransactionTypes) -> List[OutcomeRecord]:
    """Parse a raw export back into outcome records."""
    reader = csv.reader(stream)
    header = next(reader, None)
    if header != RAW_CSV_HEADER:
        raise ValueError(f"Unexpected raw CSV header: {header}")
    records: List[OutcomeRecord] = []
    for row in reader:
        if not row:
            continue
        records.append(
            OutcomeRecord(
                txn_type=types.get(int(row[0])),
                phase=int(row[2]),
                terminal=int(row[3]),
                start=float(row[4]),
                end=float(row[5]),
                elapsed=float(row[6]),
                latency=int(row[7]) / 1_000_000,
                warmup=False,
                kind=OutcomeKind(row[8]),
            )
        )
    return records


__all__ = [
    "RAW_CSV_HEADER",
    "Accumulator",
    "Histogram",
    "Results",
    "WindowRow",
    "read_raw_csv",
    "window_csv_header",
    "latency_stats",
    "windowed_throughput",
    "write_raw_csv",
    "write_windowed_csv",
]
