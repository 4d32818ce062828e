from __future__ import annotations

import io
import math

import pytest

from oltpdriver.domain.models import OutcomeKind, OutcomeRecord
from oltpdriver.workload.results import (
    RAW_CSV_HEADER,
    Accumulator,
    Histogram,
    Results,
    latency_stats,
    read_raw_csv,
    windowed_throughput,
    write_raw_csv,
    write_windowed_csv,
)

ORIGIN = 1_700_000_000.0
DURATION = 10.0
WINDOW = 3.0


def _record(txn_type, elapsed, terminal=0, kind=OutcomeKind.SUCCESS, warmup=False, latency=0.0015):
    end = ORIGIN + elapsed
    return OutcomeRecord(
        txn_type=txn_type,
        phase=1,
        terminal=terminal,
        start=end - latency,
        end=end,
        elapsed=elapsed,
        latency=latency,
        warmup=warmup,
        kind=kind,
    )


def _results(records, terminal=0, record_abort_messages=False):
    accumulator = Accumulator(terminal, record_abort_messages)
    for record, message in records:
        accumulator.add(record, message)
    return accumulator.to_results()


@pytest.fixture
def three_results(txn_types):
    new_order, payment, status = txn_types
    first = _results(
        [
            (_record(new_order, 0.5, terminal=0), None),
            (_record(payment, 1.5, terminal=0, kind=OutcomeKind.USER_ABORT), "no stock"),
        ],
        terminal=0,
        record_abort_messages=True,
    )
    second = _results(
        [
            (_record(status, 0.7, terminal=1), None),
            (_record(new_order, 2.5, terminal=1, kind=OutcomeKind.RETRY), None),
        ],
        terminal=1,
    )
    third = _results(
        [
            (_record(payment, 0.5, terminal=2), None),
            (_record(status, 3.5, terminal=2, kind=OutcomeKind.UNEXPECTED_ERROR), None),
        ],
        terminal=2,
    )
    return first, second, third


def test_histogram_merge_adds_counts() -> None:
    merged = Histogram({"a": 1, "b": 2}).merge({"b": 3, "c": 1})

    assert merged == Histogram({"a": 1, "b": 5, "c": 1})


def test_accumulator_keeps_warmup_records_out_of_histograms(txn_types) -> None:
    accumulator = Accumulator(0)
    accumulator.add(_record(txn_types[0], -0.5, warmup=True))
    accumulator.add(_record(txn_types[0], 0.5))

    results = accumulator.to_results()

    assert accumulator.completed == 2
    assert accumulator.measured_success == 1
    assert results.success[txn_types[0]] == 1
    assert len(results.records) == 2
    assert len(results.measured_records) == 1


def test_abort_messages_recorded_only_when_enabled(txn_types) -> None:
    aborted = _record(txn_types[1], 1.0, kind=OutcomeKind.USER_ABORT)

    quiet = _results([(aborted, "no stock")])
    verbose = _results([(aborted, "no stock")], record_abort_messages=True)

    assert not quiet.abort_messages
    assert verbose.abort_messages == Histogram({"Payment/no stock": 1})


def test_merge_is_commutative(three_results) -> None:
    first, second, _ = three_results

    assert first.merge(second) == second.merge(first)


def test_merge_is_associative(three_results) -> None:
    first, second, third = three_results

    assert (first + second) + third == first + (second + third)


def test_merge_keeps_records_in_total_order(three_results) -> None:
    merged = Results.combine(three_results)

    keys = [record.sort_key() for record in merged.records]
    assert keys == sorted(keys)
    assert merged.requests == 6
    assert merged.success.total() == 3
    assert merged.aborts.total() == merged.retries.total() == merged.errors.total() == 1


def test_throughput_and_goodput_use_measured_seconds(three_results) -> None:
    merged = Results.combine(three_results)
    merged.measured_seconds = 2.0

    assert merged.requests_per_second() == pytest.approx(3.0)
    assert merged.goodput() == pytest.approx(1.5)
    assert Results().goodput() == 0.0


def test_latency_stats_are_nearest_rank_in_milliseconds() -> None:
    stats = latency_stats([0.001 * i for i in range(1, 101)])

    assert stats["min"] == pytest.approx(1.0)
    assert stats["median"] == pytest.approx(50.0)
    assert stats["p99"] == pytest.approx(99.0)
    assert stats["max"] == pytest.approx(100.0)
    assert latency_stats([]) == {}


def test_windowed_rows_cover_the_duration(txn_types) -> None:
    records = [
        _record(txn_types[0], 0.2),
        _record(txn_types[1], 4.0),
        _record(txn_types[2], 4.5),
        _record(txn_types[0], 10.4),  # completed after the scheduled end
        _record(txn_types[0], 1.0, kind=OutcomeKind.RETRY),
        _record(txn_types[0], -0.3, warmup=True),
    ]

    rows = windowed_throughput(records, WINDOW, txn_types, duration=DURATION)

    assert len(rows) == math.ceil(DURATION / WINDOW)
    assert [row.requests for row in rows] == [1, 2, 0, 1]
    assert rows[2].latency_ms == {}
    assert sum(sum(row.per_type.values()) for row in rows) == 4
    assert rows[1].throughput == pytest.approx(2 / WINDOW)


def test_windowed_rows_without_duration_stop_at_last_bucket(txn_types) -> None:
    rows = windowed_throughput([_record(txn_types[0], 7.1)], WINDOW, txn_types)

    assert [row.requests for row in rows] == [0, 0, 1]


def test_windowed_rows_for_a_single_type(txn_types) -> None:
    records = [_record(txn_types[0], 0.2), _record(txn_types[1], 0.4)]

    rows = windowed_throughput(records, WINDOW, txn_types, duration=DURATION, txn_type=txn_types[1])

    assert sum(row.requests for row in rows) == 1
    assert list(rows[0].per_type) == ["Payment"]


def test_raw_export_reaggregates_to_the_same_windows(txn_types) -> None:
    records = [
        _record(txn_types[i % 3], 0.137 * i, terminal=i % 2, latency=round(0.0001 * (i + 1), 6))
        for i in range(60)
    ]
    records.append(_record(txn_types[0], -0.1, warmup=True))
    direct = windowed_throughput(records, WINDOW, txn_types, duration=DURATION)

    stream = io.StringIO()
    written = write_raw_csv(records, stream)
    stream.seek(0)
    parsed = read_raw_csv(stream, txn_types)

    assert written == 60
    assert windowed_throughput(parsed, WINDOW, txn_types, duration=DURATION) == direct


def test_raw_export_header_and_outcomes(txn_types) -> None:
    stream = io.StringIO()
    write_raw_csv([_record(txn_types[1], 1.0, kind=OutcomeKind.USER_ABORT)], stream)

    header, row = stream.getvalue().splitlines()
    assert header.split(",") == RAW_CSV_HEADER
    assert row.split(",")[1] == "Payment"
    assert row.split(",")[-1] == "user_abort"
    assert row.split(",")[7] == "1500"


def test_read_raw_csv_rejects_foreign_files(txn_types) -> None:
    with pytest.raises(ValueError, match="header"):
        read_raw_csv(io.StringIO("a,b,c\n"), txn_types)


def test_windowed_csv_has_one_column_per_type(txn_types) -> None:
    rows = windowed_throughput([_record(txn_types[0], 0.2)], WINDOW, txn_types, duration=DURATION)
    names = [t.name for t in txn_types]
    stream = io.StringIO()

    write_windowed_csv(rows, stream, names)

    lines = stream.getvalue().splitlines()
    assert len(lines) == 1 + len(rows)
    assert lines[0].split(",")[-3:] == names
    assert lines[1].split(",")[-3:] == ["1", "0", "0"]
