from __future__ import annotations

import pytest

from oltpdriver.config import Settings
from oltpdriver.domain.errors import ConfigurationError
from oltpdriver.domain.models import Arrival, DatabaseType, IsolationLevel, RateMode
from oltpdriver.workload.trace import TraceReader
from oltpdriver.workload.workload_file import load_workloads, read_workload_file

SETTINGS = Settings(DB_HOST="db.internal", DB_PORT=6543, DRIVER_QUEUE_LIMIT=500)

TWO_BENCHMARKS = """
[database]
type = "cockroachdb"
port = 26257
pool_size = 6

[benchmarks.synthetic]
terminals = 3
isolation = "TRANSACTION_READ_COMMITTED"
record_abort_messages = true

[benchmarks.synthetic.properties]
latency_ms = 0.5

[[benchmarks.synthetic.transaction_types]]
name = "NewOrder"

[[benchmarks.synthetic.transaction_types]]
name = "Payment"

[[benchmarks.synthetic.groupings]]
name = "Orders"
weights = [1, 0]

[[benchmarks.synthetic.phases]]
rate = "unlimited"
time = 10
warmup = 2
weights = [60, 40]

[[benchmarks.synthetic.phases]]
rate = 100
arrival = "poisson"
active_terminals = 2
time = 5
weights = [10, 90]

[benchmarks.keyvalue]
terminals = 2
queue_limit = 50
database = { pool_size = 2, name = "kv" }

[[benchmarks.keyvalue.transaction_types]]
name = "ReadRecord"
id = 5

[[benchmarks.keyvalue.transaction_types]]
name = "UpdateRecord"
id = 7

[[benchmarks.keyvalue.phases]]
rate = "unlimited"
serial = true
weights = [1, 1]
"""


def test_load_workloads_builds_validated_configurations(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS)

    synthetic, keyvalue = load_workloads(path, ["synthetic", "keyvalue"], settings=SETTINGS)

    assert synthetic.terminals == 3
    assert synthetic.isolation is IsolationLevel.READ_COMMITTED
    assert synthetic.record_abort_messages is True
    assert synthetic.extra == {"latency_ms": 0.5}
    assert synthetic.queue_limit == 500
    assert [g.name for g in synthetic.groupings] == ["orders"]
    first, second = synthetic.phases
    assert (first.rate.mode, first.warmup, first.active_terminals) == (RateMode.UNLIMITED, 2, 3)
    assert (second.rate.value, second.arrival, second.active_terminals) == (100, Arrival.POISSON, 2)

    assert keyvalue.queue_limit == 50
    assert keyvalue.phases[0].serial is True
    assert keyvalue.phases[0].timed is False


def test_database_settings_are_layered(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS)

    synthetic, keyvalue = load_workloads(path, ["synthetic", "keyvalue"], settings=SETTINGS)

    assert synthetic.database.type is DatabaseType.COCKROACHDB
    assert synthetic.database.host == "db.internal"
    assert synthetic.database.port == 26257
    assert synthetic.database.pool_size == 6
    assert keyvalue.database.pool_size == 2
    assert keyvalue.database.name == "kv"


def test_transaction_ids_are_offset_per_benchmark(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS)

    synthetic, keyvalue = load_workloads(path, ["synthetic", "keyvalue"], settings=SETTINGS)

    assert [t.id for t in synthetic.transaction_types] == [1, 2]
    assert [t.id for t in keyvalue.transaction_types] == [7, 9]
    assert {t.benchmark for t in keyvalue.transaction_types} == {"keyvalue"}


def test_missing_benchmark_table(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS)

    with pytest.raises(ConfigurationError, match=r"no \[benchmarks.tpcc\] table"):
        load_workloads(path, ["tpcc"], settings=SETTINGS)


def test_weight_count_mismatch_is_a_configuration_error(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS.replace("weights = [60, 40]", "weights = [60]"))

    with pytest.raises(ConfigurationError, match="contains 1 weights"):
        load_workloads(path, ["synthetic"], settings=SETTINGS)


def test_unknown_keys_are_rejected(write_workload_file) -> None:
    path = write_workload_file(TWO_BENCHMARKS.replace("terminals = 3", "terminals = 3\nthreads = 4"))

    with pytest.raises(ConfigurationError, match="threads"):
        read_workload_file(path)


def test_invalid_toml_is_a_configuration_error(write_workload_file) -> None:
    path = write_workload_file("[benchmarks.synthetic\nterminals = ")

    with pytest.raises(ConfigurationError, match="not valid TOML"):
        read_workload_file(path)


def test_missing_file_is_a_configuration_error(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="Cannot read"):
        read_workload_file(tmp_path / "absent.toml")


def test_trace_is_attached_to_a_single_benchmark(write_workload_file, tmp_path) -> None:
    path = write_workload_file(TWO_BENCHMARKS)
    trace_file = tmp_path / "trace.txt"
    trace_file.write_text("Payment\nNewOrder\n", encoding="utf-8")
    trace = TraceReader(trace_file)

    (synthetic,) = load_workloads(path, ["synthetic"], trace=trace, settings=SETTINGS)

    assert [entry.txn_type.name for entry in synthetic.trace] == ["Payment", "NewOrder"]
    with pytest.raises(ConfigurationError, match="single benchmark"):
        load_workloads(path, ["synthetic", "keyvalue"], trace=trace, settings=SETTINGS)
