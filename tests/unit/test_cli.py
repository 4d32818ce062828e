from __future__ import annotations

import pytest
from typer.testing import CliRunner

from oltpdriver import orchestrator
from oltpdriver.main import EXIT_CONFIGURATION, app

runner = CliRunner()

WORKLOAD = """
[benchmarks.synthetic]
terminals = 1

[benchmarks.synthetic.properties]
latency_ms = 0

[[benchmarks.synthetic.transaction_types]]
name = "Read"

[[benchmarks.synthetic.transaction_types]]
name = "Write"

[[benchmarks.synthetic.phases]]
rate = 20
time = 0.3
weights = {weights}
"""


@pytest.fixture
def no_dispatch(monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("the workload must not start")

    monkeypatch.setattr(orchestrator, "Dispatcher", _fail)


def test_list_shows_registered_benchmarks() -> None:
    result = runner.invoke(app, ["list"])

    assert result.exit_code == 0
    assert "keyvalue" in result.output
    assert "synthetic" in result.output


def test_info_shows_settings() -> None:
    result = runner.invoke(app, ["info"])

    assert result.exit_code == 0
    assert "queue_limit=" in result.output


def test_weight_mismatch_exits_before_any_worker_starts(
    no_dispatch, write_workload_file, tmp_path
) -> None:
    config = write_workload_file(WORKLOAD.format(weights="[1, 1, 1]"))

    result = runner.invoke(
        app, ["run", "-b", "synthetic", "-c", str(config), "--execute", "-d", str(tmp_path / "out")]
    )

    assert result.exit_code == EXIT_CONFIGURATION
    assert "contains 3 weights" in result.output
    assert not (tmp_path / "out").exists()


def test_unknown_benchmark_exits_with_configuration_error(no_dispatch, write_workload_file) -> None:
    config = write_workload_file(WORKLOAD.format(weights="[1, 1]"))

    result = runner.invoke(app, ["run", "-b", "tpcc", "-c", str(config), "--execute"])

    assert result.exit_code == EXIT_CONFIGURATION


def test_short_run_writes_results(write_workload_file, tmp_path) -> None:
    config = write_workload_file(WORKLOAD.format(weights="[3, 1]"))
    out = tmp_path / "out"

    result = runner.invoke(
        app,
        ["run", "-b", "synthetic", "-c", str(config), "--execute", "-d", str(out), "--seed", "3"],
    )

    assert result.exit_code == 0, result.output
    assert (out / "synthetic.csv").exists()
    assert (out / "synthetic.summary.json").exists()
