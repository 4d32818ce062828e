"""
Orchestrator: turns a command-line request into benchmark lifecycle actions,
a measured run and the result artifacts.

Usage (example from CLI):
    from oltpdriver.orchestrator import RunOptions, run_workload

    report = run_workload(
        RunOptions(config=Path("config/synthetic.toml"), benchmarks=["synthetic"], execute=True)
    )
    print(report.summary)

Artifacts are written to `results/` by default (`-d` to change), named after
the benchmarks or `-o`, optionally prefixed with a timestamp:

- `<name>.csv`: raw per-transaction export (default on)
- `<name>.samples.csv`: 1-second windowed throughput (`--output-samples`)
- `<name>.res`: windowed throughput at `--sample` seconds, plus
  `<name>.<type>.res` per transaction type with `--sample-per-type`
- `<name>.summary.json`: JSON summary
- `<name>.<benchmark>.dialects.json`: resolved statements (`--dialects-export`)

Existing files are never overwritten; a numeric suffix is added instead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from rich.console import Console

from oltpdriver import reporter
from oltpdriver.benchmarks.abstract import BenchmarkModule
from oltpdriver.benchmarks.keyvalue import KeyValueBenchmark
from oltpdriver.benchmarks.synthetic import SyntheticBenchmark
from oltpdriver.config import get_settings
from oltpdriver.domain.errors import ConfigurationError, RunAbortedError
from oltpdriver.domain.models import TransactionType, WorkloadConfiguration
from oltpdriver.utils.files import STDOUT, next_filename, open_output
from oltpdriver.utils.logging import get_logger
from oltpdriver.workload.dispatcher import Dispatcher
from oltpdriver.workload.results import (
    Results,
    windowed_throughput,
    write_raw_csv,
    write_windowed_csv,
)
from oltpdriver.workload.trace import TraceReader
from oltpdriver.workload.workload_file import load_workloads

log = get_logger(__name__)

SAMPLES_WINDOW_SECONDS = 1.0


def _benchmark_factories() -> Dict[str, Callable[[WorkloadConfiguration], BenchmarkModule]]:
    """Registry of available benchmarks."""
    return {
        "keyvalue": KeyValueBenchmark,
        "synthetic": SyntheticBenchmark,
    }


def available_benchmarks() -> List[str]:
    """List registered benchmark names."""
    return sorted(_benchmark_factories().keys())


def describe_benchmarks() -> List[Tuple[str, str]]:
    """(name, description) of every registered benchmark."""
    factories = _benchmark_factories()
    return [
        (name, getattr(factories[name], "description", ""))
        for name in available_benchmarks()
    ]


def _check_registered(names: Sequence[str]) -> None:
    factories = _benchmark_factories()
    unknown = [name for name in names if name not in factories]
    if unknown:
        raise ConfigurationError(
            f"Unknown benchmark(s) '{', '.join(unknown)}'. "
            f"Available: {', '.join(available_benchmarks())}"
        )


def _resolve_benchmark(workload: WorkloadConfiguration) -> BenchmarkModule:
    factories = _benchmark_factories()
    if workload.benchmark not in factories:
        raise ConfigurationError(
            f"Unknown benchmark '{workload.benchmark}'. Available: {', '.join(factories)}"
        )
    return factories[workload.benchmark](workload)


@dataclass
class RunOptions:
    """
    Everything a `run` invocation asks for.
    """

    config: Path
    benchmarks: List[str]
    create: bool = False
    clear: bool = False
    load: bool = False
    runscript: Optional[Path] = None
    execute: bool = False
    histograms: bool = False
    dialects_export: bool = False
    sample: Optional[float] = None
    sample_per_type: bool = False
    interval_monitor_ms: Optional[int] = None
    output: Optional[str] = None
    directory: Optional[Path] = None
    timestamp: bool = False
    output_raw: bool = True
    output_samples: bool = False
    trace: Optional[Path] = None
    trace_params: Optional[Path] = None
    seed: Optional[int] = None
    grace_seconds: Optional[float] = None


@dataclass
class RunReport:
    """Outcome of `run_workload`."""

    workloads: List[WorkloadConfiguration]
    results: Optional[Results] = None
    summary: Optional[dict] = None
    outputs: List[str] = field(default_factory=list)


class _Artifacts:
    """Names and writes result files for one run."""

    def __init__(self, options: RunOptions, names: Sequence[str], results_dir: str) -> None:
        self.stdout = options.output == STDOUT
        base = options.output if options.output and not self.stdout else "_".join(names)
        if options.timestamp:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            base = f"{stamp}_{base}"
        self.base = base
        self.directory = Path(options.directory or results_dir)
        self.written: List[str] = []

    def path(self, suffix: str) -> Path:
        return next_filename(self.directory / f"{self.base}{suffix}")

    def write(self, suffix: str, writer: Callable) -> str:
        target = self.path(suffix)
        with open_output(target) as stream:
            writer(stream)
        self.written.append(str(target))
        log.info("Output written", extra={"path": str(target)})
        return str(target)


def _export_dialects(
    modules: Sequence[BenchmarkModule], artifacts: _Artifacts
) -> None:
    for module in modules:
        dialects = module.dialect_map()
        if not dialects:
            log.warning(
                f"{module.workload.benchmark} has no SQL statements to export",
                extra={"benchmark": module.workload.benchmark},
            )
            continue
        document = {
            "benchmark": module.workload.benchmark,
            "database": module.workload.database.type.value,
            "procedures": dialects,
        }
        if artifacts.stdout:
            with open_output(STDOUT) as stream:
                json.dump(document, stream, indent=2, sort_keys=True)
                stream.write("\n")
            continue
        artifacts.write(
            f".{module.workload.benchmark}.dialects.json",
            lambda stream, doc=document: json.dump(doc, stream, indent=2, sort_keys=True),
        )


def _lifecycle(module: BenchmarkModule, options: RunOptions) -> None:
    name = module.workload.benchmark
    steps = [
        (options.create, "[CREATE]", module.create_database, ()),
        (options.clear, "[CLEAR]", module.clear_database, ()),
        (options.load, "[LOAD]", module.load_database, ()),
        (options.runscript is not None, "[SCRIPT]", module.run_script, (options.runscript,)),
    ]
    for enabled, tag, action, args in steps:
        if not enabled:
            continue
        log.info(f"{tag} {name.upper()}", extra={"benchmark": name})
        try:
            action(*args)
        except NotImplementedError as exc:
            raise ConfigurationError(str(exc)) from exc


def _write_results(
    results: Results,
    workloads: Sequence[WorkloadConfiguration],
    options: RunOptions,
    artifacts: _Artifacts,
) -> None:
    types: List[TransactionType] = [t for w in workloads for t in w.transaction_types]
    names = [t.name for t in types]
    duration = results.window_seconds

    if artifacts.stdout:
        # A single stream: the raw export, or the windowed series without it.
        with open_output(STDOUT) as stream:
            if options.output_raw:
                write_raw_csv(results.records, stream)
            else:
                rows = windowed_throughput(
                    results.records, options.sample or SAMPLES_WINDOW_SECONDS, types, duration
                )
                write_windowed_csv(rows, stream, names)
        return

    if options.output_raw:
        artifacts.write(".csv", lambda stream: write_raw_csv(results.records, stream))
    if options.output_samples:
        rows = windowed_throughput(results.records, SAMPLES_WINDOW_SECONDS, types, duration)
        artifacts.write(".samples.csv", lambda stream: write_windowed_csv(rows, stream, names))
    if options.sample:
        rows = windowed_throughput(results.records, options.sample, types, duration)
        artifacts.write(".res", lambda stream: write_windowed_csv(rows, stream, names))
        if options.sample_per_type:
            for txn_type in types:
                type_rows = windowed_throughput(
                    results.records, options.sample, types, duration, txn_type=txn_type
                )
                artifacts.write(
                    f".{txn_type.name}.res",
                    lambda stream, r=type_rows, n=txn_type.name: write_windowed_csv(r, stream, [n]),
                )


def _report(
    results: Results,
    workloads: Sequence[WorkloadConfiguration],
    options: RunOptions,
    artifacts: _Artifacts,
    console: Console,
) -> dict:
    _write_results(results, workloads, options, artifacts)
    summary = reporter.build_summary(results, workloads, outputs=artifacts.written)
    if not artifacts.stdout:
        artifacts.write(
            ".summary.json",
            lambda stream: json.dump(summary, stream, indent=2, sort_keys=True, default=str),
        )
    if options.histograms:
        types = [t for w in workloads for t in w.transaction_types]
        groupings = [g for w in workloads for g in w.groupings]
        # Grouping weights only line up with a single benchmark's types.
        reporter.render_histograms(
            results, types, groupings if len(workloads) == 1 else (), console=console
        )
    return summary


def run_workload(options: RunOptions, console: Optional[Console] = None) -> RunReport:
    """
    Run the requested lifecycle steps and, with `execute`, the measured workload.

    Parameters
    ----------
    options : RunOptions
        Parsed command-line request.
    console : rich Console | None
        Where human-readable reports go; stderr when results stream to stdout.

    Returns
    -------
    RunReport
        The workloads, the results of the run (when executed), the summary
        document and the paths of every artifact written.

    Raises
    ------
    ConfigurationError
        Before any worker starts, for invalid input.
    RunAbortedError
        On a fatal in-run fault, after the partial results were written.
    """
    settings = get_settings()
    _check_registered(options.benchmarks)
    if options.sample is not None and options.sample <= 0:
        raise ConfigurationError("--sample window must be positive")
    if console is None:
        console = Console(stderr=options.output == STDOUT)

    trace = None
    if options.trace is not None:
        trace = TraceReader(options.trace, options.trace_params)
    workloads = load_workloads(options.config, options.benchmarks, trace=trace, settings=settings)
    modules = [_resolve_benchmark(workload) for workload in workloads]
    artifacts = _Artifacts(options, options.benchmarks, settings.results_dir)
    report = RunReport(workloads=workloads, outputs=artifacts.written)

    try:
        for module in modules:
            _lifecycle(module, options)
        if options.dialects_export:
            _export_dialects(modules, artifacts)
        if not options.execute:
            log.info("Skipping benchmark workload execution")
            return report

        dispatcher = Dispatcher(
            list(zip(workloads, modules)),
            interval_ms=(
                options.interval_monitor_ms
                if options.interval_monitor_ms is not None
                else settings.interval_monitor_ms
            ),
            grace_seconds=options.grace_seconds or settings.grace_seconds,
            seed=options.seed if options.seed is not None else settings.seed,
        )
        try:
            results = dispatcher.run()
        except RunAbortedError as exc:
            if exc.results is not None:
                log.error(
                    "[RUN ABORTED] writing partial results",
                    extra={"error": str(exc), "records": len(exc.results.records)},
                )
                report.results = exc.results
                report.summary = _report(exc.results, workloads, options, artifacts, console)
            raise
        report.results = results
        report.summary = _report(results, workloads, options, artifacts, console)
        if not artifacts.stdout:
            reporter.print_summary(report.summary, console=console)
    finally:
        for module in modules:
            module.close()

    log.info(
        f"[ORCHESTRATOR COMPLETE] {len(workloads)} benchmark(s) executed",
        extra={"benchmarks": options.benchmarks, "outputs": artifacts.written},
    )
    return report


__all__ = [
    "RunOptions",
    "RunReport",
    "available_benchmarks",
    "describe_benchmarks",
    "run_workload",
]
