from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer

from oltpdriver.config import get_settings
from oltpdriver.domain.errors import ConfigurationError, RunAbortedError
from oltpdriver.orchestrator import RunOptions, describe_benchmarks, run_workload
from oltpdriver.utils.logging import configure_logging

app = typer.Typer(help="Database workload driver: rate-controlled concurrent transaction runs.")

EXIT_RUN_FAILED = 1
EXIT_CONFIGURATION = 2


@app.command("list")
def list_benchmarks() -> None:
    """
    List registered benchmarks.
    """
    for name, description in describe_benchmarks():
        typer.echo(f"{name:<12} {description}")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"env={settings.app_env} log={settings.log_level}{' (json)' if settings.log_json else ''}"
    )
    typer.echo(
        f"queue_limit={settings.queue_limit} grace={settings.grace_seconds}s "
        f"results_dir={settings.results_dir} seed={settings.seed} "
        f"interval_monitor_ms={settings.interval_monitor_ms}"
    )


@app.command()
def run(
    bench: str = typer.Option(
        ...,
        "--bench",
        "-b",
        help="Benchmark(s) to run, comma separated (see `oltpdriver list`).",
    ),
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Workload file (TOML).",
    ),
    create: bool = typer.Option(False, "--create", help="Create the benchmark schema."),
    clear: bool = typer.Option(False, "--clear", help="Clear all benchmark data."),
    load: bool = typer.Option(False, "--load", help="Load the benchmark data."),
    runscript: Optional[Path] = typer.Option(
        None, "--runscript", help="Run a SQL script against each benchmark's database."
    ),
    execute: bool = typer.Option(False, "--execute", help="Execute the workload."),
    histograms: bool = typer.Option(False, "--histograms", help="Print outcome histograms."),
    dialects_export: bool = typer.Option(
        False, "--dialects-export", help="Export the resolved SQL statements per benchmark."
    ),
    sample: Optional[float] = typer.Option(
        None, "--sample", "-s", help="Window size (seconds) of the windowed throughput export."
    ),
    sample_per_type: bool = typer.Option(
        False, "--sample-per-type", help="Also write one windowed export per transaction type."
    ),
    interval_monitor: Optional[int] = typer.Option(
        None, "--interval-monitor", help="Log throughput every N milliseconds while running."
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output base name; '-' streams results to stdout."
    ),
    directory: Optional[Path] = typer.Option(
        None, "--directory", "-d", help="Output directory (default from settings)."
    ),
    timestamp: bool = typer.Option(
        False, "--timestamp", "-t", help="Prefix output files with a timestamp."
    ),
    output_raw: bool = typer.Option(
        True, "--output-raw/--no-output-raw", help="Write the raw per-transaction export."
    ),
    output_samples: bool = typer.Option(
        False, "--output-samples", help="Write the 1-second windowed export."
    ),
    trace: Optional[Path] = typer.Option(None, "--trace", help="Transaction trace to replay."),
    trace_params: Optional[Path] = typer.Option(
        None, "--trace-params", help="Parameters of the replayed transactions."
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for per-terminal generators."),
) -> None:
    """
    Run lifecycle steps and/or a measured workload for one or more benchmarks.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    options = RunOptions(
        config=config,
        benchmarks=[name.strip() for name in bench.split(",") if name.strip()],
        create=create,
        clear=clear,
        load=load,
        runscript=runscript,
        execute=execute,
        histograms=histograms,
        dialects_export=dialects_export,
        sample=sample,
        sample_per_type=sample_per_type,
        interval_monitor_ms=interval_monitor,
        output=output,
        directory=directory,
        timestamp=timestamp,
        output_raw=output_raw,
        output_samples=output_samples,
        trace=trace,
        trace_params=trace_params,
        seed=seed,
    )
    try:
        run_workload(options)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIGURATION) from exc
    except RunAbortedError as exc:
        typer.echo(f"Run aborted: {exc}", err=True)
        raise typer.Exit(code=EXIT_RUN_FAILED) from exc


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
