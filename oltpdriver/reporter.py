"""
Human-readable and JSON reporting of run results.

`render_histograms` prints the outcome histograms (overall and per transaction
type, optionally sliced by grouping) as rich tables; `build_summary` produces
the JSON document persisted next to the CSV exports; `print_summary` renders
that document as a one-glance table per benchmark.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import psutil
from rich import box
from rich.console import Console
from rich.table import Table

from oltpdriver.domain.models import (
    Grouping,
    OutcomeKind,
    TransactionType,
    WorkloadConfiguration,
)
from oltpdriver.workload.results import Histogram, Results, latency_stats

_KIND_LABELS = {
    OutcomeKind.SUCCESS: "Completed",
    OutcomeKind.USER_ABORT: "Aborted",
    OutcomeKind.RETRY: "Rejected (retry)",
    OutcomeKind.UNEXPECTED_ERROR: "Unexpected errors",
}


def get_host_resources() -> Dict[str, Optional[str]]:
    """
    Describe the driver host: usable CPUs and memory.

    A container CPU quota (cgroup v2 `cpu.max`) wins over the host CPU count.
    """
    resources: Dict[str, Optional[str]] = {"cpus": None, "memory": None}
    try:
        with open("/sys/fs/cgroup/cpu.max", "r") as f:
            parts = f.read().strip().split()
        if len(parts) == 2 and parts[0] != "max":
            resources["cpus"] = f"{int(parts[0]) / int(parts[1]):.1f}"
    except (FileNotFoundError, PermissionError, ValueError):
        pass
    if resources["cpus"] is None:
        cpus = psutil.cpu_count(logical=True)
        resources["cpus"] = str(cpus) if cpus else None
    mem_gb = psutil.virtual_memory().total / (1024**3)
    resources["memory"] = f"{mem_gb:.1f}GB"
    return resources


def _grouping_counts(histogram: Histogram, types: Sequence[TransactionType], grouping: Grouping) -> int:
    return sum(
        histogram.get(txn_type, 0)
        for txn_type, weight in zip(types, grouping.weights)
        if weight > 0
    )


def histogram_table(
    results: Results,
    types: Sequence[TransactionType],
    groupings: Sequence[Grouping] = (),
) -> Table:
    """One row per transaction type, one column per outcome kind."""
    table = Table(title="Workload Histograms", box=box.ROUNDED)
    table.add_column("Transaction", style="cyan", no_wrap=True)
    for kind in OutcomeKind:
        style = "bold green" if kind is OutcomeKind.SUCCESS else None
        table.add_column(_KIND_LABELS[kind], justify="right", style=style)

    for txn_type in types:
        table.add_row(
            f"{txn_type.name} [dim]({txn_type.benchmark})[/dim]" if txn_type.benchmark else txn_type.name,
            *(f"{results.histograms[kind].get(txn_type, 0):,}" for kind in OutcomeKind),
        )
    for grouping in groupings:
        table.add_row(
            f"[magenta]group:{grouping.name}[/magenta]",
            *(
                f"{_grouping_counts(results.histograms[kind], types, grouping):,}"
                for kind in OutcomeKind
            ),
        )
    table.add_section()
    table.add_row(
        "[bold]all[/bold]",
        *(f"{results.histograms[kind].total():,}" for kind in OutcomeKind),
    )
    return table


def abort_messages_table(results: Results) -> Optional[Table]:
    if not results.abort_messages:
        return None
    table = Table(title="User Abort Messages", box=box.SIMPLE)
    table.add_column("Transaction / message", style="yellow")
    table.add_column("Count", justify="right")
    for message, count in results.abort_messages.most_common():
        table.add_row(str(message), f"{count:,}")
    return table


def render_histograms(
    results: Results,
    types: Sequence[TransactionType],
    groupings: Sequence[Grouping] = (),
    console: Optional[Console] = None,
) -> None:
    """
    Print the outcome histograms.

    Parameters
    ----------
    results : Results
        Final (or partial) results of a run.
    types : sequence of TransactionType
        Types in report order, usually every workload's registry concatenated.
    groupings : sequence of Grouping
        Reporting slices; weights align with `types`.
    console : rich Console | None
        Target console; defaults to a new stdout console.
    """
    console = console or Console()
    console.print(histogram_table(results, types, groupings))
    aborts = abort_messages_table(results)
    if aborts is not None:
        console.print(aborts)


def _per_type_counts(results: Results, types: Sequence[TransactionType]) -> Dict[str, Dict[str, int]]:
    return {
        txn_type.name: {kind.value: results.histograms[kind].get(txn_type, 0) for kind in OutcomeKind}
        for txn_type in types
    }


def _benchmark_summary(
    results: Results, workload: WorkloadConfiguration
) -> Dict[str, Any]:
    types = set(workload.transaction_types)
    requests = sum(
        count
        for hist in results.histograms.values()
        for txn_type, count in hist.items()
        if txn_type in types
    )
    committed = [r for r in results.committed_records if r.txn_type in types]
    seconds = results.measured_seconds or 0.0
    return {
        "benchmark": workload.benchmark,
        "database": workload.database.type.value,
        "isolation": workload.isolation.value,
        "terminals": workload.terminals,
        "scale_factor": workload.scale_factor,
        "phases": len(workload.phases),
        "requests": requests,
        "committed": len(committed),
        "requests_per_second": round(requests / seconds, 2) if seconds else 0.0,
        "goodput_per_second": round(len(committed) / seconds, 2) if seconds else 0.0,
        "latency_ms": latency_stats([r.latency for r in committed]),
        "transactions": _per_type_counts(results, workload.transaction_types),
    }


def build_summary(
    results: Results,
    workloads: Sequence[WorkloadConfiguration],
    outputs: Sequence[str] = (),
) -> Dict[str, Any]:
    """
    JSON-serializable summary of a run.

    Throughput and goodput are computed over the measured (post-warmup)
    seconds; latencies are in milliseconds over committed transactions.
    """
    summary = results.summary()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "started_at": results.started_at,
        "ended_at": results.ended_at,
        "measured_seconds": results.measured_seconds,
        "window_seconds": results.window_seconds,
        "requests": summary["requests"],
        "requests_per_second": summary["requests_per_second"],
        "goodput_per_second": summary["goodput_per_second"],
        "latency_ms": summary["latency_ms"],
        "outcomes": summary["outcomes"],
        "abort_messages": {str(k): v for k, v in results.abort_messages.most_common()},
        "benchmarks": [_benchmark_summary(results, workload) for workload in workloads],
        "profile": results.profile,
        "host": get_host_resources(),
        "outputs": list(outputs),
    }


def print_summary(summary: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render a run summary as a rich table, one row per benchmark.
    """
    console = console or Console()
    benchmarks: List[Dict[str, Any]] = summary.get("benchmarks", [])
    if not benchmarks:
        console.print("[yellow]No results to display.[/yellow]")
        return

    host = summary.get("host") or {}
    title = "Workload Results"
    host_parts = [
        part
        for part in (
            f"CPU: {host['cpus']} cores" if host.get("cpus") else None,
            f"Memory: {host['memory']}" if host.get("memory") else None,
        )
        if part
    ]
    if host_parts:
        title = f"{title}\n[dim]Driver host: {' │ '.join(host_parts)}[/dim]"

    profile = summary.get("profile") or {}
    measured = summary.get("measured_seconds") or 0.0
    caption_parts = [f"Measured {measured:.1f}s"]
    if profile.get("peak_rss_bytes"):
        caption_parts.append(f"peak RSS {profile['peak_rss_bytes'] / (1024 * 1024):.1f} MB")
    if profile.get("cpu_percent") is not None:
        caption_parts.append(f"CPU {profile['cpu_percent']:.1f}%")

    table = Table(title=title, box=box.ROUNDED, caption=", ".join(caption_parts))
    table.add_column("Benchmark", style="cyan", no_wrap=True)
    table.add_column("Terminals", justify="right", style="blue")
    table.add_column("Requests", justify="right", style="magenta")
    table.add_column("Throughput (req/s)", justify="right", style="green")
    table.add_column("Goodput (txn/s)", justify="right", style="bold green")
    table.add_column("p50 (ms)", justify="right", style="yellow")
    table.add_column("p95 (ms)", justify="right", style="yellow")
    table.add_column("p99 (ms)", justify="right", style="red")

    for bench in benchmarks:
        latency = bench.get("latency_ms") or {}
        table.add_row(
            bench["benchmark"],
            str(bench["terminals"]),
            f"{bench['requests']:,}",
            f"{bench['requests_per_second']:,.2f}",
            f"{bench['goodput_per_second']:,.2f}",
            f"{latency.get('median', 0.0):.2f}",
            f"{latency.get('p95', 0.0):.2f}",
            f"{latency.get('p99', 0.0):.2f}",
        )
    if len(benchmarks) > 1:
        latency = summary.get("latency_ms") or {}
        table.add_section()
        table.add_row(
            "[bold]all[/bold]",
            str(sum(b["terminals"] for b in benchmarks)),
            f"{summary['requests']:,}",
            f"{summary['requests_per_second']:,.2f}",
            f"{summary['goodput_per_second']:,.2f}",
            f"{latency.get('median', 0.0):.2f}",
            f"{latency.get('p95', 0.0):.2f}",
            f"{latency.get('p99', 0.0):.2f}",
        )
    console.print(table)


__all__ = [
    "abort_messages_table",
    "build_summary",
    "get_host_resources",
    "histogram_table",
    "print_summary",
    "render_histograms",
]
