"""
Resource profiling for workload runs.

`profile_block` wraps the execution phase of a run and records the wall-clock
duration, the peak resident memory of the driver process (sampled by a
background thread, so short spikes are caught) and the process CPU percent.
The numbers end up in the run summary next to the throughput figures; a
driver that saturates its own CPU measures itself rather than the target.

Usage:
    from oltpdriver.utils.profiler import profile_block

    with profile_block("workload") as stats:
        dispatcher.run()

    print(stats.duration_seconds, stats.peak_rss_bytes, stats.cpu_percent)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)
    threads: Optional[int] = field(default=None)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "duration_seconds": round(self.duration_seconds, 3),
            "peak_rss_bytes": self.peak_rss_bytes,
            "cpu_percent": round(self.cpu_percent, 1) if self.cpu_percent is not None else None,
            "threads": self.threads,
        }


@contextlib.contextmanager
def profile_block(
    label: str, sample_interval_ms: int = 100
) -> Generator[ProfileStats, None, None]:
    """
    Context manager to profile a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    sample_interval_ms : int
        Interval in milliseconds for RSS sampling.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    peak_rss = process.memory_info().rss
    peak_threads = process.num_threads()
    stop_sampling = threading.Event()

    def _sample() -> None:
        nonlocal peak_rss, peak_threads
        while not stop_sampling.is_set():
            try:
                peak_rss = max(peak_rss, process.memory_info().rss)
                peak_threads = max(peak_threads, process.num_threads())
            except psutil.Error:
                return
            stop_sampling.wait(timeout=sample_interval_ms / 1000.0)

    # CPU percent needs a priming call
    process.cpu_percent(interval=None)

    sampler = threading.Thread(target=_sample, name=f"profiler-{label}", daemon=True)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts

        stop_sampling.set()
        sampler.join(timeout=1.0)

        stats.peak_rss_bytes = peak_rss
        stats.threads = peak_threads
        stats.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
