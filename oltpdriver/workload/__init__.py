"""
Execution engine: phase model, arrival control, transaction selection,
workers, the dispatcher and result aggregation.
"""

from oltpdriver.workload.arrival import ArrivalController
from oltpdriver.workload.dispatcher import Dispatcher
from oltpdriver.workload.phases import PhaseModel, parse_rate, validate_grouping
from oltpdriver.workload.results import (
    Accumulator,
    Histogram,
    Results,
    read_raw_csv,
    windowed_throughput,
    write_raw_csv,
    write_windowed_csv,
)
from oltpdriver.workload.selector import (
    SerialSelector,
    TraceSelector,
    WeightedSelector,
    make_selector,
)
from oltpdriver.workload.state import PhaseCursor, PhaseState
from oltpdriver.workload.trace import TraceReader
from oltpdriver.workload.worker import Worker, WorkerState
from oltpdriver.workload.workload_file import load_workloads, read_workload_file

__all__ = [
    "Accumulator",
    "ArrivalController",
    "Dispatcher",
    "Histogram",
    "PhaseCursor",
    "PhaseModel",
    "PhaseState",
    "Results",
    "SerialSelector",
    "TraceReader",
    "TraceSelector",
    "WeightedSelector",
    "Worker",
    "WorkerState",
    "load_workloads",
    "make_selector",
    "parse_rate",
    "read_raw_csv",
    "read_workload_file",
    "validate_grouping",
    "windowed_throughput",
    "write_raw_csv",
    "write_windowed_csv",
]
