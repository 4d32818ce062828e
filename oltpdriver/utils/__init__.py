"""
Utilities package for the workload driver.

Exports shared helpers for logging, profiling and output files. Keep this
package lightweight and free of workload-specific logic.
"""

from oltpdriver.utils.files import STDOUT, next_filename, open_output
from oltpdriver.utils.logging import configure_logging, get_logger
from oltpdriver.utils.profiler import ProfileStats, profile_block

__all__ = [
    "STDOUT",
    "configure_logging",
    "get_logger",
    "next_filename",
    "open_output",
    "ProfileStats",
    "profile_block",
]
