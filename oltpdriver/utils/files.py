"""
Output-file helpers shared by the reporting layer.
"""

from __future__ import annotations

import contextlib
import sys
from pathlib import Path
from typing import Generator, TextIO

STDOUT = "-"


def next_filename(path: Path | str) -> Path:
    """
    Return `path` if it does not exist, else the first free `name.N.ext`.

    Results of earlier runs are never overwritten.
    """
    candidate = Path(path)
    if not candidate.exists():
        return candidate
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while True:
        numbered = candidate.with_name(f"{stem}.{counter}{suffix}")
        if not numbered.exists():
            return numbered
        counter += 1


@contextlib.contextmanager
def open_output(target: Path | str) -> Generator[TextIO, None, None]:
    """
    Open an output target for writing; "-" means standard output.

    Standard output is flushed but never closed.
    """
    if str(target) == STDOUT:
        yield sys.stdout
        sys.stdout.flush()
        return
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as stream:
        yield stream


__all__ = ["STDOUT", "next_filename", "open_output"]
