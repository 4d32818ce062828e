"""
Two-stream trace reader.

A trace is a pair of text files read in lock step: the transaction file has
one transaction name (or numeric id) per line, the parameter file has the
whitespace-separated parameters used for that transaction. Blank lines and
lines starting with `#` are skipped in both streams. The shorter stream
bounds the number of entries.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, TextIO, Tuple

from oltpdriver.domain.errors import ConfigurationError
from oltpdriver.domain.models import TraceEntry, TransactionType, TransactionTypes


def _content_lines(stream: TextIO) -> Iterator[str]:
    for line in stream:
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            yield stripped


class TraceReader:
    """
    Read recorded transactions for playback.

    Parameters
    ----------
    transactions_path : Path | str
        File with one transaction name or id per line.
    params_path : Path | str | None
        Optional file with the parameters of each transaction, one line each.
    """

    def __init__(
        self,
        transactions_path: Path | str,
        params_path: Optional[Path | str] = None,
    ) -> None:
        if not transactions_path:
            raise ConfigurationError(
                "You must specify a trace file to replay a trace "
                "(probably missing in your workload configuration?)"
            )
        self.transactions_path = Path(transactions_path)
        self.params_path = Path(params_path) if params_path else None
        for path in filter(None, (self.transactions_path, self.params_path)):
            if not path.is_file():
                raise ConfigurationError(f"Trace file not found: {path}")

    def __repr__(self) -> str:
        return f"TraceReader({self.transactions_path}, {self.params_path})"

    @staticmethod
    def _resolve(token: str, types: TransactionTypes) -> TransactionType:
        try:
            if token.isdigit():
                if int(token) < 1:
                    raise ConfigurationError(f"Trace transaction ids start at 1, got {token}")
                return types.get(int(token))
            return types.by_name(token)
        except KeyError as exc:
            raise ConfigurationError(f"Trace references an unknown transaction: {exc}") from None

    def entries(self, types: TransactionTypes) -> Iterator[TraceEntry]:
        """Yield trace entries in file order."""
        with self.transactions_path.open("r", encoding="utf-8") as txn_stream:
            txn_lines = _content_lines(txn_stream)
            if self.params_path is None:
                for line in txn_lines:
                    yield TraceEntry(self._resolve(line.split()[0], types))
                return
            with self.params_path.open("r", encoding="utf-8") as param_stream:
                for line, param_line in zip(txn_lines, _content_lines(param_stream)):
                    yield TraceEntry(
                        self._resolve(line.split()[0], types),
                        tuple(param_line.split()),
                    )

    def read_all(self, types: TransactionTypes) -> Tuple[TraceEntry, ...]:
        return tuple(self.entries(types))


__all__ = ["TraceReader"]
