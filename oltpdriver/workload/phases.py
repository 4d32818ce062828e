"""
Phase model: builds and validates the ordered schedule of a workload.

Phases are appended one at a time with `PhaseModel.add_phase`, which checks
everything that can be checked locally (rate string, arrival, warmup, serial
and timer interaction, active terminals). `validate_all` then checks the
invariants that need the whole picture, most importantly that every phase
carries exactly one weight per declared transaction type. Any violation
raises `ConfigurationError` before a single worker exists.
"""

from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from oltpdriver.domain.errors import ConfigurationError
from oltpdriver.domain.models import Arrival, Grouping, Phase, Rate, RateMode
from oltpdriver.utils.logging import get_logger

log = get_logger(__name__)

RATE_DISABLED = "disabled"
RATE_UNLIMITED = "unlimited"

_GROUPING_NAME = re.compile(r"^[a-z][a-zA-Z0-9_]*$")


def parse_rate(value: object) -> Rate:
    """
    Parse a phase rate: "disabled", "unlimited" or a positive integer.

    Raises
    ------
    ConfigurationError
        For any other value, including zero and negative numbers.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Rate must be '{RATE_DISABLED}', '{RATE_UNLIMITED}' or a number")
    text = str(value).strip().lower()
    if text == RATE_DISABLED:
        return Rate(RateMode.DISABLED)
    if text == RATE_UNLIMITED:
        return Rate(RateMode.UNLIMITED)
    if not text:
        raise ConfigurationError("Please specify the rate for every phase")
    try:
        rate = int(text)
    except ValueError:
        raise ConfigurationError(
            f"Rate string must be '{RATE_DISABLED}', '{RATE_UNLIMITED}' or a number, got '{value}'"
        ) from None
    if rate < 1:
        raise ConfigurationError(
            "Rate limit must be at least 1. Use unlimited or disabled values instead."
        )
    return Rate(RateMode.LIMITED, rate)


def parse_arrival(value: str) -> Arrival:
    try:
        return Arrival(value.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Arrival must be 'regular' or 'poisson', got '{value}'"
        ) from None


def validate_grouping(name: str, weights: Sequence[float], txn_count: int) -> Grouping:
    """Validate a reporting grouping and return it with a normalized name."""
    normalized = name.lower()
    if not _GROUPING_NAME.match(normalized):
        raise ConfigurationError(
            f'Grouping name "{normalized}" is invalid. Must begin with a letter and '
            "contain only alphanumeric characters."
        )
    if normalized == "all":
        raise ConfigurationError('Grouping name "all" is reserved. Please pick a different name.')
    if len(weights) != txn_count:
        raise ConfigurationError(
            f'Grouping "{normalized}" has {len(weights)} weights, but there are '
            f"{txn_count} transactions in this benchmark."
        )
    return Grouping(name=normalized, weights=tuple(float(w) for w in weights))


class PhaseModel:
    """
    Ordered, validated sequence of phases for one benchmark.

    Parameters
    ----------
    terminals : int
        Total number of terminals of the benchmark.
    txn_count : int
        Number of declared transaction types.
    trace : bool
        Whether a trace drives the run; timers, serial flags and weights are
        then ignored for selection purposes.
    """

    def __init__(self, terminals: int, txn_count: int, trace: bool = False) -> None:
        if terminals < 1:
            raise ConfigurationError(f"Number of terminals must be at least 1, got {terminals}")
        self.terminals = terminals
        self.txn_count = txn_count
        self.trace = trace
        self._phases: List[Phase] = []

    @property
    def phases(self) -> Tuple[Phase, ...]:
        return tuple(self._phases)

    def add_phase(
        self,
        rate: object,
        weights: Sequence[float],
        time: float = 0,
        warmup: float = 0,
        arrival: str = "regular",
        serial: bool = False,
        active_terminals: int | None = None,
    ) -> Phase:
        """
        Validate one phase declaration and append it to the schedule.
        """
        index = len(self._phases) + 1
        parsed_rate = parse_rate(rate)
        parsed_arrival = parse_arrival(arrival)

        # A trace replaces serial ordering, so the flag is suppressed.
        serial = bool(serial) and not self.trace

        active = self.terminals if active_terminals is None else int(active_terminals)
        if serial and active != 1:
            log.warning(
                "Serial ordering is enabled, so # of active terminals is clamped to 1.",
                extra={"phase": index, "configured_active_terminals": active},
            )
            active = 1
        if active < 1:
            raise ConfigurationError(
                f"Configuration error in phase {index}: active terminals must be at least 1"
            )
        if active > self.terminals:
            raise ConfigurationError(
                f"Configuration error in phase {index}: Number of active terminals "
                "is bigger than the total number of terminals"
            )

        if time < 0:
            raise ConfigurationError(f"Phase {index} has a negative duration ({time})")
        if warmup < 0:
            raise ConfigurationError("Must provide nonnegative time bound for warmup.")
        timed = time > 0
        if self.trace:
            log.info("Running a trace; ignoring timer, serial, and weight settings.")
        elif not timed:
            if not serial:
                raise ConfigurationError(
                    "Must provide positive time bound for non-serial executions. "
                    "Either provide a valid time or enable serial mode."
                )
            log.info("Timer disabled for serial run; will execute all queries exactly once.")
        elif serial:
            log.info(
                "Timer enabled for serial run; will run queries serially in a loop "
                "until the timer expires."
            )

        phase = Phase(
            index=index,
            duration=float(time),
            warmup=float(warmup),
            rate=parsed_rate,
            arrival=parsed_arrival,
            weights=tuple(float(w) for w in weights),
            active_terminals=active,
            serial=serial,
        )
        self._phases.append(phase)
        return phase

    def validate_all(self) -> Tuple[Phase, ...]:
        """
        Check the cross-phase invariants and return the validated phases.
        """
        if not self._phases:
            raise ConfigurationError("No phases defined; at least one phase is required")
        for phase in self._phases:
            if phase.weight_count != self.txn_count:
                message = (
                    f"Configuration file is inconsistent, phase {phase.index} contains "
                    f"{phase.weight_count} weights but you defined {self.txn_count} "
                    "transaction types"
                )
                if phase.serial:
                    message += (
                        ". However, note that since this is a serial phase, the weights are "
                        "irrelevant (but still must be included)"
                    )
                raise ConfigurationError(message)
            if any(weight < 0 for weight in phase.weights):
                raise ConfigurationError(f"Phase {phase.index} has negative weights")
            needs_weights = not (phase.serial or phase.disabled or self.trace)
            if needs_weights and sum(phase.weights) <= 0:
                raise ConfigurationError(
                    f"Phase {phase.index} weights sum to zero; at least one transaction "
                    "type must have a positive weight"
                )
        return self.phases


__all__ = [
    "RATE_DISABLED",
    "RATE_UNLIMITED",
    "PhaseModel",
    "parse_arrival",
    "parse_rate",
    "validate_grouping",
]
