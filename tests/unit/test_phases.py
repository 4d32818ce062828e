from __future__ import annotations

import logging

import pytest

from oltpdriver.domain.errors import ConfigurationError
from oltpdriver.domain.models import Arrival, RateMode
from oltpdriver.workload.phases import PhaseModel, parse_arrival, parse_rate, validate_grouping

TERMINALS = 4
TXN_COUNT = 3
WEIGHTS = [50, 30, 20]


@pytest.mark.parametrize(
    ("text", "mode", "value"),
    [
        ("disabled", RateMode.DISABLED, 0),
        ("UNLIMITED", RateMode.UNLIMITED, 0),
        ("250", RateMode.LIMITED, 250),
        (10, RateMode.LIMITED, 10),
    ],
)
def test_parse_rate_accepts_valid_values(text, mode, value) -> None:
    rate = parse_rate(text)
    assert rate.mode is mode
    assert rate.value == value


@pytest.mark.parametrize("text", ["", "0", "-5", "fast", 0, "1.5"])
def test_parse_rate_rejects_invalid_values(text) -> None:
    with pytest.raises(ConfigurationError):
        parse_rate(text)


def test_parse_arrival() -> None:
    assert parse_arrival("Poisson") is Arrival.POISSON
    with pytest.raises(ConfigurationError):
        parse_arrival("bursty")


def test_add_phase_assigns_sequential_indexes() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    first = model.add_phase(rate="unlimited", weights=WEIGHTS, time=10)
    second = model.add_phase(rate=100, weights=WEIGHTS, time=5, warmup=2, arrival="poisson")

    assert (first.index, second.index) == (1, 2)
    assert second.active_terminals == TERMINALS
    assert second.total_seconds == 7
    assert second.mean_interval() == pytest.approx(TERMINALS / 100)


def test_serial_phase_clamps_active_terminals_with_warning(caplog) -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    with caplog.at_level(logging.WARNING):
        phase = model.add_phase(rate="unlimited", weights=WEIGHTS, serial=True, active_terminals=3)

    assert phase.active_terminals == 1
    assert "clamped to 1" in caplog.text


def test_active_terminals_above_total_is_fatal() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    with pytest.raises(ConfigurationError, match="active terminals"):
        model.add_phase(rate="unlimited", weights=WEIGHTS, time=1, active_terminals=TERMINALS + 1)


def test_untimed_phase_requires_serial() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    with pytest.raises(ConfigurationError, match="positive time bound"):
        model.add_phase(rate="unlimited", weights=WEIGHTS)


def test_untimed_phase_is_allowed_with_trace() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT, trace=True)
    phase = model.add_phase(rate="unlimited", weights=WEIGHTS, serial=True)

    assert phase.timed is False
    assert phase.serial is False


def test_negative_warmup_is_rejected() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    with pytest.raises(ConfigurationError, match="warmup"):
        model.add_phase(rate="unlimited", weights=WEIGHTS, time=1, warmup=-1)


def test_validate_all_rejects_weight_count_mismatch() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    model.add_phase(rate="unlimited", weights=[1, 2], time=1)

    with pytest.raises(ConfigurationError, match="contains 2 weights"):
        model.validate_all()


def test_validate_all_mentions_serial_weights() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    model.add_phase(rate="unlimited", weights=[1], serial=True)

    with pytest.raises(ConfigurationError, match="serial phase"):
        model.validate_all()


def test_validate_all_rejects_zero_weight_sum_for_weighted_phase() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    model.add_phase(rate="unlimited", weights=[0, 0, 0], time=1)

    with pytest.raises(ConfigurationError, match="sum to zero"):
        model.validate_all()


def test_validate_all_allows_zero_weights_when_disabled() -> None:
    model = PhaseModel(TERMINALS, TXN_COUNT)
    model.add_phase(rate="disabled", weights=[0, 0, 0], time=1)

    assert len(model.validate_all()) == 1


def test_validate_all_requires_a_phase() -> None:
    with pytest.raises(ConfigurationError, match="No phases"):
        PhaseModel(TERMINALS, TXN_COUNT).validate_all()


def test_validate_grouping_normalizes_name() -> None:
    grouping = validate_grouping("Reads", [1, 0, 1], TXN_COUNT)
    assert grouping.name == "reads"
    assert grouping.weights == (1.0, 0.0, 1.0)


@pytest.mark.parametrize(
    ("name", "weights", "match"),
    [
        ("1reads", [1, 0, 1], "invalid"),
        ("all", [1, 0, 1], "reserved"),
        ("reads", [1, 0], "2 weights"),
    ],
)
def test_validate_grouping_rejects_invalid_groupings(name, weights, match) -> None:
    with pytest.raises(ConfigurationError, match=match):
        validate_grouping(name, weights, TXN_COUNT)
