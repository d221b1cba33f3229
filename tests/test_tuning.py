import math

import pytest

from pidsimlib.errors import ValidationError
from pidsimlib.signals import ReferenceKind
from pidsimlib.simulation import SimulationConfig, SimulationEngine
from pidsimlib.tuning import (
    TUNING_RULES,
    AutoTuner,
    CancellationToken,
    TuningStatus,
    detect_peaks,
    suggest_gains,
    ultimate_period,
    ziegler_nichols,
)

THIRD_ORDER_LAG = SimulationConfig(numerator=[1.0], denominator=[1.0, 3.0, 3.0, 1.0], duration=60.0)


@pytest.mark.parametrize(
    "rule, expected",
    [
        ("ziegler-nichols", (6.0, 6.0, 1.5)),
        ("ziegler-nichols-pid", (6.0, 6.0, 1.5)),
        ("ziegler-nichols-pi", (4.5, 2.7, 0.0)),
        ("ziegler-nichols-p", (5.0, 0.0, 0.0)),
        ("cohen-coon", (9.0 / 1.35, 2.7, 4.0)),
        ("imc", (5.0, 2.5, 2.5)),
    ],
)
def test_tuning_rules(rule, expected):
    gains = suggest_gains(10.0, 2.0, rule)

    assert (gains.kp, gains.ki, gains.kd) == pytest.approx(expected)


def test_ziegler_nichols_controller_types():
    assert ziegler_nichols(10.0, 2.0, "p") == suggest_gains(10.0, 2.0, "ziegler-nichols-p")
    assert ziegler_nichols(10.0, 2.0, "PI") == suggest_gains(10.0, 2.0, "ziegler-nichols-pi")
    assert ziegler_nichols(10.0, 2.0) == suggest_gains(10.0, 2.0, "ziegler-nichols")
    with pytest.raises(ValidationError):
        ziegler_nichols(10.0, 2.0, "PD")


@pytest.mark.parametrize("ku, tu, rule", [(10.0, 0.0, "imc"), (0.0, 2.0, "imc"), (10.0, 2.0, "lambda")])
def test_suggest_gains_rejects_bad_input(ku, tu, rule):
    with pytest.raises(ValidationError):
        suggest_gains(ku, tu, rule)


def test_period_of_synthetic_oscillation():
    # sin(pi t) has period 2.0; the later half of [0, 16) holds four peaks
    time = [index * 0.01 for index in range(1600)]
    output = [math.sin(math.pi * t) for t in time]

    peaks = detect_peaks(time, output)

    assert [t for t, _ in peaks] == pytest.approx([8.5, 10.5, 12.5, 14.5])
    assert ultimate_period([t for t, _ in peaks]) == pytest.approx(2.0, abs=1e-9)


def test_peaks_below_threshold_are_ignored():
    time = [index * 0.01 for index in range(1600)]
    output = [math.sin(math.pi * t) for t in time]

    assert detect_peaks(time, output, threshold=1.5) == []
    assert len(detect_peaks(time, output, start_fraction=0.0)) == 8


def test_flat_top_counts_once():
    time = [0.0, 1.0, 2.0, 3.0, 4.0]
    output = [0.0, 1.0, 1.0, 0.0, 0.0]

    assert detect_peaks(time, output, threshold=0.5, start_fraction=0.0) == [(1.0, 1.0)]


def test_period_needs_two_peaks():
    assert ultimate_period([]) is None
    assert ultimate_period([3.0]) is None


def test_sweep_finds_ultimate_gain_of_third_order_lag():
    # (s + 1)^3 + K has imaginary-axis roots at K = 8, w = sqrt(3)
    tuner = AutoTuner(THIRD_ORDER_LAG, kp_start=7.0, kp_stop=10.0, kp_step=0.5)
    session = tuner.run()

    assert session.status is TuningStatus.TUNED
    assert session.complete
    assert tuner.status is TuningStatus.TUNED
    assert [sample.kp for sample in session.samples] == [7.0, 7.5, 8.0]
    assert session.ultimate_gain == 8.0
    assert session.ultimate_period == pytest.approx(2.0 * math.pi / math.sqrt(3.0), abs=0.05)
    assert set(session.suggestions) == set(TUNING_RULES)
    assert session.suggestions["ziegler-nichols"].kp == pytest.approx(4.8)


def test_sweep_without_sustained_oscillation_is_incomplete():
    # second-order plants stay stable for any proportional gain
    base = SimulationConfig(numerator=[1.0], denominator=[1.0, 3.0, 2.0], duration=20.0)
    session = AutoTuner(base, kp_start=1.0, kp_stop=3.0, kp_step=1.0).run()

    assert session.status is TuningStatus.INCOMPLETE
    assert len(session.samples) == 3
    assert session.ultimate_gain is None
    assert session.ultimate_period is None
    assert session.suggestions == {}


def test_cancel_before_start():
    token = CancellationToken()
    token.cancel()
    session = AutoTuner(THIRD_ORDER_LAG, kp_start=7.0, kp_stop=10.0, cancel_token=token).run()

    assert session.status is TuningStatus.CANCELLED
    assert session.samples == []


def test_cancel_between_iterations():
    token = CancellationToken()

    class CancellingEngine(SimulationEngine):
        def run(self, config):
            result = super().run(config)
            token.cancel()
            return result

    session = AutoTuner(
        THIRD_ORDER_LAG, kp_start=1.0, kp_stop=10.0, cancel_token=token, engine=CancellingEngine()
    ).run()

    assert session.status is TuningStatus.CANCELLED
    assert len(session.samples) == 1


def test_candidate_config_is_pure_p_on_a_clean_step():
    base = SimulationConfig(
        kp=1.0,
        ki=2.0,
        kd=0.5,
        reference_kind="sine",
        anti_windup_mode="clamping",
        derivative_filter_mode="firstOrder",
        disturbance_amplitude=0.3,
    )
    candidate = AutoTuner(base, amplitude=2.0, duration=12.0).candidate_config(4.0)

    assert (candidate.kp, candidate.ki, candidate.kd) == (4.0, 0.0, 0.0)
    assert candidate.reference_kind is ReferenceKind.STEP
    assert candidate.amplitude == 2.0
    assert candidate.duration == 12.0
    assert candidate.disturbance_amplitude == 0.0
    assert candidate.anti_windup_mode.value == "none"
    assert candidate.derivative_filter_mode.value == "none"
    # the base configuration is left untouched
    assert base.ki == 2.0


def test_tuner_starts_idle():
    assert AutoTuner().status is TuningStatus.IDLE


@pytest.mark.parametrize(
    "kwargs",
    [
        {"kp_step": 0.0},
        {"kp_start": 5.0, "kp_stop": 1.0},
        {"amplitude": 0.0},
        {"decay_tolerance": 1.5},
        {"rules": ["ziegler-nichols", "lambda"]},
    ],
)
def test_tuner_rejects_bad_settings(kwargs):
    with pytest.raises(ValidationError):
        AutoTuner(**kwargs)
