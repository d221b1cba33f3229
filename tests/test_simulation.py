from concurrent.futures import ThreadPoolExecutor

import pytest

from pidsimlib.errors import InvalidPlantError, ValidationError
from pidsimlib.signals import ReferenceKind
from pidsimlib.simulation import SimulationConfig, SimulationEngine, result_to_csv, simulate


def _p_control_config(**overrides):
    settings = dict(numerator=[1.0], denominator=[1.0, 3.0, 2.0], kp=2.0, time_step=0.01, duration=5.0)
    settings.update(overrides)
    return SimulationConfig(**settings)


def test_series_have_equal_length_and_fixed_step():
    result = simulate(_p_control_config())

    assert len(result) == 500
    for name in ("time", "reference", "output", "error", "control"):
        assert len(result.series(name)) == 500
    assert result.time[0] == 0.0
    assert result.time[1] == pytest.approx(0.01)
    assert result.time[-1] == pytest.approx(4.99)


def test_step_count_absorbs_float_representation_error():
    config = SimulationConfig(time_step=0.1, duration=0.3)

    assert config.step_count == 3
    assert len(simulate(config)) == 3


def test_proportional_control_converges_to_closed_loop_gain():
    # closed loop 2 / (s^2 + 3s + 4) has DC gain Kp / (Kp + 2)
    expected = 2.0 / (2.0 + 2.0)
    result = simulate(_p_control_config())

    assert result.output[-1] == pytest.approx(expected, abs=1e-3)
    assert result.metrics.steady_state_error == pytest.approx(1.0 - result.output[-1], abs=1e-12)
    assert result.metrics.steady_state_error == pytest.approx(1.0 - expected, abs=1e-3)
    assert result.metrics.overshoot == 0.0
    assert result.metrics.peak_time is None


def test_error_and_output_are_consistent():
    result = simulate(_p_control_config(reference_kind="sine", frequency=0.5))

    for r, y, e in zip(result.reference, result.output, result.error):
        assert e == pytest.approx(r - y)


def test_first_output_uses_zero_previous_control():
    # s / (s + 1) has direct feed-through D = 1
    result = simulate(SimulationConfig(numerator=[1.0, 0.0], denominator=[1.0, 1.0], kp=1.0, duration=0.1))

    assert result.output[0] == 0.0
    assert result.control[0] == 1.0
    assert result.output[1] != 0.0


def test_integral_action_removes_steady_state_error():
    result = simulate(_p_control_config(ki=2.0, duration=20.0))

    assert result.output[-1] == pytest.approx(1.0, abs=1e-3)


def test_clamping_keeps_control_within_bounds():
    result = simulate(
        _p_control_config(kp=50.0, ki=20.0, anti_windup_mode="clamping", u_min=-3.0, u_max=3.0, amplitude=2.0)
    )

    assert max(result.control) == 3.0
    assert all(-3.0 <= u <= 3.0 for u in result.control)


def test_identical_configs_give_identical_results():
    config = _p_control_config(
        ki=1.0,
        kd=0.2,
        reference_kind=ReferenceKind.SQUARE,
        anti_windup_mode="clamping",
        derivative_filter_mode="firstOrder",
    )

    assert simulate(config) == simulate(config)


def test_seeded_disturbance_is_reproducible():
    config = _p_control_config(disturbance_amplitude=0.1, disturbance_seed=7)

    first = simulate(config)
    second = simulate(config)
    other = simulate(_p_control_config(disturbance_amplitude=0.1, disturbance_seed=8))

    assert first.output == second.output
    assert first.output != other.output


def test_disturbance_is_added_to_output():
    clean = simulate(_p_control_config())
    noisy = simulate(_p_control_config(disturbance_amplitude=0.05, disturbance_seed=3))

    # the plant starts at rest, so the first sample is pure disturbance
    assert clean.output[0] == 0.0
    assert 0.0 < abs(noisy.output[0]) <= 0.05


def test_engine_runs_do_not_share_state():
    engine = SimulationEngine()
    config = _p_control_config(ki=1.0)

    assert engine.run(config) == engine.run(config)


def test_concurrent_runs_are_independent():
    configs = [_p_control_config(kp=kp) for kp in (1.0, 2.0, 3.0, 4.0)]
    sequential = [simulate(config) for config in configs]

    with ThreadPoolExecutor(max_workers=4) as pool:
        concurrent = list(pool.map(simulate, configs))

    assert concurrent == sequential


@pytest.mark.parametrize(
    "overrides",
    [
        {"time_step": 0.0},
        {"duration": -1.0},
        {"duration": 0.001},
        {"kp": float("nan")},
        {"ki": None},
        {"kd": "fast"},
        {"amplitude": float("inf")},
        {"numerator": []},
        {"denominator": [1.0, float("nan")]},
        {"reference_kind": "triangle"},
        {"anti_windup_mode": "conditional"},
        {"settling_tolerance": 0.0},
        {"u_min": 5.0, "u_max": -5.0},
        {"disturbance_amplitude": -0.1},
        {"disturbance_seed": 1.5},
        {"ramp_saturation_time": -1.0},
    ],
)
def test_invalid_configuration_is_rejected(overrides):
    with pytest.raises(ValidationError):
        _p_control_config(**overrides)


def test_configuration_is_revalidated_before_running():
    config = _p_control_config()
    config.time_step = -0.1

    with pytest.raises(ValidationError):
        simulate(config)


def test_degenerate_plant_aborts_run():
    with pytest.raises(InvalidPlantError):
        simulate(_p_control_config(denominator=[0.0, 1.0, 2.0]))


def test_string_fields_are_normalized_to_enums():
    config = _p_control_config(reference_kind="ramp", anti_windup_mode="clamping")

    assert config.reference_kind is ReferenceKind.RAMP
    assert config.numerator == (1.0,)


def test_ramp_saturation_is_applied():
    result = simulate(_p_control_config(reference_kind="ramp", ramp_saturation_time=1.0, duration=3.0))

    assert max(result.reference) == pytest.approx(1.0)
    assert result.reference[-1] == 1.0


def test_result_to_csv():
    result = simulate(_p_control_config(duration=0.05))
    lines = result_to_csv(result).splitlines()

    assert lines[0] == "time,reference,output,error,control"
    assert len(lines) == len(result) + 1
    assert lines[1].split(",")[0] == "0.0"


def test_result_series_rejects_unknown_name():
    result = simulate(_p_control_config(duration=0.05))

    with pytest.raises(KeyError):
        result.series("integral")
