import json
import logging
import random

import pytest

from pidsimlib.errors import ValidationError
from pidsimlib.preferences import (
    CONFIG_KEYS,
    config_from_dict,
    config_to_dict,
    dumps_config,
    load_config,
    loads_config,
    save_config,
)
from pidsimlib.simulation import SimulationConfig, simulate


def _custom_config(**overrides):
    settings = dict(
        numerator=[2.0, 1.0],
        denominator=[1.0, 0.5, 1.0],
        kp=1.3,
        ki=0.7,
        kd=0.1,
        reference_kind="square",
        amplitude=1.5,
        frequency=0.2,
        time_step=0.005,
        duration=4.0,
        anti_windup_mode="clamping",
        u_min=-2.0,
        u_max=2.5,
        derivative_filter_mode="firstOrder",
        filter_time_constant=0.03,
        settling_tolerance=0.05,
        steady_state_error_mode="absolute",
    )
    settings.update(overrides)
    return SimulationConfig(**settings)


def test_flat_dict_uses_persisted_key_names():
    payload = config_to_dict(_custom_config())

    assert set(payload) == set(CONFIG_KEYS.values())
    assert payload["referenceKind"] == "square"
    assert payload["antiWindupMode"] == "clamping"
    assert payload["derivativeFilterMode"] == "firstOrder"
    assert payload["timeStep"] == 0.005
    assert payload["numerator"] == [2.0, 1.0]
    assert payload["rampSaturationTime"] is None
    # plain JSON types only
    assert json.loads(json.dumps(payload)) == payload


def test_round_trip_reproduces_config_and_result():
    config = _custom_config()
    restored = loads_config(dumps_config(config))

    assert restored == config
    assert simulate(restored) == simulate(config)


def test_round_trip_with_seeded_disturbance():
    config = _custom_config(disturbance_amplitude=0.05, disturbance_seed=11, ramp_saturation_time=1.0)
    restored = loads_config(dumps_config(config))

    assert restored == config
    assert simulate(restored) == simulate(config)


def test_save_and_load(tmp_path):
    target = tmp_path / "nested" / "simulation.json"
    config = _custom_config()

    assert save_config(config, target) == target
    assert load_config(target) == config
    assert "\n" in target.read_text()


def test_missing_file_returns_defaults(tmp_path):
    assert load_config(tmp_path / "absent.json") == SimulationConfig()


def test_unreadable_file_returns_defaults(tmp_path, caplog):
    target = tmp_path / "broken.json"
    target.write_text("{not json")

    with caplog.at_level(logging.WARNING, logger="pidsimlib.preferences"):
        assert load_config(target) == SimulationConfig()
    assert "broken.json" in caplog.text


def test_missing_field_is_a_validation_error():
    payload = config_to_dict(_custom_config())
    del payload["kp"]

    with pytest.raises(ValidationError, match="kp"):
        config_from_dict(payload)


def test_optional_fields_may_be_omitted():
    payload = config_to_dict(_custom_config())
    del payload["rampSaturationTime"]
    del payload["disturbanceSeed"]

    assert config_from_dict(payload) == _custom_config()


def test_invalid_values_are_validation_errors(tmp_path):
    payload = config_to_dict(_custom_config())
    payload["timeStep"] = 0.0
    target = tmp_path / "bad.json"
    target.write_text(json.dumps(payload))

    with pytest.raises(ValidationError):
        load_config(target)


def test_loads_rejects_non_json_and_non_mapping():
    with pytest.raises(ValidationError):
        loads_config("kp=1")
    with pytest.raises(ValidationError):
        loads_config("[1, 2, 3]")


def test_fixed_seed_makes_stored_config_rerun_identically():
    config = SimulationConfig(kp=2.0, disturbance_amplitude=0.1).with_fixed_seed(random.Random(5))
    restored = config_from_dict(config_to_dict(config))

    assert config.disturbance_seed is not None
    assert simulate(restored).output == simulate(config).output


def test_fixed_seed_leaves_clean_or_seeded_configs_alone():
    clean = SimulationConfig(kp=2.0)
    seeded = SimulationConfig(kp=2.0, disturbance_amplitude=0.1, disturbance_seed=3)

    assert clean.with_fixed_seed() is clean
    assert seeded.with_fixed_seed() is seeded
