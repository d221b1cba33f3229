"""Loading and saving simulation configurations as flat JSON."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping

from .errors import ValidationError
from .simulation import SimulationConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/simulation.json")

# SimulationConfig attribute -> persisted key.
CONFIG_KEYS: Dict[str, str] = {
    "numerator": "numerator",
    "denominator": "denominator",
    "kp": "kp",
    "ki": "ki",
    "kd": "kd",
    "reference_kind": "referenceKind",
    "amplitude": "amplitude",
    "frequency": "frequency",
    "ramp_saturation_time": "rampSaturationTime",
    "time_step": "timeStep",
    "duration": "duration",
    "anti_windup_mode": "antiWindupMode",
    "u_min": "uMin",
    "u_max": "uMax",
    "derivative_filter_mode": "derivativeFilterMode",
    "filter_time_constant": "filterTimeConstant",
    "disturbance_amplitude": "disturbanceAmplitude",
    "disturbance_seed": "disturbanceSeed",
    "settling_tolerance": "settlingTolerance",
    "steady_state_error_mode": "steadyStateErrorMode",
}

_OPTIONAL_KEYS = {"rampSaturationTime", "disturbanceSeed"}


def config_to_dict(config: SimulationConfig) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for attribute, key in CONFIG_KEYS.items():
        value = getattr(config, attribute)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        payload[key] = value
    return payload


def config_from_dict(payload: Mapping[str, Any]) -> SimulationConfig:
    """Build a :class:`SimulationConfig` from persisted keys.

    Every key except ``rampSaturationTime`` and ``disturbanceSeed`` is
    required; unknown keys are ignored.
    """

    if not isinstance(payload, Mapping):
        raise ValidationError("configuration must be a key-value mapping")
    missing = [key for key in CONFIG_KEYS.values() if key not in payload and key not in _OPTIONAL_KEYS]
    if missing:
        raise ValidationError(f"missing configuration fields: {', '.join(missing)}")

    kwargs = {attribute: payload.get(key) for attribute, key in CONFIG_KEYS.items()}
    return SimulationConfig(**kwargs)


def dumps_config(config: SimulationConfig) -> str:
    return json.dumps(config_to_dict(config), indent=2)


def loads_config(text: str) -> SimulationConfig:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"configuration is not valid JSON: {exc}") from exc
    return config_from_dict(payload)


def load_config(path: Path | None = None) -> SimulationConfig:
    """Load a configuration, falling back to defaults if the file is absent or unreadable."""

    target = path or DEFAULT_CONFIG_PATH
    if not target.exists():
        return SimulationConfig()

    try:
        payload = json.loads(target.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable configuration %s: %s", target, exc)
        return SimulationConfig()

    return config_from_dict(payload)


def save_config(config: SimulationConfig, path: Path | None = None) -> Path:
    target = path or DEFAULT_CONFIG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dumps_config(config))
    logger.debug("Saved configuration to %s", target)
    return target


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "CONFIG_KEYS",
    "config_to_dict",
    "config_from_dict",
    "dumps_config",
    "loads_config",
    "load_config",
    "save_config",
]
