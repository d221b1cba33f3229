"""pidsim library: closed-loop PID simulation, metrics and auto-tuning."""

from .errors import InvalidPlantError, SimulationError, ValidationError
from .pid_models import (
    PLANT_PRESETS,
    AntiWindupMode,
    DerivativeFilterMode,
    PIDController,
    StateSpaceModel,
    TransferFunction,
    preset_transfer_function,
    rk4_step,
    tf_to_state_space,
)
from .preferences import (
    config_from_dict,
    config_to_dict,
    dumps_config,
    load_config,
    loads_config,
    save_config,
)
from .signals import DisturbanceSource, ReferenceKind, reference_value
from .simulation import (
    Metrics,
    SimulationConfig,
    SimulationEngine,
    SimulationResult,
    SimulationState,
    SteadyStateErrorMode,
    compute_metrics,
    result_to_csv,
    simulate,
)
from .tuning import (
    TUNING_RULES,
    AutoTuner,
    CancellationToken,
    TuningGains,
    TuningSession,
    TuningStatus,
    detect_peaks,
    suggest_gains,
    ultimate_period,
    ziegler_nichols,
)

__all__ = [
    "SimulationError",
    "ValidationError",
    "InvalidPlantError",
    "AntiWindupMode",
    "DerivativeFilterMode",
    "TransferFunction",
    "StateSpaceModel",
    "tf_to_state_space",
    "rk4_step",
    "PIDController",
    "PLANT_PRESETS",
    "preset_transfer_function",
    "ReferenceKind",
    "reference_value",
    "DisturbanceSource",
    "SteadyStateErrorMode",
    "SimulationConfig",
    "SimulationState",
    "Metrics",
    "SimulationResult",
    "SimulationEngine",
    "simulate",
    "compute_metrics",
    "result_to_csv",
    "config_to_dict",
    "config_from_dict",
    "dumps_config",
    "loads_config",
    "load_config",
    "save_config",
    "TuningStatus",
    "TuningGains",
    "TUNING_RULES",
    "suggest_gains",
    "ziegler_nichols",
    "detect_peaks",
    "ultimate_period",
    "CancellationToken",
    "TuningSession",
    "AutoTuner",
]
