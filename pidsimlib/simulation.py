"""Closed-loop simulation of a transfer-function plant under PID control."""

from __future__ import annotations

import io
import logging
import math
import random
import threading
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .pid_models import (
    AntiWindupMode,
    DerivativeFilterMode,
    PIDController,
    StateSpaceModel,
    TransferFunction,
    tf_to_state_space,
)
from .signals import DisturbanceSource, ReferenceKind, reference_value

logger = logging.getLogger(__name__)

# Absorbs representation error in duration / time_step, e.g. 0.3 / 0.1.
_STEP_EPSILON = 1e-9

_NUMERIC_FIELDS = (
    "kp",
    "ki",
    "kd",
    "time_step",
    "duration",
    "amplitude",
    "frequency",
    "u_min",
    "u_max",
    "filter_time_constant",
    "disturbance_amplitude",
    "settling_tolerance",
)


class SteadyStateErrorMode(str, Enum):
    SIGNED = "signed"
    ABSOLUTE = "absolute"


def _finite_coefficients(values: Sequence[float], name: str) -> Tuple[float, ...]:
    if values is None:
        raise ValidationError(f"{name} is required")
    try:
        coefficients = tuple(float(value) for value in values)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a sequence of numbers: {exc}") from exc
    if not coefficients:
        raise ValidationError(f"{name} must contain at least one coefficient")
    if not all(math.isfinite(value) for value in coefficients):
        raise ValidationError(f"{name} coefficients must be finite")
    return coefficients


@dataclass
class SimulationConfig:
    """Configuration for one closed-loop run.

    ``settling_tolerance`` is the settling band as a fraction of the final
    reference (0.02 by default; 0.05 is the other common choice).
    ``ramp_saturation_time`` holds a ramp reference constant after that time;
    ``None`` leaves it unclamped.
    """

    numerator: Sequence[float] = (1.0,)
    denominator: Sequence[float] = (1.0, 3.0, 2.0)
    kp: float = 1.0
    ki: float = 0.0
    kd: float = 0.0
    time_step: float = 0.01
    duration: float = 10.0
    reference_kind: ReferenceKind = ReferenceKind.STEP
    amplitude: float = 1.0
    frequency: float = 0.5
    ramp_saturation_time: Optional[float] = None
    anti_windup_mode: AntiWindupMode = AntiWindupMode.NONE
    u_min: float = -5.0
    u_max: float = 5.0
    derivative_filter_mode: DerivativeFilterMode = DerivativeFilterMode.NONE
    filter_time_constant: float = 0.05
    disturbance_amplitude: float = 0.0
    disturbance_seed: Optional[int] = None
    settling_tolerance: float = 0.02
    steady_state_error_mode: SteadyStateErrorMode = SteadyStateErrorMode.SIGNED

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check and normalize every field, raising :class:`ValidationError`."""

        self.numerator = _finite_coefficients(self.numerator, "numerator")
        self.denominator = _finite_coefficients(self.denominator, "denominator")

        for name in _NUMERIC_FIELDS:
            value = getattr(self, name)
            if value is None:
                raise ValidationError(f"{name} is required")
            try:
                numeric = float(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"{name} must be a number, got {value!r}") from exc
            if not math.isfinite(numeric):
                raise ValidationError(f"{name} must be finite")
            setattr(self, name, numeric)

        if self.time_step <= 0:
            raise ValidationError("time_step must be positive")
        if self.duration <= 0:
            raise ValidationError("duration must be positive")
        if self.step_count < 1:
            raise ValidationError("duration must cover at least one time_step")
        if self.u_min >= self.u_max:
            raise ValidationError("u_min must be < u_max")
        if self.filter_time_constant < 0:
            raise ValidationError("filter_time_constant must be non-negative")
        if self.disturbance_amplitude < 0:
            raise ValidationError("disturbance_amplitude must be non-negative")
        if not 0.0 < self.settling_tolerance < 1.0:
            raise ValidationError("settling_tolerance must be a fraction between 0 and 1")

        if self.ramp_saturation_time is not None:
            try:
                saturation = float(self.ramp_saturation_time)
            except (TypeError, ValueError) as exc:
                raise ValidationError("ramp_saturation_time must be a number or None") from exc
            if not math.isfinite(saturation) or saturation < 0:
                raise ValidationError("ramp_saturation_time must be finite and non-negative")
            self.ramp_saturation_time = saturation

        if self.disturbance_seed is not None:
            if isinstance(self.disturbance_seed, bool) or not isinstance(self.disturbance_seed, int):
                raise ValidationError("disturbance_seed must be an integer or None")

        try:
            self.reference_kind = ReferenceKind(self.reference_kind)
            self.anti_windup_mode = AntiWindupMode(self.anti_windup_mode)
            self.derivative_filter_mode = DerivativeFilterMode(self.derivative_filter_mode)
            self.steady_state_error_mode = SteadyStateErrorMode(self.steady_state_error_mode)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @property
    def step_count(self) -> int:
        return int(math.floor(self.duration / self.time_step + _STEP_EPSILON))

    def transfer_function(self) -> TransferFunction:
        return TransferFunction(self.numerator, self.denominator)

    def build_controller(self) -> PIDController:
        return PIDController(
            kp=self.kp,
            ki=self.ki,
            kd=self.kd,
            sample_time=self.time_step,
            anti_windup=self.anti_windup_mode,
            u_min=self.u_min,
            u_max=self.u_max,
            derivative_filter=self.derivative_filter_mode,
            filter_time_constant=self.filter_time_constant,
        )

    def with_fixed_seed(self, random_source: Optional[random.Random] = None) -> "SimulationConfig":
        """Return a copy whose disturbance draw repeats on every run.

        Configurations without disturbance, or with a seed already set, are
        returned unchanged.
        """

        if self.disturbance_amplitude == 0 or self.disturbance_seed is not None:
            return self
        rng = random_source or random.Random()
        return replace(self, disturbance_seed=rng.randrange(2**32))


@dataclass
class SimulationState:
    """Mutable per-run state; never shared between runs."""

    x: List[float]
    controller: PIDController
    previous_control: float = 0.0

    @classmethod
    def initial(cls, plant: StateSpaceModel, controller: PIDController) -> "SimulationState":
        controller.reset()
        return cls(x=plant.initial_state(), controller=controller)


@dataclass(frozen=True)
class Metrics:
    """Step-response metrics; ``None`` marks a metric that does not apply."""

    overshoot: float = 0.0
    rise_time: Optional[float] = None
    peak_time: Optional[float] = None
    settling_time: Optional[float] = None
    steady_state_error: Optional[float] = None

    def as_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


@dataclass(frozen=True)
class SimulationResult:
    """Time series and metrics from one run."""

    time: Tuple[float, ...]
    reference: Tuple[float, ...]
    output: Tuple[float, ...]
    error: Tuple[float, ...]
    control: Tuple[float, ...]
    metrics: Metrics = field(default_factory=Metrics)

    def __len__(self) -> int:
        return len(self.time)

    def series(self, name: str) -> Tuple[float, ...]:
        if name not in ("time", "reference", "output", "error", "control"):
            raise KeyError(name)
        return getattr(self, name)


class SimulationEngine:
    """Runs closed-loop simulations.

    Each :meth:`run` builds its own plant model and :class:`SimulationState`.
    Calls on one engine instance are serialized; independent instances do
    not share anything.
    """

    def __init__(self, random_source: Optional[random.Random] = None) -> None:
        self._random_source = random_source
        self._lock = threading.Lock()

    def run(self, config: SimulationConfig) -> SimulationResult:
        with self._lock:
            return self._run(config)

    def _run(self, config: SimulationConfig) -> SimulationResult:
        config.validate()
        plant = tf_to_state_space(config.numerator, config.denominator)
        state = SimulationState.initial(plant, config.build_controller())
        disturbance = DisturbanceSource(
            amplitude=config.disturbance_amplitude,
            random_source=self._random_source,
            seed=config.disturbance_seed,
        )

        dt = config.time_step
        steps = config.step_count
        logger.debug("Simulating %d steps of %gs on %s", steps, dt, config.transfer_function().describe())

        time: List[float] = []
        references: List[float] = []
        outputs: List[float] = []
        errors: List[float] = []
        controls: List[float] = []
        diverged = False

        for index in range(steps):
            t = index * dt
            r = reference_value(
                t,
                config.reference_kind,
                config.amplitude,
                config.frequency,
                config.ramp_saturation_time,
            )
            y = plant.output(state.x, state.previous_control) + disturbance.sample()
            e = r - y
            u = state.controller.update(e)
            state.x = plant.step(state.x, u, dt)
            state.previous_control = u

            if not diverged and not all(math.isfinite(value) for value in state.x):
                logger.warning("Plant state diverged at t=%g; consider a smaller time step or gains", t)
                diverged = True

            time.append(t)
            references.append(r)
            outputs.append(y)
            errors.append(e)
            controls.append(u)

        metrics = compute_metrics(
            time,
            references,
            outputs,
            settling_tolerance=config.settling_tolerance,
            steady_state_error_mode=config.steady_state_error_mode,
        )
        return SimulationResult(
            time=tuple(time),
            reference=tuple(references),
            output=tuple(outputs),
            error=tuple(errors),
            control=tuple(controls),
            metrics=metrics,
        )


def simulate(config: SimulationConfig, random_source: Optional[random.Random] = None) -> SimulationResult:
    """Run one simulation on a fresh engine."""

    return SimulationEngine(random_source=random_source).run(config)


def compute_metrics(
    time: Sequence[float],
    reference: Sequence[float],
    output: Sequence[float],
    settling_tolerance: float = 0.02,
    steady_state_error_mode: SteadyStateErrorMode | str = SteadyStateErrorMode.SIGNED,
) -> Metrics:
    """Compute step-response metrics against the final reference value.

    Overshoot is a percentage of the final reference and is 0 unless that
    reference is positive. Rise time runs from the first 10% crossing to the
    first 90% crossing. Settling time is the last time the output lies outside
    ``settling_tolerance * |final|`` of the final reference, 0 if it never
    does, and ``None`` if the last sample is still outside. Steady-state error
    is ``final - output[-1]`` (or its magnitude) and 0 for a zero reference.
    An output series with non-finite samples has no rise, peak or settling
    time, and a positive reference reports infinite overshoot.
    """

    mode = SteadyStateErrorMode(steady_state_error_mode)
    if not time:
        return Metrics()

    final_ref = reference[-1]
    if final_ref == 0:
        steady_state_error = 0.0
    else:
        steady_state_error = final_ref - output[-1]
        if mode is SteadyStateErrorMode.ABSOLUTE:
            steady_state_error = abs(steady_state_error)

    if not all(math.isfinite(y) for y in output):
        # diverged run: no peak, rise or settling instant is meaningful
        return Metrics(
            overshoot=math.inf if final_ref > 0 else 0.0,
            steady_state_error=steady_state_error,
        )

    peak_index = max(range(len(output)), key=lambda idx: output[idx])
    peak_output = output[peak_index]

    overshoot = 0.0
    if final_ref > 0 and peak_output > final_ref:
        overshoot = (peak_output - final_ref) / final_ref * 100.0
    peak_time = float(time[peak_index]) if peak_output > final_ref else None

    rise_time = None
    if final_ref != 0:
        t10 = _find_first_crossing(time, output, 0.1 * final_ref)
        t90 = _find_first_crossing(time, output, 0.9 * final_ref)
        if t10 is not None and t90 is not None:
            rise_time = t90 - t10

    band = settling_tolerance * abs(final_ref)
    settling_time: Optional[float] = 0.0
    for index in range(len(output) - 1, -1, -1):
        if not abs(output[index] - final_ref) <= band:
            settling_time = None if index == len(output) - 1 else float(time[index])
            break

    return Metrics(
        overshoot=overshoot,
        rise_time=rise_time,
        peak_time=peak_time,
        settling_time=settling_time,
        steady_state_error=steady_state_error,
    )


def _find_first_crossing(time: Sequence[float], output: Sequence[float], threshold: float) -> Optional[float]:
    comparison = (lambda y: y >= threshold) if threshold >= 0 else (lambda y: y <= threshold)
    for t, y in zip(time, output):
        if comparison(y):
            return float(t)
    return None


def result_to_csv(result: SimulationResult) -> str:
    """Render the time series as CSV text."""

    buffer = io.StringIO()
    buffer.write("time,reference,output,error,control\n")
    for row in zip(result.time, result.reference, result.output, result.error, result.control):
        buffer.write(",".join(f"{value}" for value in row))
        buffer.write("\n")
    return buffer.getvalue()


__all__ = [
    "SteadyStateErrorMode",
    "SimulationConfig",
    "SimulationState",
    "Metrics",
    "SimulationResult",
    "SimulationEngine",
    "simulate",
    "compute_metrics",
    "result_to_csv",
]
