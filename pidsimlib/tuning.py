"""Closed-loop auto-tuning by proportional-gain sweep (Ziegler-Nichols family)."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .pid_models import AntiWindupMode, DerivativeFilterMode
from .signals import ReferenceKind
from .simulation import SimulationConfig, SimulationEngine

logger = logging.getLogger(__name__)

Peak = Tuple[float, float]


class TuningStatus(str, Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"
    OSCILLATION_FOUND = "oscillation_found"
    TUNED = "tuned"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TuningGains:
    kp: float
    ki: float
    kd: float


def _zn_pid(ku: float, tu: float) -> TuningGains:
    return TuningGains(kp=0.6 * ku, ki=1.2 * ku / tu, kd=0.075 * ku * tu)


def _zn_pi(ku: float, tu: float) -> TuningGains:
    return TuningGains(kp=0.45 * ku, ki=(0.45 * ku) / (tu / 1.2), kd=0.0)


def _zn_p(ku: float, tu: float) -> TuningGains:
    return TuningGains(kp=0.5 * ku, ki=0.0, kd=0.0)


def _cohen_coon(ku: float, tu: float) -> TuningGains:
    return TuningGains(kp=0.9 * ku / 1.35, ki=1.35 * ku / (2.5 * tu), kd=0.27 * ku * tu / 1.35)


def _imc(ku: float, tu: float) -> TuningGains:
    return TuningGains(kp=0.5 * ku, ki=0.5 * ku / tu, kd=0.125 * ku * tu)


TUNING_RULES: Dict[str, Callable[[float, float], TuningGains]] = {
    "ziegler-nichols": _zn_pid,
    "ziegler-nichols-pid": _zn_pid,
    "ziegler-nichols-pi": _zn_pi,
    "ziegler-nichols-p": _zn_p,
    "cohen-coon": _cohen_coon,
    "imc": _imc,
}

_ZN_CONTROLLER_TYPES = {
    "P": "ziegler-nichols-p",
    "PI": "ziegler-nichols-pi",
    "PID": "ziegler-nichols-pid",
}


def suggest_gains(ku: float, tu: float, rule: str = "ziegler-nichols") -> TuningGains:
    """Map ultimate gain and period to PID gains with a named rule."""

    if not math.isfinite(ku) or ku <= 0:
        raise ValidationError("ultimate gain must be finite and positive")
    if not math.isfinite(tu) or tu <= 0:
        raise ValidationError("ultimate period must be finite and positive")
    try:
        formula = TUNING_RULES[rule]
    except KeyError:
        known = ", ".join(TUNING_RULES)
        raise ValidationError(f"unknown tuning rule {rule!r} (expected one of: {known})") from None
    return formula(ku, tu)


def ziegler_nichols(ku: float, tu: float, controller_type: str = "PID") -> TuningGains:
    """Classic closed-loop Ziegler-Nichols gains for a P, PI or PID controller."""

    try:
        rule = _ZN_CONTROLLER_TYPES[controller_type.upper()]
    except KeyError:
        raise ValidationError(f"controller_type must be one of P, PI, PID, got {controller_type!r}") from None
    return suggest_gains(ku, tu, rule)


def _window_start(length: int, start_fraction: float) -> int:
    return max(1, int(length * start_fraction))


def peak_baseline(output: Sequence[float], start_fraction: float = 0.5) -> float:
    """Mean of the analysed window of ``output``."""

    window = output[_window_start(len(output), start_fraction):]
    if not window:
        return 0.0
    return sum(window) / len(window)


def detect_peaks(
    time: Sequence[float],
    output: Sequence[float],
    threshold: Optional[float] = None,
    start_fraction: float = 0.5,
) -> List[Peak]:
    """Return ``(time, value)`` of local maxima above ``threshold``.

    Only the part of the series after ``start_fraction`` of its length is
    scanned. Without an explicit threshold the mean of that window is used as
    the baseline. A flat top counts once, at its first sample.
    """

    start = _window_start(len(output), start_fraction)
    if threshold is None:
        threshold = peak_baseline(output, start_fraction)

    peaks: List[Peak] = []
    for index in range(start, len(output) - 1):
        value = output[index]
        if value > output[index - 1] and value >= output[index + 1] and value > threshold:
            peaks.append((float(time[index]), float(value)))
    return peaks


def ultimate_period(peak_times: Sequence[float]) -> Optional[float]:
    """Mean spacing of consecutive peaks; ``None`` with fewer than two peaks."""

    if len(peak_times) < 2:
        return None
    spacings = [later - earlier for earlier, later in zip(peak_times[:-1], peak_times[1:])]
    return sum(spacings) / len(spacings)


class CancellationToken:
    """Cooperative cancellation flag checked between sweep iterations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class TuningSample:
    kp: float
    time: Tuple[float, ...]
    output: Tuple[float, ...]
    peaks: Tuple[Peak, ...]


@dataclass
class TuningSession:
    """Everything observed during one sweep."""

    samples: List[TuningSample] = field(default_factory=list)
    status: TuningStatus = TuningStatus.IDLE
    ultimate_gain: Optional[float] = None
    ultimate_period: Optional[float] = None
    suggestions: Dict[str, TuningGains] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return self.status is TuningStatus.TUNED


class AutoTuner:
    """Sweep ``kp`` upward with ``ki = kd = 0`` until the step response oscillates.

    Each candidate gain is simulated to completion before the next one. A
    response counts as a sustained oscillation when its later half holds at
    least two peaks above the window mean and the last peak excursion is at
    least ``decay_tolerance`` times the first. Excursions smaller than
    ``min_relative_amplitude * |amplitude|`` are treated as numerical ripple.
    """

    def __init__(
        self,
        base_config: Optional[SimulationConfig] = None,
        kp_start: float = 0.5,
        kp_stop: float = 50.0,
        kp_step: float = 0.5,
        duration: Optional[float] = None,
        amplitude: float = 1.0,
        decay_tolerance: float = 0.9,
        min_relative_amplitude: float = 1e-3,
        rules: Optional[Sequence[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
        engine: Optional[SimulationEngine] = None,
    ) -> None:
        if kp_step <= 0:
            raise ValidationError("kp_step must be positive")
        if kp_start < 0 or kp_stop < kp_start:
            raise ValidationError("kp range must satisfy 0 <= kp_start <= kp_stop")
        if amplitude == 0:
            raise ValidationError("amplitude must be non-zero")
        if not 0.0 < decay_tolerance <= 1.0:
            raise ValidationError("decay_tolerance must be within (0, 1]")
        self.rules = tuple(rules) if rules is not None else tuple(TUNING_RULES)
        unknown = [rule for rule in self.rules if rule not in TUNING_RULES]
        if unknown:
            raise ValidationError(f"unknown tuning rules: {', '.join(unknown)}")

        self.base_config = base_config if base_config is not None else SimulationConfig(duration=30.0)
        self.kp_start = kp_start
        self.kp_stop = kp_stop
        self.kp_step = kp_step
        self.duration = duration
        self.amplitude = amplitude
        self.decay_tolerance = decay_tolerance
        self.min_relative_amplitude = min_relative_amplitude
        self.cancel_token = cancel_token or CancellationToken()
        self.engine = engine or SimulationEngine()
        self._status = TuningStatus.IDLE

    @property
    def status(self) -> TuningStatus:
        return self._status

    def candidate_config(self, kp: float) -> SimulationConfig:
        """Configuration for one sweep point: pure P control on a clean step."""

        return dataclasses.replace(
            self.base_config,
            kp=kp,
            ki=0.0,
            kd=0.0,
            reference_kind=ReferenceKind.STEP,
            amplitude=self.amplitude,
            anti_windup_mode=AntiWindupMode.NONE,
            derivative_filter_mode=DerivativeFilterMode.NONE,
            disturbance_amplitude=0.0,
            duration=self.duration if self.duration is not None else self.base_config.duration,
        )

    def _gains(self) -> Iterator[float]:
        index = 0
        while True:
            kp = self.kp_start + index * self.kp_step
            if kp > self.kp_stop + 1e-12:
                return
            yield kp
            index += 1

    def is_sustained(self, output: Sequence[float], peaks: Sequence[Peak]) -> bool:
        if len(peaks) < 2:
            return False
        baseline = peak_baseline(output)
        excursions = [value - baseline for _, value in peaks]
        if not all(math.isfinite(excursion) for excursion in excursions):
            return False
        if min(excursions) <= self.min_relative_amplitude * abs(self.amplitude):
            return False
        return excursions[-1] >= self.decay_tolerance * excursions[0]

    def run(self) -> TuningSession:
        session = TuningSession()
        self._set_status(session, TuningStatus.SWEEPING)

        for kp in self._gains():
            if self.cancel_token.cancelled:
                logger.info("Tuning sweep cancelled before kp=%g", kp)
                self._set_status(session, TuningStatus.CANCELLED)
                return session

            result = self.engine.run(self.candidate_config(kp))
            peaks = detect_peaks(result.time, result.output)
            session.samples.append(
                TuningSample(kp=kp, time=result.time, output=result.output, peaks=tuple(peaks))
            )
            if not self.is_sustained(result.output, peaks):
                continue

            self._set_status(session, TuningStatus.OSCILLATION_FOUND)
            session.ultimate_gain = kp
            session.ultimate_period = ultimate_period([t for t, _ in peaks])
            session.suggestions = {
                rule: suggest_gains(session.ultimate_gain, session.ultimate_period, rule) for rule in self.rules
            }
            self._set_status(session, TuningStatus.TUNED)
            logger.info("Sustained oscillation at Ku=%g with Tu=%g", session.ultimate_gain, session.ultimate_period)
            return session

        logger.info("No sustained oscillation found up to kp=%g", self.kp_stop)
        self._set_status(session, TuningStatus.INCOMPLETE)
        return session

    def _set_status(self, session: TuningSession, status: TuningStatus) -> None:
        self._status = status
        session.status = status


__all__ = [
    "TuningStatus",
    "TuningGains",
    "TUNING_RULES",
    "suggest_gains",
    "ziegler_nichols",
    "peak_baseline",
    "detect_peaks",
    "ultimate_period",
    "CancellationToken",
    "TuningSample",
    "TuningSession",
    "AutoTuner",
]
