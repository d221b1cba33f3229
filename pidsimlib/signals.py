"""Reference waveforms and output disturbance."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import ValidationError


class ReferenceKind(str, Enum):
    STEP = "step"
    RAMP = "ramp"
    SINE = "sine"
    SQUARE = "square"


def _sign(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


def reference_value(
    t: float,
    kind: ReferenceKind | str,
    amplitude: float,
    frequency: float,
    ramp_saturation_time: Optional[float] = None,
) -> float:
    """Return the setpoint at time ``t``.

    A ramp rises as ``amplitude * t``; with ``ramp_saturation_time`` set it
    holds at ``amplitude * ramp_saturation_time`` afterwards. The square wave
    is ``amplitude * sign(sin(2*pi*f*t))`` with ``sign(0) == 0``.
    """

    try:
        kind = ReferenceKind(kind)
    except ValueError as exc:
        raise ValidationError(f"unknown reference kind {kind!r}") from exc

    if kind is ReferenceKind.STEP:
        return amplitude
    if kind is ReferenceKind.RAMP:
        if ramp_saturation_time is not None:
            return amplitude * min(t, ramp_saturation_time)
        return amplitude * t

    phase = math.sin(2.0 * math.pi * frequency * t)
    if kind is ReferenceKind.SINE:
        return amplitude * phase
    return amplitude * _sign(phase)


@dataclass
class DisturbanceSource:
    """Uniform additive noise in ``[-amplitude, amplitude]``.

    Pass ``random_source`` (any :class:`random.Random`) or ``seed`` for
    reproducible runs. A zero amplitude never draws from the source.
    """

    amplitude: float = 0.0
    random_source: Optional[random.Random] = None
    seed: Optional[int] = None

    _rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not math.isfinite(self.amplitude) or self.amplitude < 0:
            raise ValidationError("disturbance amplitude must be finite and non-negative")
        self._rng = self.random_source if self.random_source is not None else random.Random(self.seed)

    @property
    def enabled(self) -> bool:
        return self.amplitude > 0.0

    def sample(self) -> float:
        if not self.enabled:
            return 0.0
        return self._rng.uniform(-self.amplitude, self.amplitude)


__all__ = ["ReferenceKind", "reference_value", "DisturbanceSource"]
