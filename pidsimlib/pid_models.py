"""Plant and controller models for the closed-loop simulator."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from .errors import InvalidPlantError, ValidationError

logger = logging.getLogger(__name__)

Matrix = Tuple[Tuple[float, ...], ...]
Vector = Tuple[float, ...]


class AntiWindupMode(str, Enum):
    NONE = "none"
    CLAMPING = "clamping"


class DerivativeFilterMode(str, Enum):
    NONE = "none"
    FIRST_ORDER = "firstOrder"


def _as_coefficients(values: Sequence[float], name: str) -> Tuple[float, ...]:
    try:
        coefficients = tuple(float(value) for value in values)
    except (TypeError, ValueError) as exc:
        raise InvalidPlantError(f"{name} coefficients must be numeric: {exc}") from exc
    if not all(math.isfinite(value) for value in coefficients):
        raise InvalidPlantError(f"{name} coefficients must be finite")
    return coefficients


def _format_polynomial(coefficients: Sequence[float]) -> str:
    order = len(coefficients) - 1
    terms: List[Tuple[str, str]] = []
    for index, coefficient in enumerate(coefficients):
        if coefficient == 0:
            continue
        power = order - index
        magnitude = abs(coefficient)
        text = "" if magnitude == 1 and power > 0 else f"{magnitude:g}"
        if power == 1:
            text += "s"
        elif power > 1:
            text += f"s^{power}"
        terms.append(("-" if coefficient < 0 else "+", text))

    if not terms:
        return "0"
    first_sign, first_text = terms[0]
    parts = [("-" if first_sign == "-" else "") + first_text]
    parts.extend(f"{sign} {text}" for sign, text in terms[1:])
    return " ".join(parts)


@dataclass(frozen=True)
class TransferFunction:
    """Rational plant G(s) = num(s) / den(s), coefficients highest order first."""

    numerator: Tuple[float, ...]
    denominator: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "numerator", _as_coefficients(self.numerator, "numerator"))
        object.__setattr__(self, "denominator", _as_coefficients(self.denominator, "denominator"))

    @property
    def order(self) -> int:
        return max(0, len(self.denominator) - 1)

    def is_proper(self) -> bool:
        return len(self.numerator) <= len(self.denominator)

    def describe(self) -> str:
        """Return a one-line ``G(s) = (...) / (...)`` rendering."""

        return f"G(s) = ({_format_polynomial(self.numerator)}) / ({_format_polynomial(self.denominator)})"

    def to_state_space(self) -> "StateSpaceModel":
        return tf_to_state_space(self.numerator, self.denominator)


@dataclass(frozen=True)
class StateSpaceModel:
    """Single-input single-output model in controllable canonical form."""

    a: Matrix
    b: Vector
    c: Vector
    d: float

    @property
    def order(self) -> int:
        return len(self.b)

    def initial_state(self) -> List[float]:
        return [0.0] * self.order

    def output(self, x: Sequence[float], u: float) -> float:
        """Return ``C·x + D·u``."""

        return sum(c_i * x_i for c_i, x_i in zip(self.c, x)) + self.d * u

    def step(self, x: Sequence[float], u: float, dt: float) -> List[float]:
        """Advance ``x`` one step of ``dt`` with ``u`` held constant."""

        return rk4_step(self.a, self.b, x, u, dt)


def tf_to_state_space(numerator: Sequence[float], denominator: Sequence[float]) -> StateSpaceModel:
    """Realize a transfer function in controllable canonical (companion) form.

    Both coefficient sequences are normalized by the leading denominator
    coefficient. State 1 is the lowest-order state, so the bottom row of ``A``
    holds the negated denominator coefficients in reverse and ``C`` is the
    reversed numerator tail with the direct feed-through ``D`` removed.

    Raises
    ------
    InvalidPlantError
        If the denominator is empty, its leading coefficient is zero or any
        coefficient is not finite.
    """

    num = _as_coefficients(numerator, "numerator")
    den = _as_coefficients(denominator, "denominator")
    if not den:
        raise InvalidPlantError("denominator must contain at least one coefficient")
    if not num:
        raise InvalidPlantError("numerator must contain at least one coefficient")
    lead = den[0]
    if lead == 0.0:
        raise InvalidPlantError("leading denominator coefficient must be non-zero")

    den_norm = [value / lead for value in den]
    num_norm = [value / lead for value in num]
    n = len(den_norm) - 1

    if len(num_norm) > n + 1:
        logger.warning(
            "Improper transfer function (numerator order %d > denominator order %d); "
            "the C/D split is not meaningful",
            len(num_norm) - 1,
            n,
        )
    padded = [0.0] * max(0, n + 1 - len(num_norm)) + num_norm

    a = [[0.0] * n for _ in range(n)]
    for row in range(n - 1):
        a[row][row + 1] = 1.0
    for col in range(n):
        a[n - 1][col] = -den_norm[n - col]

    b = [0.0] * n
    if n:
        b[-1] = 1.0

    d = padded[0]
    c = [padded[len(padded) - 1 - i] - d * den_norm[n - i] for i in range(n)]

    return StateSpaceModel(
        a=tuple(tuple(row) for row in a),
        b=tuple(b),
        c=tuple(c),
        d=d,
    )


def rk4_step(a: Sequence[Sequence[float]], b: Sequence[float], x: Sequence[float], u: float, dt: float) -> List[float]:
    """One classic 4th-order Runge-Kutta step of ``x' = A·x + B·u`` (zero-order hold on ``u``)."""

    def derivative(state: Sequence[float]) -> List[float]:
        return [sum(a_ij * s_j for a_ij, s_j in zip(row, state)) + b_i * u for row, b_i in zip(a, b)]

    k1 = derivative(x)
    k2 = derivative([x_i + 0.5 * dt * k for x_i, k in zip(x, k1)])
    k3 = derivative([x_i + 0.5 * dt * k for x_i, k in zip(x, k2)])
    k4 = derivative([x_i + dt * k for x_i, k in zip(x, k3)])

    return [
        x_i + dt / 6.0 * (k1_i + 2.0 * k2_i + 2.0 * k3_i + k4_i)
        for x_i, k1_i, k2_i, k3_i, k4_i in zip(x, k1, k2, k3, k4)
    ]


@dataclass
class PIDController:
    """Parallel-form PID acting on the tracking error.

    Parameters
    ----------
    kp, ki, kd:
        Proportional, integral and derivative gains.
    sample_time:
        Controller execution period (seconds).
    anti_windup:
        ``"clamping"`` saturates the output to ``[u_min, u_max]`` and
        back-calculates the integral while saturated. The back-calculation
        divides by ``ki`` and is skipped when ``ki`` is zero.
    derivative_filter:
        ``"firstOrder"`` low-passes the derivative with time constant
        ``filter_time_constant``.
    """

    kp: float
    ki: float
    kd: float
    sample_time: float
    anti_windup: AntiWindupMode = AntiWindupMode.NONE
    u_min: float = -5.0
    u_max: float = 5.0
    derivative_filter: DerivativeFilterMode = DerivativeFilterMode.NONE
    filter_time_constant: float = 0.05

    _integral: float = field(init=False, default=0.0, repr=False)
    _previous_error: float = field(init=False, default=0.0, repr=False)
    _filtered_derivative: float = field(init=False, default=0.0, repr=False)
    _has_previous: bool = field(init=False, default=False, repr=False)
    _output: float = field(init=False, default=0.0, repr=False)

    def __post_init__(self) -> None:
        if self.sample_time <= 0:
            raise ValidationError("sample_time must be positive")
        if self.u_min >= self.u_max:
            raise ValidationError("u_min must be < u_max")
        if self.filter_time_constant < 0:
            raise ValidationError("filter_time_constant must be non-negative")
        try:
            self.anti_windup = AntiWindupMode(self.anti_windup)
            self.derivative_filter = DerivativeFilterMode(self.derivative_filter)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if self.anti_windup is AntiWindupMode.CLAMPING and self.ki == 0.0:
            logger.debug("ki is zero; integral back-calculation disabled while clamping")

    def reset(self) -> None:
        """Clear integral, derivative filter and previous-error memory."""

        self._integral = 0.0
        self._previous_error = 0.0
        self._filtered_derivative = 0.0
        self._has_previous = False
        self._output = 0.0

    @property
    def output(self) -> float:
        return self._output

    @property
    def integral(self) -> float:
        return self._integral

    @property
    def previous_error(self) -> float:
        return self._previous_error

    @property
    def filtered_derivative(self) -> float:
        return self._filtered_derivative

    def update(self, error: float) -> float:
        """Advance the controller one sample and return the control signal."""

        dt = self.sample_time
        self._integral += error * dt

        derivative = (error - self._previous_error) / dt if self._has_previous else 0.0
        if self.derivative_filter is DerivativeFilterMode.FIRST_ORDER:
            alpha = dt / (self.filter_time_constant + dt)
            self._filtered_derivative = alpha * derivative + (1.0 - alpha) * self._filtered_derivative
            derivative = self._filtered_derivative

        unclamped = self.kp * error + self.ki * self._integral + self.kd * derivative
        output = unclamped
        if self.anti_windup is AntiWindupMode.CLAMPING:
            output = min(max(unclamped, self.u_min), self.u_max)
            if output != unclamped and self.ki != 0.0:
                self._integral -= (unclamped - output) / self.ki

        self._previous_error = error
        self._has_previous = True
        self._output = output
        return output


PLANT_PRESETS: Dict[str, TransferFunction] = {
    "dc-motor": TransferFunction((1.0,), (1.0, 10.0, 20.0)),
    "thermal": TransferFunction((1.0,), (10.0, 1.0)),
    "mass-spring-damper": TransferFunction((1.0,), (1.0, 0.5, 1.0)),
    "tank": TransferFunction((1.0,), (10.0, 1.0)),
}


def preset_transfer_function(name: str) -> TransferFunction:
    """Look up one of :data:`PLANT_PRESETS` by name."""

    try:
        return PLANT_PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(PLANT_PRESETS))
        raise ValidationError(f"unknown plant preset {name!r} (expected one of: {known})") from None


__all__ = [
    "AntiWindupMode",
    "DerivativeFilterMode",
    "TransferFunction",
    "StateSpaceModel",
    "tf_to_state_space",
    "rk4_step",
    "PIDController",
    "PLANT_PRESETS",
    "preset_transfer_function",
]
