"""Exception types raised by the simulation core."""

from __future__ import annotations


class SimulationError(ValueError):
    """Base class for configuration and model errors."""


class ValidationError(SimulationError):
    """A configuration field is missing, non-finite or out of range."""


class InvalidPlantError(SimulationError):
    """The transfer function cannot be realized as a state-space model."""


__all__ = ["SimulationError", "ValidationError", "InvalidPlantError"]
