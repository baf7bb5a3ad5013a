from __future__ import annotations


class PerformanceError(Exception):
    pass


class InvariantViolation(PerformanceError):
    """A caller or upstream bug: inputs that must never reach the engine."""


class ConfigError(PerformanceError):
    """Configuration file could not be parsed or validated."""
