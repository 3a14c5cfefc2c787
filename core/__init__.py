"""
Core Module Package.

Shared infrastructure used by every engine package.

Components:
- clock: Injectable UTC time abstraction
- exceptions: Engine exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock, ensure_utc
from .exceptions import (
    InterventionEngineError,
    ConfigurationError,
    InvalidTransitionError,
    UnknownCandidateError,
    ExtractionError,
    ScorerUnavailableError,
    DispatchFailedError,
    RegistryUnavailableError,
    PersistenceError,
)

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "InterventionEngineError",
    "ConfigurationError",
    "InvalidTransitionError",
    "UnknownCandidateError",
    "ExtractionError",
    "ScorerUnavailableError",
    "DispatchFailedError",
    "RegistryUnavailableError",
    "PersistenceError",
]
