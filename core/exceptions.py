"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the intervention engine.

- Provides a single exception hierarchy
- Separates caller errors from transient failures
- Carries context for structured logging

============================================================
EXCEPTION HIERARCHY
============================================================
InterventionEngineError (base)
├── ConfigurationError
├── InvalidTransitionError      caller error, state unchanged
├── UnknownCandidateError       caller error
├── ExtractionError             per-candidate, skipped this tick
├── ScorerUnavailableError      transient, retried next tick
├── DispatchFailedError         retried with backoff, then step failed
├── RegistryUnavailableError    fatal for one tick only
└── PersistenceError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging and alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class InterventionEngineError(Exception):
    """
    Base exception for all intervention engine errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_retryable(self) -> bool:
        """Check if a later retry may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    @property
    def is_recoverable(self) -> bool:
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(InterventionEngineError):
    """Invalid configuration or transition table."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, problems: Optional[List[str]] = None, **kwargs):
        context = kwargs.pop("context", {})
        self.problems = list(problems or [])
        if self.problems:
            context["problems"] = self.problems
        super().__init__(message, context=context, **kwargs)


# ============================================================
# JOURNEY ERRORS
# ============================================================

class InvalidTransitionError(InterventionEngineError):
    """
    Raised when a trigger is not valid for the candidate's state.

    The candidate's record is left untouched.
    """

    default_severity = Severity.LOW
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        candidate_id: str,
        current_state: Any,
        trigger: Any,
        reason: str = "",
    ):
        self.candidate_id = candidate_id
        self.current_state = current_state
        self.trigger = trigger
        self.reason = reason
        state_label = getattr(current_state, "value", current_state)
        trigger_label = getattr(trigger, "value", trigger)
        super().__init__(
            f"Cannot apply trigger '{trigger_label}' to candidate {candidate_id} "
            f"in state '{state_label}'" + (f": {reason}" if reason else ""),
            context={
                "candidate_id": candidate_id,
                "current_state": str(state_label),
                "trigger": str(trigger_label),
            },
        )


class UnknownCandidateError(InterventionEngineError):
    """Candidate id is not present in the registry."""

    default_severity = Severity.LOW
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, candidate_id: str):
        self.candidate_id = candidate_id
        super().__init__(
            f"Unknown candidate: {candidate_id}",
            context={"candidate_id": candidate_id},
        )


# ============================================================
# RISK PIPELINE ERRORS
# ============================================================

class ExtractionError(InterventionEngineError):
    """Feature extraction failed for one candidate."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, candidate_id: str, reason: str, cause: Optional[Exception] = None):
        self.candidate_id = candidate_id
        super().__init__(
            f"Feature extraction failed for {candidate_id}: {reason}",
            context={"candidate_id": candidate_id},
            cause=cause,
        )


class ScorerUnavailableError(InterventionEngineError):
    """
    Raised when a scorer is invoked before initialization.

    Callers treat this as retryable: the assessment is skipped
    and attempted again on the next tick.
    """

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        scorer_name: str,
        reason: str = "scorer not initialized",
        cause: Optional[Exception] = None,
    ):
        self.scorer_name = scorer_name
        super().__init__(
            f"Scorer '{scorer_name}' unavailable: {reason}",
            context={"scorer": scorer_name},
            cause=cause,
        )


# ============================================================
# ESCALATION ERRORS
# ============================================================

class DispatchFailedError(InterventionEngineError):
    """
    Notification dispatch failed.

    Raised by notification senders for a single attempt, and by
    the retrying dispatcher once the retry bound is exhausted.
    """

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        candidate_id: Optional[str] = None,
        channel: Optional[str] = None,
        attempts: int = 1,
        cause: Optional[Exception] = None,
    ):
        self.candidate_id = candidate_id
        self.channel = channel
        self.attempts = attempts
        context: Dict[str, Any] = {"attempts": attempts}
        if candidate_id:
            context["candidate_id"] = candidate_id
        if channel:
            context["channel"] = channel
        super().__init__(message, context=context, cause=cause)


# ============================================================
# INFRASTRUCTURE ERRORS
# ============================================================

class RegistryUnavailableError(InterventionEngineError):
    """Candidate registry could not be read; fails the current tick only."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT


class PersistenceError(InterventionEngineError):
    """Storing or reading assessment records failed."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT


__all__ = [
    "Severity",
    "ErrorClassification",
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
