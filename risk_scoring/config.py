"""
Risk Scoring Engine - Configuration.

============================================================
PURPOSE
============================================================
Defines the configuration dataclasses and threshold values
for candidate drop-off risk scoring.

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable configurations
- Every threshold overridable from the environment
- validate() returns every problem, not only the first

============================================================
BREAKPOINT PHILOSOPHY
============================================================
Three lower bounds split the probability range into four
bands. A probability equal to a bound belongs to the band
above it.

    probability < LOW               MINIMAL
    LOW    <= probability < MEDIUM  LOW
    MEDIUM <= probability < HIGH    MEDIUM
    HIGH   <= probability           HIGH

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from candidate_journey.types import JourneyState
from core.exceptions import ConfigurationError


# ============================================================
# STAGE PRIORS
# ============================================================

# Historical drop-off propensity per stage. The take-home
# challenge is where most candidates go quiet.
STAGE_RISK_PRIORS: Dict[JourneyState, float] = {
    JourneyState.INITIAL_CONTACT: 0.5,
    JourneyState.SCREENING: 0.4,
    JourneyState.TECHNICAL_CHALLENGE: 0.9,
    JourneyState.TECHNICAL_REVIEW: 0.5,
    JourneyState.CULTURAL_FIT: 0.3,
    JourneyState.FINAL_REVIEW: 0.2,
    JourneyState.HIRED: 0.0,
    JourneyState.DISQUALIFIED: 0.0,
}


# ============================================================
# BREAKPOINTS
# ============================================================


@dataclass(frozen=True)
class RiskBreakpoints:
    """Lower bounds of the LOW, MEDIUM and HIGH bands."""

    low: float = 0.3
    medium: float = 0.6
    high: float = 0.8

    def validate(self) -> List[str]:
        errors = []
        for name in ("low", "medium", "high"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"breakpoint {name}={value} outside [0, 1]")
        if not self.low < self.medium < self.high:
            errors.append(
                f"breakpoints must be strictly increasing "
                f"(low={self.low}, medium={self.medium}, high={self.high})"
            )
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {"low": self.low, "medium": self.medium, "high": self.high}


# ============================================================
# FEATURE WINDOW
# ============================================================


@dataclass(frozen=True)
class FeatureWindowConfig:
    """
    Rolling window of conversation history used for extraction.

    Messages older than window_days are ignored; of the rest
    only the newest max_messages are kept.
    """

    window_days: int = 30
    max_messages: int = 50

    # Office hours for time_of_day_score (UTC, end exclusive)
    business_hours_start: int = 9
    business_hours_end: int = 18

    def validate(self) -> List[str]:
        errors = []
        if self.window_days <= 0:
            errors.append("window_days must be positive")
        if self.max_messages <= 0:
            errors.append("max_messages must be positive")
        if not 0 <= self.business_hours_start < self.business_hours_end <= 24:
            errors.append("business hours must satisfy 0 <= start < end <= 24")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_days": self.window_days,
            "max_messages": self.max_messages,
            "business_hours_start": self.business_hours_start,
            "business_hours_end": self.business_hours_end,
        }


# ============================================================
# MASTER CONFIGURATION
# ============================================================


@dataclass(frozen=True)
class RiskScoringConfig:
    """
    Master configuration for risk scoring.

    Aggregates breakpoints, the feature window and scorer
    settings.
    """

    breakpoints: RiskBreakpoints = field(default_factory=RiskBreakpoints)
    window: FeatureWindowConfig = field(default_factory=FeatureWindowConfig)

    # Factors contributing at or below this are not reported
    materiality_threshold: float = 0.1
    max_factors: int = 3

    stage_risk_priors: Mapping[JourneyState, float] = field(
        default_factory=lambda: dict(STAGE_RISK_PRIORS)
    )

    engine_version: str = "1.0.0"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RiskScoringConfig":
        """
        Create configuration from environment variables.

        Reads RISK_BREAKPOINT_*, RISK_MATERIALITY_THRESHOLD and
        RISK_FEATURE_WINDOW_* after loading a .env file if present.

        Raises:
            ConfigurationError: On unparseable or invalid values
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        problems: List[str] = []

        def _read(name: str, default: Any, cast: Any) -> Any:
            raw = environ.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                problems.append(f"{name}={raw!r} is not a valid {cast.__name__}")
                return default

        config = cls(
            breakpoints=RiskBreakpoints(
                low=_read("RISK_BREAKPOINT_LOW", 0.3, float),
                medium=_read("RISK_BREAKPOINT_MEDIUM", 0.6, float),
                high=_read("RISK_BREAKPOINT_HIGH", 0.8, float),
            ),
            window=FeatureWindowConfig(
                window_days=_read("RISK_FEATURE_WINDOW_DAYS", 30, int),
                max_messages=_read("RISK_FEATURE_WINDOW_MAX_MESSAGES", 50, int),
            ),
            materiality_threshold=_read("RISK_MATERIALITY_THRESHOLD", 0.1, float),
        )

        problems.extend(config.validate())
        if problems:
            raise ConfigurationError("Invalid risk scoring configuration", problems=problems)
        return config

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = self.breakpoints.validate() + self.window.validate()
        if not 0.0 <= self.materiality_threshold < 1.0:
            errors.append("materiality_threshold must be within [0, 1)")
        if self.max_factors <= 0:
            errors.append("max_factors must be positive")
        for state, prior in self.stage_risk_priors.items():
            if not 0.0 <= prior <= 1.0:
                errors.append(f"stage prior for {state} outside [0, 1]")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "breakpoints": self.breakpoints.to_dict(),
            "window": self.window.to_dict(),
            "materiality_threshold": self.materiality_threshold,
            "max_factors": self.max_factors,
            "stage_risk_priors": {
                getattr(state, "value", state): prior
                for state, prior in self.stage_risk_priors.items()
            },
            "engine_version": self.engine_version,
        }


# ============================================================
# DEFAULT CONFIGURATION
# ============================================================


def get_default_config() -> RiskScoringConfig:
    """Return the default risk scoring configuration."""
    return RiskScoringConfig()
