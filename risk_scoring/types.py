"""
Risk Scoring Engine - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for candidate drop-off risk scoring.

This module defines the types exchanged between the feature
extractor, the scorers, the assessment feed and the
escalation engine.

============================================================
DESIGN PRINCIPLES
============================================================
- All outputs are immutable
- Enums for discrete levels
- Feature vectors carry a schema version
- Clear separation between input (features) and output
  (assessment) types

============================================================
RISK LEVELS
============================================================
Probability bands (lower bound inclusive):

    [0.8, 1.0]  HIGH
    [0.6, 0.8)  MEDIUM
    [0.3, 0.6)  LOW
    [0.0, 0.3)  MINIMAL

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from .config import RiskBreakpoints


# ============================================================
# FEATURE SCHEMA
# ============================================================

FEATURE_SCHEMA_VERSION = "1.0"

FEATURE_NAMES: Tuple[str, ...] = (
    "hours_since_last_message",
    "message_count",
    "avg_response_latency_hours",
    "stage_duration_hours",
    "stage_completion_ratio",
    "avg_message_length",
    "weekend_activity_score",
    "time_of_day_score",
    "sentiment_trend",
    "stage_risk_prior",
)


# ============================================================
# ENUMS
# ============================================================


class RiskLevel(str, Enum):
    """
    Candidate drop-off risk classification.

    HIGH and MEDIUM start escalation tasks.
    LOW raises a dashboard flag only.
    """

    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity_order(self) -> int:
        """Numeric ordering for severity comparison."""
        return {"minimal": 0, "low": 1, "medium": 2, "high": 3}[self.value]

    @property
    def requires_escalation(self) -> bool:
        return self in (RiskLevel.MEDIUM, RiskLevel.HIGH)


# ============================================================
# INPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class FeatureVector:
    """
    Ordered, versioned numeric features for one candidate.

    Values are stored in FEATURE_NAMES order. Scorers refuse
    vectors built against a different schema version.
    """

    candidate_id: str
    values: Tuple[float, ...]
    computed_at: datetime
    schema_version: str = FEATURE_SCHEMA_VERSION

    def __post_init__(self) -> None:
        if len(self.values) != len(FEATURE_NAMES):
            raise ValueError(
                f"Feature vector expects {len(FEATURE_NAMES)} values, got {len(self.values)}"
            )

    @classmethod
    def from_mapping(
        cls,
        candidate_id: str,
        features: Mapping[str, float],
        computed_at: datetime,
        schema_version: str = FEATURE_SCHEMA_VERSION,
    ) -> "FeatureVector":
        """Build a vector from a name -> value mapping; missing names raise KeyError."""
        return cls(
            candidate_id=candidate_id,
            values=tuple(float(features[name]) for name in FEATURE_NAMES),
            computed_at=computed_at,
            schema_version=schema_version,
        )

    def get(self, name: str) -> float:
        return self.values[FEATURE_NAMES.index(name)]

    def __getitem__(self, name: str) -> float:
        return self.get(name)

    def items(self) -> Iterator[Tuple[str, float]]:
        return iter(zip(FEATURE_NAMES, self.values))

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.values))


# ============================================================
# OUTPUT DATA CONTRACTS
# ============================================================


@dataclass(frozen=True)
class RiskFactor:
    """One ranked contributor to a risk probability."""

    name: str
    contribution: float
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "contribution": round(self.contribution, 4),
            "value": self.value,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """
    Complete output of one candidate assessment.

    ============================================================
    OUTPUT GUARANTEES
    ============================================================
    - probability: always within [0, 1]
    - risk_level: consistent with the configured breakpoints
    - factors: at most 3, sorted by contribution descending
    - assessed_at: the reference time used for extraction

    ============================================================
    """

    candidate_id: str
    probability: float
    risk_level: RiskLevel
    factors: Tuple[RiskFactor, ...] = ()
    journey_state: Optional[str] = None
    scorer_name: str = ""
    features: Dict[str, float] = field(default_factory=dict)
    assessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    assessment_id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError(f"Probability out of range: {self.probability}")

    @property
    def top_factor_names(self) -> List[str]:
        return [factor.name for factor in self.factors]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "assessment_id": str(self.assessment_id),
            "candidate_id": self.candidate_id,
            "probability": round(self.probability, 4),
            "risk_level": self.risk_level.value,
            "factors": [factor.to_dict() for factor in self.factors],
            "journey_state": self.journey_state,
            "scorer_name": self.scorer_name,
            "features": dict(self.features),
            "assessed_at": self.assessed_at.isoformat(),
        }


# ============================================================
# CATEGORIZATION
# ============================================================


def categorize_risk(probability: float, breakpoints: Optional[RiskBreakpoints] = None) -> RiskLevel:
    """
    Map a probability onto a risk level.

    A probability equal to a breakpoint belongs to the higher band.

    Args:
        probability: Drop-off probability in [0, 1]
        breakpoints: Object with low/medium/high attributes
            (defaults to RiskBreakpoints())
    """
    if breakpoints is None:
        breakpoints = RiskBreakpoints()

    if probability >= breakpoints.high:
        return RiskLevel.HIGH
    if probability >= breakpoints.medium:
        return RiskLevel.MEDIUM
    if probability >= breakpoints.low:
        return RiskLevel.LOW
    return RiskLevel.MINIMAL


def format_assessment_summary(assessment: RiskAssessment) -> str:
    """Human-readable one-block summary of an assessment."""
    lines = [
        f"Candidate {assessment.candidate_id}: {assessment.risk_level.value.upper()} "
        f"risk ({assessment.probability:.0%})",
    ]
    if assessment.journey_state:
        lines.append(f"  Stage: {assessment.journey_state}")
    if assessment.factors:
        lines.append("  Top factors:")
        for factor in assessment.factors:
            lines.append(f"    - {factor.name} (+{factor.contribution:.2f})")
    lines.append(f"  Assessed at: {assessment.assessed_at.isoformat()}")
    return "\n".join(lines)
