"""
Risk Scoring Engine - Scorers.

============================================================
PURPOSE
============================================================
Turn a FeatureVector into a drop-off probability and the
ranked factors that explain it.

Each scorer:
1. Refuses vectors of an unsupported schema version
2. Refuses to score before initialize()
3. Returns (probability, ranked_factors)

============================================================
RULE-BASED SCORING
============================================================
Every feature is normalized into a risk term in [0, 1]:

    hours_since_last_message     min(h / 24, 1)
    sentiment_trend              clamp(-trend, 0, 1)
    stage_risk_prior             prior
    avg_response_latency_hours   min(h / 24, 1)
    stage_duration_hours         min(h / 168, 1)
    message_count                1 - min(n / 10, 1)
    avg_message_length           1 - min(chars / 200, 1)   (0 without messages)
    stage_completion_ratio       1 - ratio
    weekend_activity_score       share
    time_of_day_score            share

probability = sum(weight * term), weights sum to 1.0
contribution of a factor = weight * term

============================================================
FACTOR RANKING
============================================================
Only contributions strictly above the materiality threshold
are reported, highest first, at most max_factors.

============================================================
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from core.exceptions import ExtractionError, ScorerUnavailableError

from .config import RiskScoringConfig
from .types import FEATURE_NAMES, FEATURE_SCHEMA_VERSION, FeatureVector, RiskFactor


logger = logging.getLogger(__name__)


# ============================================================
# RULE WEIGHTS
# ============================================================

WEIGHT_HOURS_SINCE_LAST_MESSAGE = 0.30
WEIGHT_SENTIMENT_TREND = 0.20
WEIGHT_STAGE_RISK_PRIOR = 0.15
WEIGHT_RESPONSE_LATENCY = 0.10
WEIGHT_STAGE_DURATION = 0.08
WEIGHT_MESSAGE_COUNT = 0.05
WEIGHT_MESSAGE_LENGTH = 0.05
WEIGHT_STAGE_COMPLETION = 0.03
WEIGHT_WEEKEND_ACTIVITY = 0.02
WEIGHT_TIME_OF_DAY = 0.02

RULE_WEIGHTS: Dict[str, float] = {
    "hours_since_last_message": WEIGHT_HOURS_SINCE_LAST_MESSAGE,
    "message_count": WEIGHT_MESSAGE_COUNT,
    "avg_response_latency_hours": WEIGHT_RESPONSE_LATENCY,
    "stage_duration_hours": WEIGHT_STAGE_DURATION,
    "stage_completion_ratio": WEIGHT_STAGE_COMPLETION,
    "avg_message_length": WEIGHT_MESSAGE_LENGTH,
    "weekend_activity_score": WEIGHT_WEEKEND_ACTIVITY,
    "time_of_day_score": WEIGHT_TIME_OF_DAY,
    "sentiment_trend": WEIGHT_SENTIMENT_TREND,
    "stage_risk_prior": WEIGHT_STAGE_RISK_PRIOR,
}

# Normalization horizons
INACTIVITY_HORIZON_HOURS = 24.0
LATENCY_HORIZON_HOURS = 24.0
STAGE_DURATION_HORIZON_HOURS = 168.0
HEALTHY_MESSAGE_COUNT = 10.0
HEALTHY_MESSAGE_LENGTH = 200.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def risk_terms(vector: FeatureVector) -> Dict[str, float]:
    """Normalize each feature into a risk term in [0, 1]."""
    has_messages = vector["message_count"] > 0
    return {
        "hours_since_last_message": _clamp(vector["hours_since_last_message"] / INACTIVITY_HORIZON_HOURS),
        "message_count": 1.0 - _clamp(vector["message_count"] / HEALTHY_MESSAGE_COUNT),
        "avg_response_latency_hours": _clamp(vector["avg_response_latency_hours"] / LATENCY_HORIZON_HOURS),
        "stage_duration_hours": _clamp(vector["stage_duration_hours"] / STAGE_DURATION_HORIZON_HOURS),
        "stage_completion_ratio": 1.0 - _clamp(vector["stage_completion_ratio"]),
        "avg_message_length": (
            1.0 - _clamp(vector["avg_message_length"] / HEALTHY_MESSAGE_LENGTH) if has_messages else 0.0
        ),
        "weekend_activity_score": _clamp(vector["weekend_activity_score"]),
        "time_of_day_score": _clamp(vector["time_of_day_score"]),
        "sentiment_trend": _clamp(-vector["sentiment_trend"]),
        "stage_risk_prior": _clamp(vector["stage_risk_prior"]),
    }


# ============================================================
# BASE SCORER
# ============================================================


class RiskScorer(ABC):
    """
    Capability interface for drop-off scorers.

    Subclasses implement _score(); the base class handles
    readiness, schema checks and factor ranking.
    """

    name: str = "base"
    supported_schema_versions: Tuple[str, ...] = (FEATURE_SCHEMA_VERSION,)

    def __init__(self, config: Optional[RiskScoringConfig] = None) -> None:
        self.config = config or RiskScoringConfig()
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    def initialize(self) -> None:
        """Prepare the scorer; must be called before score()."""
        self._ready = True
        logger.info(f"Risk scorer '{self.name}' initialized")

    def score(self, vector: FeatureVector) -> Tuple[float, List[RiskFactor]]:
        """
        Score a feature vector.

        Returns:
            (probability in [0, 1], ranked factors)

        Raises:
            ScorerUnavailableError: If initialize() has not run
            ExtractionError: If the vector's schema is unsupported
        """
        if not self._ready:
            raise ScorerUnavailableError(self.name)

        if vector.schema_version not in self.supported_schema_versions:
            raise ExtractionError(
                vector.candidate_id,
                f"feature schema {vector.schema_version} not supported by scorer '{self.name}'",
            )

        probability, contributions = self._score(vector)
        probability = _clamp(probability)
        return probability, self.rank_factors(vector, contributions)

    @abstractmethod
    def _score(self, vector: FeatureVector) -> Tuple[float, Dict[str, float]]:
        """Return raw probability and per-feature contributions."""
        pass

    def rank_factors(self, vector: FeatureVector, contributions: Dict[str, float]) -> List[RiskFactor]:
        """Material factors, highest contribution first."""
        material = [
            RiskFactor(name=name, contribution=contribution, value=vector[name])
            for name, contribution in contributions.items()
            if contribution > self.config.materiality_threshold
        ]
        material.sort(key=lambda factor: (-factor.contribution, FEATURE_NAMES.index(factor.name)))
        return material[: self.config.max_factors]


# ============================================================
# RULE-BASED SCORER
# ============================================================


class RuleBasedRiskScorer(RiskScorer):
    """Reference scorer: weighted sum of normalized risk terms."""

    name = "rule_based"

    def __init__(
        self,
        config: Optional[RiskScoringConfig] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> None:
        super().__init__(config)
        self.weights = dict(weights or RULE_WEIGHTS)
        if set(self.weights) != set(FEATURE_NAMES):
            raise ValueError("rule weights must cover every feature exactly once")
        if abs(sum(self.weights.values()) - 1.0) > 1e-9:
            raise ValueError(f"rule weights must sum to 1.0, got {sum(self.weights.values())}")

    def _score(self, vector: FeatureVector) -> Tuple[float, Dict[str, float]]:
        terms = risk_terms(vector)
        contributions = {name: self.weights[name] * terms[name] for name in FEATURE_NAMES}
        return sum(contributions.values()), contributions


# ============================================================
# MODEL SCORER
# ============================================================


class ModelRiskScorer(RiskScorer):
    """
    Adapter over a trained classifier.

    The model follows the scikit-learn convention:
    - predict_proba(rows) returns one row of class
      probabilities per input; the last column is drop-off
    - feature_importances_ (optional) weights the factors
    """

    name = "model"

    def __init__(
        self,
        model: Any = None,
        model_loader: Optional[Callable[[], Any]] = None,
        config: Optional[RiskScoringConfig] = None,
    ) -> None:
        super().__init__(config)
        self._model = model
        self._model_loader = model_loader

    def initialize(self) -> None:
        """
        Load and check the model.

        Raises:
            ScorerUnavailableError: If no usable model is available
        """
        if self._model is None and self._model_loader is not None:
            try:
                self._model = self._model_loader()
            except ScorerUnavailableError:
                raise
            except Exception as e:
                raise ScorerUnavailableError(
                    self.name, reason=f"model loader failed: {e}", cause=e
                ) from e
        if self._model is None or not hasattr(self._model, "predict_proba"):
            raise ScorerUnavailableError(self.name, reason="no model with predict_proba loaded")
        super().initialize()

    def _score(self, vector: FeatureVector) -> Tuple[float, Dict[str, float]]:
        rows = [list(vector.values)]
        probabilities = self._model.predict_proba(rows)
        probability = float(probabilities[0][-1])
        if not math.isfinite(probability):
            raise ExtractionError(
                vector.candidate_id,
                f"model returned non-finite probability {probability}",
            )

        terms = risk_terms(vector)
        weights = self._importance_weights()
        contributions = {name: weights[name] * terms[name] for name in FEATURE_NAMES}
        return probability, contributions

    def _importance_weights(self) -> Dict[str, float]:
        importances: Optional[Sequence[float]] = getattr(self._model, "feature_importances_", None)
        if importances is None or len(importances) != len(FEATURE_NAMES):
            return dict(RULE_WEIGHTS)
        total = float(sum(importances))
        if total <= 0:
            return dict(RULE_WEIGHTS)
        return {name: float(value) / total for name, value in zip(FEATURE_NAMES, importances)}
