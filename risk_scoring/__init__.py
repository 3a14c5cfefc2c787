"""
Risk Scoring Engine - Package.

============================================================
PURPOSE
============================================================
Scores every active candidate for drop-off risk from
behavioral conversation signals.

============================================================
PIPELINE
============================================================
Candidate + history ──► RiskFeatureExtractor ──► FeatureVector
FeatureVector ──► RiskScorer ──► (probability, factors)
probability ──► categorize_risk ──► RiskLevel
RiskAssessment ──► AssessmentFeed ──► subscribers (persistence, ...)

============================================================
SCORING
============================================================
Probability in [0, 1], classified:
- MINIMAL (< 0.3)
- LOW     (0.3 - 0.6)
- MEDIUM  (0.6 - 0.8)
- HIGH    (>= 0.8)

============================================================
USAGE
============================================================
    from risk_scoring import (
        RiskFeatureExtractor,
        RuleBasedRiskScorer,
        categorize_risk,
    )

    extractor = RiskFeatureExtractor()
    scorer = RuleBasedRiskScorer()
    scorer.initialize()

    vector = extractor.extract(candidate, messages, now)
    probability, factors = scorer.score(vector)
    level = categorize_risk(probability)

============================================================
"""

from .types import (
    FEATURE_SCHEMA_VERSION,
    FEATURE_NAMES,
    RiskLevel,
    FeatureVector,
    RiskFactor,
    RiskAssessment,
    categorize_risk,
    format_assessment_summary,
)
from .config import (
    STAGE_RISK_PRIORS,
    RiskBreakpoints,
    FeatureWindowConfig,
    RiskScoringConfig,
    get_default_config,
)
from .sentiment import LexiconSentimentScorer, LexiconSentimentConfig
from .features import RiskFeatureExtractor
from .scorers import (
    RULE_WEIGHTS,
    RiskScorer,
    RuleBasedRiskScorer,
    ModelRiskScorer,
    risk_terms,
)
from .feed import AssessmentFeed
from .models import CandidateRiskAssessmentRecord
from .repository import RiskAssessmentRepository, AssessmentRepositorySink

__all__ = [
    # Types
    "FEATURE_SCHEMA_VERSION",
    "FEATURE_NAMES",
    "RiskLevel",
    "FeatureVector",
    "RiskFactor",
    "RiskAssessment",
    "categorize_risk",
    "format_assessment_summary",
    # Config
    "STAGE_RISK_PRIORS",
    "RiskBreakpoints",
    "FeatureWindowConfig",
    "RiskScoringConfig",
    "get_default_config",
    # Extraction and scoring
    "LexiconSentimentScorer",
    "LexiconSentimentConfig",
    "RiskFeatureExtractor",
    "RULE_WEIGHTS",
    "RiskScorer",
    "RuleBasedRiskScorer",
    "ModelRiskScorer",
    "risk_terms",
    # Feed and persistence
    "AssessmentFeed",
    "CandidateRiskAssessmentRecord",
    "RiskAssessmentRepository",
    "AssessmentRepositorySink",
]
