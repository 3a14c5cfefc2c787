"""
Risk Scoring Engine - Lexicon Sentiment Scorer.

============================================================
RESPONSIBILITY
============================================================
Scores candidate messages that arrive without an upstream
sentiment value.

- Weighted keyword lexicon (positive and negative phrases)
- Word-boundary matching, case-insensitive
- Simple negation handling ("not interested" flips polarity)
- Output always within [-1, 1]

============================================================
DESIGN PRINCIPLES
============================================================
- Deterministic: same text, same score
- Configurable lexicon
- Cheap enough to run on every message of every tick

============================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple


# ============================================================
# LEXICON DEFINITIONS
# ============================================================

# Polarity weights, -1.0 (clearly disengaging) to 1.0 (clearly engaged)
SENTIMENT_LEXICON: Dict[str, float] = {
    # Engagement
    "excited": 0.8,
    "thrilled": 0.9,
    "looking forward": 0.8,
    "interested": 0.6,
    "great": 0.6,
    "thanks": 0.4,
    "thank you": 0.5,
    "happy": 0.6,
    "love": 0.7,
    "sounds good": 0.6,
    "perfect": 0.6,
    "definitely": 0.5,
    "absolutely": 0.6,
    "glad": 0.5,
    "enjoyed": 0.6,
    "submitted": 0.3,
    # Disengagement
    "busy": -0.4,
    "swamped": -0.5,
    "delay": -0.4,
    "postpone": -0.5,
    "reschedule": -0.3,
    "unfortunately": -0.6,
    "sorry": -0.3,
    "difficult": -0.4,
    "too long": -0.6,
    "unclear": -0.4,
    "frustrated": -0.7,
    "disappointed": -0.7,
    "other offer": -0.8,
    "another offer": -0.8,
    "accepted an offer": -0.9,
    "not sure": -0.4,
    "withdraw": -0.9,
    "no longer": -0.7,
    "pass": -0.5,
    "decline": -0.8,
}

NEGATIONS: Tuple[str, ...] = ("not", "no", "never", "don't", "isn't", "wasn't", "won't")


# ============================================================
# CONFIGURATION
# ============================================================


@dataclass
class LexiconSentimentConfig:
    """Configuration for lexicon sentiment scoring."""

    lexicon: Dict[str, float] = field(default_factory=lambda: dict(SENTIMENT_LEXICON))

    # Tokens looked back from a match for a negation
    negation_window: int = 2

    # Score is sum(weights) / max(matches, saturation)
    saturation: int = 2

    version: str = "1.0.0"


# ============================================================
# LEXICON SENTIMENT SCORER
# ============================================================


class LexiconSentimentScorer:
    """
    Keyword-weighted sentiment for short conversational text.

    ============================================================
    USAGE
    ============================================================
    ```python
    scorer = LexiconSentimentScorer()
    scorer.score("Thanks, really excited about the challenge!")  # > 0
    scorer.score("Sorry, I accepted an offer elsewhere")          # < 0
    ```

    ============================================================
    """

    def __init__(self, config: Optional[LexiconSentimentConfig] = None) -> None:
        self._config = config or LexiconSentimentConfig()
        self._patterns = self._build_patterns()

    @property
    def version(self) -> str:
        return self._config.version

    def score(self, text: str) -> float:
        """
        Score a message.

        Args:
            text: Message content

        Returns:
            Sentiment in [-1, 1]; 0.0 when nothing matched
        """
        if not text:
            return 0.0

        text_lower = text.lower()
        weights: List[float] = []

        for pattern, weight in self._patterns:
            for match in pattern.finditer(text_lower):
                negated = self._is_negated(text_lower, match.start())
                weights.append(-weight if negated else weight)

        if not weights:
            return 0.0

        total = sum(weights) / max(len(weights), self._config.saturation)
        return max(-1.0, min(1.0, total))

    # =========================================================
    # INTERNAL METHODS
    # =========================================================

    def _build_patterns(self) -> List[Tuple[Pattern[str], float]]:
        # Longest phrases first so "thank you" is seen before "thanks"
        phrases = sorted(self._config.lexicon.items(), key=lambda item: -len(item[0]))
        return [
            (re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE), weight)
            for phrase, weight in phrases
        ]

    def _is_negated(self, text_lower: str, position: int) -> bool:
        preceding = text_lower[:position].split()[-self._config.negation_window:]
        return any(token.strip(".,!?;:") in NEGATIONS for token in preceding)
