"""
Risk Scoring Engine - Feature Extraction.

============================================================
PURPOSE
============================================================
Turns a candidate record plus conversation history into a
FeatureVector for the scorers.

============================================================
WINDOWING
============================================================
Only messages with
    reference_time - window_days <= timestamp <= reference_time
are considered, and of those only the newest max_messages.
Timestamps after reference_time are clamped to it.

============================================================
FEATURES (schema 1.0)
============================================================
hours_since_last_message    newest inbound message, else last_activity_at
message_count               inbound messages in window
avg_response_latency_hours  outbound -> next inbound gap, mean
stage_duration_hours        time since state_entered_at
stage_completion_ratio      funnel position, 0..1
avg_message_length          characters per inbound message
weekend_activity_score      share of inbound sent Sat/Sun
time_of_day_score           share of inbound outside office hours
sentiment_trend             last inbound sentiment - first
stage_risk_prior            configured per-stage prior

The extractor is pure: it reads nothing but its arguments.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from candidate_journey.state_machine import stage_completion_ratio
from candidate_journey.types import ActivityMessage, Candidate, JourneyState
from core.clock import ensure_utc
from core.exceptions import ExtractionError

from .config import FeatureWindowConfig, RiskScoringConfig
from .sentiment import LexiconSentimentScorer
from .types import FEATURE_SCHEMA_VERSION, FeatureVector


logger = logging.getLogger(__name__)

_SECONDS_PER_HOUR = 3600.0


class RiskFeatureExtractor:
    """
    Computes schema 1.0 feature vectors.

    Zero messages in the window yields zeros for every
    message-derived feature; hours_since_last_message then
    falls back to the candidate's last_activity_at.
    """

    def __init__(
        self,
        config: Optional[RiskScoringConfig] = None,
        sentiment_scorer: Optional[LexiconSentimentScorer] = None,
    ) -> None:
        self._config = config or RiskScoringConfig()
        self._sentiment = sentiment_scorer or LexiconSentimentScorer()

    @property
    def schema_version(self) -> str:
        return FEATURE_SCHEMA_VERSION

    @property
    def window(self) -> FeatureWindowConfig:
        return self._config.window

    def extract(
        self,
        candidate: Candidate,
        history: Sequence[ActivityMessage],
        reference_time: datetime,
    ) -> FeatureVector:
        """
        Extract features for one candidate.

        Args:
            candidate: Candidate record (read only)
            history: Conversation messages in any order
            reference_time: "Now" for every time-based feature

        Returns:
            FeatureVector in FEATURE_NAMES order

        Raises:
            ExtractionError: On malformed candidate or message data
        """
        try:
            features = self._compute(candidate, history, ensure_utc(reference_time))
        except ExtractionError:
            raise
        except (AttributeError, TypeError, ValueError, KeyError) as e:
            raise ExtractionError(candidate.candidate_id, str(e), cause=e)

        return FeatureVector.from_mapping(
            candidate.candidate_id,
            features,
            computed_at=ensure_utc(reference_time),
        )

    # =========================================================
    # INTERNAL METHODS
    # =========================================================

    def _compute(
        self,
        candidate: Candidate,
        history: Sequence[ActivityMessage],
        now: datetime,
    ) -> Dict[str, float]:
        state = JourneyState(candidate.current_state)
        window = self._select_window(history, now)
        inbound = [(ts, m) for ts, m in window if m.is_inbound]

        # hours_since_last_message
        if inbound:
            last_seen = inbound[-1][0]
        else:
            last_seen = min(ensure_utc(candidate.last_activity_at), now)
        hours_since_last = max(0.0, (now - last_seen).total_seconds() / _SECONDS_PER_HOUR)

        stage_hours = max(
            0.0,
            (now - ensure_utc(candidate.state_entered_at)).total_seconds() / _SECONDS_PER_HOUR,
        )

        features = {
            "hours_since_last_message": hours_since_last,
            "message_count": float(len(inbound)),
            "avg_response_latency_hours": self._response_latency(window),
            "stage_duration_hours": stage_hours,
            "stage_completion_ratio": stage_completion_ratio(state),
            "avg_message_length": 0.0,
            "weekend_activity_score": 0.0,
            "time_of_day_score": 0.0,
            "sentiment_trend": 0.0,
            "stage_risk_prior": float(self._config.stage_risk_priors.get(state, 0.0)),
        }

        if inbound:
            count = len(inbound)
            start = self.window.business_hours_start
            end = self.window.business_hours_end
            features["avg_message_length"] = sum(len(m.content or "") for _, m in inbound) / count
            features["weekend_activity_score"] = sum(1 for ts, _ in inbound if ts.weekday() >= 5) / count
            features["time_of_day_score"] = sum(
                1 for ts, _ in inbound if not start <= ts.hour < end
            ) / count
            if count >= 2:
                features["sentiment_trend"] = (
                    self._message_sentiment(inbound[-1][1]) - self._message_sentiment(inbound[0][1])
                )

        return features

    def _select_window(self, history: Sequence[ActivityMessage], now: datetime) -> List[tuple]:
        """Clamp, filter and cap messages; result sorted oldest first."""
        cutoff = now - timedelta(days=self.window.window_days)
        selected = []
        for message in history:
            if not isinstance(message.timestamp, datetime):
                raise ValueError(f"message {message.message_id} has no valid timestamp")
            timestamp = min(ensure_utc(message.timestamp), now)
            if timestamp >= cutoff:
                selected.append((timestamp, message))
        selected.sort(key=lambda item: item[0])
        return selected[-self.window.max_messages:]

    def _response_latency(self, window: List[tuple]) -> float:
        """Mean hours between an outbound prompt and the candidate's next reply."""
        gaps: List[float] = []
        pending_since: Optional[datetime] = None
        for timestamp, message in window:
            if message.is_inbound:
                if pending_since is not None:
                    gaps.append((timestamp - pending_since).total_seconds() / _SECONDS_PER_HOUR)
                    pending_since = None
            elif pending_since is None:
                pending_since = timestamp
        if not gaps:
            return 0.0
        return sum(gaps) / len(gaps)

    def _message_sentiment(self, message: ActivityMessage) -> float:
        if message.sentiment is not None:
            return max(-1.0, min(1.0, float(message.sentiment)))
        return self._sentiment.score(message.content)
