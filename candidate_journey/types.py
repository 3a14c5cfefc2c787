"""
Candidate Journey - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the recruitment funnel.

- JourneyState: fixed set of funnel stages
- JourneyTrigger: events that move a candidate between stages
- Candidate: the registry record mutated by the state machine
  (state) and the coordinator (risk fields, timestamps)
- ActivityMessage: one normalized conversation message

============================================================
FUNNEL
============================================================
    initial_contact → screening → technical_challenge
        → technical_review → cultural_fit → final_review → hired

    Every non-terminal stage can reach `disqualified`.
    `hired` and `disqualified` are terminal.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import from_iso8601


# ============================================================
# ENUMS
# ============================================================


class JourneyState(str, Enum):
    """Recruitment funnel stage."""

    INITIAL_CONTACT = "initial_contact"
    SCREENING = "screening"
    TECHNICAL_CHALLENGE = "technical_challenge"
    TECHNICAL_REVIEW = "technical_review"
    CULTURAL_FIT = "cultural_fit"
    FINAL_REVIEW = "final_review"
    HIRED = "hired"
    DISQUALIFIED = "disqualified"

    def is_terminal(self) -> bool:
        """Terminal states have no outgoing transitions."""
        return self in (JourneyState.HIRED, JourneyState.DISQUALIFIED)

    def is_active(self) -> bool:
        return not self.is_terminal()

    @classmethod
    def funnel_order(cls) -> List["JourneyState"]:
        """Non-terminal stages in funnel order."""
        return [
            cls.INITIAL_CONTACT,
            cls.SCREENING,
            cls.TECHNICAL_CHALLENGE,
            cls.TECHNICAL_REVIEW,
            cls.CULTURAL_FIT,
            cls.FINAL_REVIEW,
        ]


class JourneyTrigger(str, Enum):
    """Conversation events that drive stage changes."""

    CANDIDATE_RESPONDED = "candidate_responded"
    SCREENING_PASSED = "screening_passed"
    CHALLENGE_SUBMITTED = "challenge_submitted"
    REVISION_REQUESTED = "revision_requested"
    REVIEW_PASSED = "review_passed"
    CULTURAL_FIT_PASSED = "cultural_fit_passed"
    OFFER_ACCEPTED = "offer_accepted"
    DISQUALIFY = "disqualify"
    WITHDRAW = "withdraw"


class MessageDirection(str, Enum):
    """Who sent a message."""

    INBOUND = "inbound"      # From the candidate
    OUTBOUND = "outbound"    # From the recruiter or bot


# ============================================================
# RECORDS
# ============================================================


@dataclass(frozen=True)
class TransitionRecord:
    """Audit record for one applied transition."""

    candidate_id: str
    state: JourneyState
    previous_state: JourneyState
    trigger: JourneyTrigger
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "state": self.state.value,
            "previous_state": self.previous_state.value,
            "trigger": self.trigger.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ActivityMessage:
    """
    One normalized conversation message.

    `sentiment` is optional; when the ingestion side already
    scored the message it is used as-is (range -1..1).
    """

    message_id: str
    content: str
    timestamp: datetime
    direction: MessageDirection = MessageDirection.INBOUND
    sentiment: Optional[float] = None

    @property
    def is_inbound(self) -> bool:
        return self.direction == MessageDirection.INBOUND

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityMessage":
        """Build from a JSON-style mapping (ISO timestamps)."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = from_iso8601(timestamp)
        return cls(
            message_id=str(data["message_id"]),
            content=data.get("content", ""),
            timestamp=timestamp,
            direction=MessageDirection(data.get("direction", "inbound")),
            sentiment=data.get("sentiment"),
        )


@dataclass
class Candidate:
    """
    Candidate record owned by the registry.

    Invariants:
    - current_state is always a JourneyState member
    - last_activity_at never lies in the future
    """

    candidate_id: str
    current_state: JourneyState = JourneyState.INITIAL_CONTACT
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state_entered_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    # Written by the coordinator
    last_risk_score: Optional[float] = None
    last_risk_level: Optional[str] = None
    last_assessed_at: Optional[datetime] = None
    inactivity_flagged: bool = False

    transitions: List[TransitionRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.state_entered_at is None:
            self.state_entered_at = self.created_at
        if self.last_activity_at is None:
            self.last_activity_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.current_state.is_terminal()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "current_state": self.current_state.value,
            "created_at": self.created_at.isoformat(),
            "state_entered_at": self.state_entered_at.isoformat() if self.state_entered_at else None,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "last_risk_score": self.last_risk_score,
            "last_risk_level": self.last_risk_level,
            "last_assessed_at": self.last_assessed_at.isoformat() if self.last_assessed_at else None,
            "inactivity_flagged": self.inactivity_flagged,
            "transition_count": len(self.transitions),
        }
