"""
Candidate Journey - State Machine.

============================================================
PURPOSE
============================================================
Manages candidate funnel progress with strict transitions.

STATE MACHINE:

    INITIAL_CONTACT ──candidate_responded──► SCREENING
           │                                    │
           │                          screening_passed
           │                                    ▼
           │                          TECHNICAL_CHALLENGE ◄──┐
           │                                    │            │
           │                        challenge_submitted  revision_requested
           │                                    ▼            │
           │                           TECHNICAL_REVIEW ─────┘
           │                                    │
           │                             review_passed
           │                                    ▼
           │                              CULTURAL_FIT
           │                                    │
           │                         cultural_fit_passed
           │                                    ▼
           │                              FINAL_REVIEW ──offer_accepted──► HIRED
           │
    Any non-terminal state ──disqualify | withdraw──► DISQUALIFIED

INVARIANTS:
- Terminal states are final
- Every non-terminal state can reach DISQUALIFIED
- The table is validated at import time
- Rejected triggers leave the candidate unchanged

The machine does not publish events. The coordinator does.

============================================================
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ConfigurationError, InvalidTransitionError

from .types import Candidate, JourneyState, JourneyTrigger, TransitionRecord


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

TransitionTable = Dict[Tuple[JourneyState, JourneyTrigger], JourneyState]


def _build_transition_table() -> TransitionTable:
    table: TransitionTable = {
        (JourneyState.INITIAL_CONTACT, JourneyTrigger.CANDIDATE_RESPONDED): JourneyState.SCREENING,
        (JourneyState.SCREENING, JourneyTrigger.SCREENING_PASSED): JourneyState.TECHNICAL_CHALLENGE,
        (JourneyState.TECHNICAL_CHALLENGE, JourneyTrigger.CHALLENGE_SUBMITTED): JourneyState.TECHNICAL_REVIEW,
        (JourneyState.TECHNICAL_REVIEW, JourneyTrigger.REVISION_REQUESTED): JourneyState.TECHNICAL_CHALLENGE,
        (JourneyState.TECHNICAL_REVIEW, JourneyTrigger.REVIEW_PASSED): JourneyState.CULTURAL_FIT,
        (JourneyState.CULTURAL_FIT, JourneyTrigger.CULTURAL_FIT_PASSED): JourneyState.FINAL_REVIEW,
        (JourneyState.FINAL_REVIEW, JourneyTrigger.OFFER_ACCEPTED): JourneyState.HIRED,
    }
    # Exit paths from every active stage
    for state in JourneyState.funnel_order():
        table[(state, JourneyTrigger.DISQUALIFY)] = JourneyState.DISQUALIFIED
        table[(state, JourneyTrigger.WITHDRAW)] = JourneyState.DISQUALIFIED
    return table


def validate_transition_table(table: TransitionTable) -> None:
    """
    Check a transition table for completeness.

    Rules:
    - terminal states have no outgoing transitions
    - every non-terminal state has at least one outgoing transition
    - every non-terminal state has a direct path to DISQUALIFIED

    Raises:
        ConfigurationError: listing every violation found
    """
    problems: List[str] = []
    outgoing: Dict[JourneyState, Set[JourneyState]] = {state: set() for state in JourneyState}

    for (source, trigger), target in table.items():
        if not isinstance(source, JourneyState) or not isinstance(target, JourneyState):
            problems.append(f"unknown state in entry ({source}, {trigger}) -> {target}")
            continue
        if not isinstance(trigger, JourneyTrigger):
            problems.append(f"unknown trigger {trigger!r} from {source.value}")
            continue
        outgoing[source].add(target)

    for state, targets in outgoing.items():
        if state.is_terminal():
            if targets:
                problems.append(f"terminal state {state.value} has outgoing transitions")
            continue
        if not targets:
            problems.append(f"state {state.value} has no outgoing transitions")
        elif JourneyState.DISQUALIFIED not in targets:
            problems.append(f"state {state.value} has no disqualification path")

    if problems:
        raise ConfigurationError("Invalid journey transition table", problems=problems)


TRANSITION_TABLE: TransitionTable = _build_transition_table()
validate_transition_table(TRANSITION_TABLE)


# ============================================================
# JOURNEY STATE MACHINE
# ============================================================

class JourneyStateMachine:
    """
    Validated candidate stage transitions.

    Only touches the candidate record it is given:
    - current_state
    - state_entered_at
    - transitions (audit trail)
    """

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        table: Optional[TransitionTable] = None,
    ):
        """
        Initialize state machine.

        Args:
            clock: Clock used for transition timestamps
            table: Transition table (validated); defaults to TRANSITION_TABLE
        """
        self._clock = clock or SystemClock()
        if table is not None:
            validate_transition_table(table)
        self._table = table if table is not None else TRANSITION_TABLE

    @property
    def table(self) -> TransitionTable:
        return dict(self._table)

    def allowed_triggers(self, state: JourneyState) -> List[JourneyTrigger]:
        """Triggers accepted from a state, in declaration order."""
        return [trigger for (source, trigger) in self._table if source == state]

    def can_transition(self, state: JourneyState, trigger: JourneyTrigger) -> bool:
        return (state, trigger) in self._table

    def transition(self, candidate: Candidate, trigger: JourneyTrigger) -> JourneyState:
        """
        Apply a trigger to a candidate.

        Args:
            candidate: Candidate record to update
            trigger: Trigger to apply (enum member or its string value)

        Returns:
            The new journey state

        Raises:
            InvalidTransitionError: If the trigger is unknown, not valid
                for the current state, or the state is terminal
        """
        current = candidate.current_state

        try:
            trigger = JourneyTrigger(trigger)
        except ValueError:
            raise InvalidTransitionError(
                candidate.candidate_id, current, trigger, reason="unknown trigger"
            )

        if current.is_terminal():
            raise InvalidTransitionError(
                candidate.candidate_id, current, trigger, reason="state is terminal"
            )

        target = self._table.get((current, trigger))
        if target is None:
            raise InvalidTransitionError(
                candidate.candidate_id, current, trigger, reason="no such transition"
            )

        now = self._clock.now()
        record = TransitionRecord(
            candidate_id=candidate.candidate_id,
            state=target,
            previous_state=current,
            trigger=trigger,
            timestamp=now,
        )

        candidate.current_state = target
        candidate.state_entered_at = now
        candidate.transitions.append(record)

        logger.info(
            f"Candidate {candidate.candidate_id}: "
            f"{current.value} -> {target.value} ({trigger.value})"
        )
        return target

    # --------------------------------------------------------
    # STATE QUERIES
    # --------------------------------------------------------

    def time_in_state(self, candidate: Candidate, now: Optional[datetime] = None) -> float:
        """Seconds spent in the current state."""
        now = now or self._clock.now()
        return max(0.0, (now - candidate.state_entered_at).total_seconds())


def stage_completion_ratio(state: JourneyState) -> float:
    """
    Position of a stage in the funnel, 0.0 (first) to 1.0.

    HIRED counts as complete, DISQUALIFIED as 0.
    """
    if state == JourneyState.HIRED:
        return 1.0
    if state == JourneyState.DISQUALIFIED:
        return 0.0
    order = JourneyState.funnel_order()
    return order.index(state) / (len(order) - 1)
