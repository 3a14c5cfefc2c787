"""
Candidate Journey - Package.

============================================================
PURPOSE
============================================================
Per-candidate recruitment funnel state with validated
transitions and an audit trail of every applied trigger.

============================================================
USAGE
============================================================
    from candidate_journey import (
        Candidate,
        JourneyStateMachine,
        JourneyTrigger,
    )

    machine = JourneyStateMachine()
    candidate = Candidate(candidate_id="cand-1")
    machine.transition(candidate, JourneyTrigger.CANDIDATE_RESPONDED)

============================================================
"""

from .types import (
    JourneyState,
    JourneyTrigger,
    MessageDirection,
    TransitionRecord,
    ActivityMessage,
    Candidate,
)
from .state_machine import (
    TRANSITION_TABLE,
    JourneyStateMachine,
    validate_transition_table,
    stage_completion_ratio,
)

__all__ = [
    "JourneyState",
    "JourneyTrigger",
    "MessageDirection",
    "TransitionRecord",
    "ActivityMessage",
    "Candidate",
    "TRANSITION_TABLE",
    "JourneyStateMachine",
    "validate_transition_table",
    "stage_completion_ratio",
]
