"""
Escalation Engine - Policy Engine.

============================================================
PURPOSE
============================================================
Decides what an assessment means for a candidate's
escalation task. It never sends anything: decisions are
carried out by the coordinator, notifications by the
external sender.

============================================================
DECISION TABLE
============================================================
no task in slot
    HIGH / MEDIUM               create_task
    LOW / MINIMAL               none
task in slot
    level below MEDIUM          cancel_task
    level above task level      create_task (supersedes)
    step due, unacknowledged    advance_task
    otherwise                   none

Independently, entering LOW from any other level emits one
dashboard flag (immediate_actions).

============================================================
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from candidate_journey.types import JourneyState
from risk_scoring.types import RiskAssessment, RiskLevel

from .config import EscalationConfig
from .types import (
    DispatchRequest,
    EscalationDecision,
    EscalationEffect,
    EscalationTask,
    NotificationAction,
)


logger = logging.getLogger(__name__)


# ============================================================
# RECOMMENDED ACTIONS
# ============================================================

RECOMMENDED_ACTIONS: Dict[str, str] = {
    "hours_since_last_message": "Send a personal check-in message",
    "sentiment_trend": "Have a recruiter call to address concerns",
    "stage_risk_prior": "Offer help or an extension for the current stage",
    "avg_response_latency_hours": "Propose a concrete next step with a date",
    "stage_duration_hours": "Review why the candidate is stuck in this stage",
    "message_count": "Re-engage with a short, specific question",
    "avg_message_length": "Ask an open question to restart the conversation",
    "stage_completion_ratio": "Share the remaining process and timeline",
    "weekend_activity_score": "Offer scheduling outside office hours",
    "time_of_day_score": "Offer scheduling outside office hours",
}

DEFAULT_RECOMMENDED_ACTION = "Review the candidate's conversation"


def recommended_actions(factor_names: Sequence[str]) -> List[str]:
    """Deduplicated actions for the ranked factors, in rank order."""
    actions: List[str] = []
    for name in factor_names:
        action = RECOMMENDED_ACTIONS.get(name, DEFAULT_RECOMMENDED_ACTION)
        if action not in actions:
            actions.append(action)
    if not actions:
        actions.append(DEFAULT_RECOMMENDED_ACTION)
    return actions


def build_payload(assessment: RiskAssessment) -> Dict[str, Any]:
    """Notification payload for an assessment."""
    return {
        "risk_level": assessment.risk_level.value,
        "risk_score": round(assessment.probability, 4),
        "factors": [factor.to_dict() for factor in assessment.factors],
        "recommended_actions": recommended_actions(assessment.top_factor_names),
        "journey_state": assessment.journey_state,
        "assessed_at": assessment.assessed_at.isoformat(),
    }


# ============================================================
# POLICY ENGINE
# ============================================================


class EscalationPolicyEngine:
    """
    Stateless escalation decisions.

    Usage:
        engine = EscalationPolicyEngine(config)
        decision = engine.on_assessment(assessment, task, now, previous_level)
    """

    def __init__(self, config: Optional[EscalationConfig] = None):
        self.config = config or EscalationConfig()

    def on_assessment(
        self,
        assessment: RiskAssessment,
        active_task: Optional[EscalationTask],
        now: datetime,
        previous_level: Optional[RiskLevel] = None,
    ) -> EscalationDecision:
        """
        Decide the effect of an assessment.

        Args:
            assessment: New assessment
            active_task: Task occupying the candidate's slot, if any
            now: Current time for due checks
            previous_level: Level of the candidate's previous assessment
        """
        level = assessment.risk_level
        immediate = self._immediate_actions(level, previous_level)

        if active_task is None or not active_task.occupies_slot:
            if level.requires_escalation:
                return EscalationDecision(
                    effect=EscalationEffect.CREATE_TASK,
                    reason=f"{level.value} risk with no active task",
                    risk_level=level,
                    steps=self.config.steps_for(level),
                )
            return EscalationDecision(
                effect=EscalationEffect.NONE,
                reason=f"{level.value} risk does not escalate",
                risk_level=level,
                immediate_actions=immediate,
            )

        if not level.requires_escalation:
            return EscalationDecision(
                effect=EscalationEffect.CANCEL_TASK,
                reason=f"risk dropped to {level.value}",
                risk_level=level,
                immediate_actions=immediate,
            )

        if level.severity_order > active_task.risk_level.severity_order:
            return EscalationDecision(
                effect=EscalationEffect.CREATE_TASK,
                reason=f"risk rose from {active_task.risk_level.value} to {level.value}",
                risk_level=level,
                steps=self.config.steps_for(level),
                supersedes_task_id=active_task.task_id,
            )

        if active_task.is_due(now):
            return EscalationDecision(
                effect=EscalationEffect.ADVANCE_TASK,
                reason=f"step {active_task.current_step_index + 1} due",
                risk_level=level,
            )

        return EscalationDecision(
            effect=EscalationEffect.NONE,
            reason="task already active",
            risk_level=level,
        )

    def on_state_change(
        self,
        active_task: Optional[EscalationTask],
        state: JourneyState,
    ) -> EscalationDecision:
        """Terminal journey states cancel the candidate's task."""
        level = active_task.risk_level if active_task else RiskLevel.MINIMAL
        if active_task is not None and active_task.occupies_slot and state.is_terminal():
            return EscalationDecision(
                effect=EscalationEffect.CANCEL_TASK,
                reason=f"candidate reached terminal state {state.value}",
                risk_level=level,
            )
        return EscalationDecision(effect=EscalationEffect.NONE, reason="no change", risk_level=level)

    # --------------------------------------------------------
    # REQUEST BUILDING
    # --------------------------------------------------------

    def create_task(self, candidate_id: str, decision: EscalationDecision, now: datetime) -> EscalationTask:
        task = EscalationTask(
            candidate_id=candidate_id,
            risk_level=decision.risk_level,
            steps=tuple(decision.steps),
            created_at=now,
        )
        logger.info(
            f"Escalation task {task.task_id} created for candidate {candidate_id}: "
            f"level={decision.risk_level.value} steps={len(task.steps)}"
        )
        return task

    def build_requests(
        self,
        task: EscalationTask,
        step_index: int,
        assessment: RiskAssessment,
    ) -> List[DispatchRequest]:
        """Dispatch requests for one step of a task."""
        payload = build_payload(assessment)
        payload["task_id"] = task.task_id
        payload["step"] = step_index + 1
        return [
            self._request(task.candidate_id, action, payload, task.task_id, step_index)
            for action in task.steps[step_index].actions
        ]

    def build_immediate_requests(
        self,
        candidate_id: str,
        actions: Sequence[NotificationAction],
        payload: Dict[str, Any],
    ) -> List[DispatchRequest]:
        return [self._request(candidate_id, action, payload) for action in actions]

    def _request(
        self,
        candidate_id: str,
        action: NotificationAction,
        payload: Dict[str, Any],
        task_id: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> DispatchRequest:
        return DispatchRequest(
            candidate_id=candidate_id,
            channel=action.channel,
            target=action.target,
            payload=dict(payload),
            urgent=action.urgent,
            task_id=task_id,
            step_index=step_index,
        )

    def _immediate_actions(
        self,
        level: RiskLevel,
        previous_level: Optional[RiskLevel],
    ) -> Tuple[NotificationAction, ...]:
        if level != RiskLevel.LOW or previous_level == RiskLevel.LOW:
            return ()
        steps = self.config.steps_for(RiskLevel.LOW)
        return steps[0].actions if steps else ()
