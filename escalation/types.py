"""
Escalation Engine - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for turning risk assessments into timed,
multi-channel notification sequences.

============================================================
TASK LIFECYCLE
============================================================

    (HIGH/MEDIUM assessment, no task)
                 │
                 ▼
              ACTIVE ──all steps executed──► EXHAUSTED
                 │                               │
                 └──────────┬────────────────────┘
                            │  acknowledgment | terminal state |
                            │  level below MEDIUM | superseded
                            ▼
                        CANCELLED

ACTIVE and EXHAUSTED both occupy the candidate's single
task slot. Every cancellation bumps the task generation so
that late timers and in-flight retries can detect it.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from risk_scoring.types import RiskLevel


# ============================================================
# ENUMS
# ============================================================


class NotificationChannel(str, Enum):
    """Delivery channel; transport is the sender's concern."""

    SLACK = "slack"
    EMAIL = "email"
    BROADCAST = "broadcast"
    DASHBOARD = "dashboard"


class TaskStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class StepOutcome(str, Enum):
    """Result of executing one escalation step."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    SKIPPED = "skipped"          # Cancelled before or during dispatch


class EscalationEffect(str, Enum):
    NONE = "none"
    CREATE_TASK = "create_task"
    ADVANCE_TASK = "advance_task"
    CANCEL_TASK = "cancel_task"


# ============================================================
# POLICY CONTRACTS
# ============================================================


@dataclass(frozen=True)
class NotificationAction:
    """One notification inside a step."""

    channel: NotificationChannel
    target: str
    urgent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"channel": self.channel.value, "target": self.target, "urgent": self.urgent}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationAction":
        return cls(
            channel=NotificationChannel(data["channel"]),
            target=str(data["target"]),
            urgent=bool(data.get("urgent", False)),
        )


@dataclass(frozen=True)
class EscalationStep:
    """
    Actions fired together.

    delay_seconds is measured from the previous step's
    execution (from task creation for the first step).
    """

    actions: Tuple[NotificationAction, ...]
    delay_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delay_seconds": self.delay_seconds,
            "actions": [action.to_dict() for action in self.actions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationStep":
        return cls(
            actions=tuple(NotificationAction.from_dict(a) for a in data["actions"]),
            delay_seconds=float(data.get("delay_seconds", 0.0)),
        )


# ============================================================
# ESCALATION TASK
# ============================================================


@dataclass
class EscalationTask:
    """
    Stateful notification sequence for one candidate.

    Mutated only by the coordinator while holding the
    candidate's lock.
    """

    candidate_id: str
    risk_level: RiskLevel
    steps: Tuple[EscalationStep, ...]
    created_at: datetime
    task_id: str = field(default_factory=lambda: str(uuid4()))

    current_step_index: int = 0
    generation: int = 0
    status: TaskStatus = TaskStatus.ACTIVE
    acknowledged: bool = False
    next_step_due_at: Optional[datetime] = None
    step_outcomes: List[StepOutcome] = field(default_factory=list)
    cancel_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.step_outcomes:
            self.step_outcomes = [StepOutcome.PENDING] * len(self.steps)
        if self.next_step_due_at is None and self.steps:
            self.next_step_due_at = self.created_at + timedelta(seconds=self.steps[0].delay_seconds)

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.ACTIVE

    @property
    def occupies_slot(self) -> bool:
        """ACTIVE and EXHAUSTED tasks both block a new task."""
        return self.status != TaskStatus.CANCELLED

    @property
    def has_pending_steps(self) -> bool:
        return self.current_step_index < len(self.steps)

    def is_current(self, generation: int) -> bool:
        """True while the task is uncancelled and still at this generation."""
        return self.generation == generation and self.status != TaskStatus.CANCELLED

    def is_due(self, now: datetime) -> bool:
        return (
            self.is_active
            and not self.acknowledged
            and self.has_pending_steps
            and self.next_step_due_at is not None
            and now >= self.next_step_due_at
        )

    def cancel(self, reason: str) -> None:
        """Cancel remaining steps and invalidate outstanding timers."""
        if self.status == TaskStatus.CANCELLED:
            return
        self.status = TaskStatus.CANCELLED
        self.cancel_reason = reason
        self.generation += 1
        self.next_step_due_at = None
        for index in range(self.current_step_index, len(self.steps)):
            if self.step_outcomes[index] == StepOutcome.PENDING:
                self.step_outcomes[index] = StepOutcome.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "candidate_id": self.candidate_id,
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "step_count": len(self.steps),
            "generation": self.generation,
            "acknowledged": self.acknowledged,
            "next_step_due_at": self.next_step_due_at.isoformat() if self.next_step_due_at else None,
            "step_outcomes": [outcome.value for outcome in self.step_outcomes],
            "cancel_reason": self.cancel_reason,
        }


# ============================================================
# DECISIONS AND REQUESTS
# ============================================================


@dataclass(frozen=True)
class EscalationDecision:
    """
    What the coordinator should do with an assessment.

    immediate_actions are one-off notifications outside any
    task (the LOW dashboard flag).
    """

    effect: EscalationEffect
    reason: str
    risk_level: RiskLevel
    steps: Tuple[EscalationStep, ...] = ()
    immediate_actions: Tuple[NotificationAction, ...] = ()
    supersedes_task_id: Optional[str] = None


@dataclass(frozen=True)
class DispatchRequest:
    """One notification handed to the NotificationSender."""

    candidate_id: str
    channel: NotificationChannel
    target: str
    payload: Dict[str, Any]
    urgent: bool = False
    task_id: Optional[str] = None
    step_index: Optional[int] = None

    def sender_payload(self) -> Dict[str, Any]:
        """Payload as delivered, including routing hints."""
        return {**self.payload, "target": self.target, "urgent": self.urgent}
