"""
Escalation Engine - Package.

============================================================
PURPOSE
============================================================
Converts risk levels into time-bounded, escalating,
multi-channel notifications with human-takeover handoff.

- At most one task per candidate
- Acknowledgment cancels every remaining step
- Dispatch is retried with backoff, then the step fails
  and the sequence continues

============================================================
"""

from .types import (
    NotificationChannel,
    TaskStatus,
    StepOutcome,
    EscalationEffect,
    NotificationAction,
    EscalationStep,
    EscalationTask,
    EscalationDecision,
    DispatchRequest,
)
from .config import EscalationConfig, default_policy, load_policy_file
from .dispatcher import NotificationSender, LoggingNotificationSender, RetryingDispatcher
from .timers import StepTimerService
from .engine import (
    RECOMMENDED_ACTIONS,
    EscalationPolicyEngine,
    build_payload,
    recommended_actions,
)

__all__ = [
    "NotificationChannel",
    "TaskStatus",
    "StepOutcome",
    "EscalationEffect",
    "NotificationAction",
    "EscalationStep",
    "EscalationTask",
    "EscalationDecision",
    "DispatchRequest",
    "EscalationConfig",
    "default_policy",
    "load_policy_file",
    "NotificationSender",
    "LoggingNotificationSender",
    "RetryingDispatcher",
    "StepTimerService",
    "RECOMMENDED_ACTIONS",
    "EscalationPolicyEngine",
    "build_payload",
    "recommended_actions",
]
