"""
Tests for the Escalation Policy Engine and Escalation Configuration.

Tests cover:
- Decision table (create, advance, cancel, supersede)
- LOW dashboard flag on entering LOW
- Task lifecycle and generation
- Notification payloads
- Policy files and environment loading
"""

import json
from datetime import timedelta

import pytest

from candidate_journey.types import JourneyState
from core.exceptions import ConfigurationError
from escalation.config import EscalationConfig, default_policy, load_policy_file
from escalation.engine import (
    DEFAULT_RECOMMENDED_ACTION,
    EscalationPolicyEngine,
    build_payload,
    recommended_actions,
)
from escalation.types import (
    EscalationEffect,
    EscalationStep,
    EscalationTask,
    NotificationAction,
    NotificationChannel,
    StepOutcome,
    TaskStatus,
)
from risk_scoring.types import RiskAssessment, RiskFactor, RiskLevel


def _assessment(level, probability, at, factors=()):
    return RiskAssessment(
        candidate_id="cand-1",
        probability=probability,
        risk_level=level,
        factors=tuple(factors),
        journey_state="technical_challenge",
        assessed_at=at,
    )


@pytest.fixture
def engine():
    return EscalationPolicyEngine()


def _task(engine, level, now):
    decision = engine.on_assessment(_assessment(level, 0.9 if level == RiskLevel.HIGH else 0.7, now), None, now)
    return engine.create_task("cand-1", decision, now)


# =============================================================
# TEST: Default Policy
# =============================================================

class TestDefaultPolicy:
    """Test the built-in step tables."""

    def test_high_policy(self):
        steps = default_policy()[RiskLevel.HIGH]

        assert len(steps) == 2
        assert steps[0].delay_seconds == 0
        assert {a.channel for a in steps[0].actions} == {NotificationChannel.SLACK, NotificationChannel.EMAIL}
        assert all(a.urgent for a in steps[0].actions)
        assert steps[1].delay_seconds == 300
        assert steps[1].actions[0].channel == NotificationChannel.BROADCAST

    def test_medium_policy(self):
        steps = default_policy()[RiskLevel.MEDIUM]

        assert len(steps) == 1
        assert {a.channel for a in steps[0].actions} == {NotificationChannel.SLACK, NotificationChannel.DASHBOARD}
        assert not any(a.urgent for a in steps[0].actions)

    def test_low_policy_is_dashboard_only(self):
        steps = default_policy()[RiskLevel.LOW]
        assert [a.channel for a in steps[0].actions] == [NotificationChannel.DASHBOARD]


# =============================================================
# TEST: Decision Table
# =============================================================

class TestDecisions:
    """Test on_assessment decisions."""

    def test_high_without_task_creates(self, engine, reference_time):
        decision = engine.on_assessment(_assessment(RiskLevel.HIGH, 0.9, reference_time), None, reference_time)

        assert decision.effect == EscalationEffect.CREATE_TASK
        assert decision.steps == default_policy()[RiskLevel.HIGH]
        assert decision.supersedes_task_id is None

    def test_medium_without_task_creates(self, engine, reference_time):
        decision = engine.on_assessment(_assessment(RiskLevel.MEDIUM, 0.7, reference_time), None, reference_time)
        assert decision.effect == EscalationEffect.CREATE_TASK

    def test_minimal_does_nothing(self, engine, reference_time):
        decision = engine.on_assessment(_assessment(RiskLevel.MINIMAL, 0.1, reference_time), None, reference_time)
        assert decision.effect == EscalationEffect.NONE
        assert decision.immediate_actions == ()

    def test_entering_low_flags_dashboard_once(self, engine, reference_time):
        """LOW emits a dashboard flag only when the previous level was not LOW."""
        low = _assessment(RiskLevel.LOW, 0.4, reference_time)

        first = engine.on_assessment(low, None, reference_time, previous_level=RiskLevel.MINIMAL)
        repeat = engine.on_assessment(low, None, reference_time, previous_level=RiskLevel.LOW)

        assert first.effect == EscalationEffect.NONE
        assert [a.channel for a in first.immediate_actions] == [NotificationChannel.DASHBOARD]
        assert repeat.immediate_actions == ()

    def test_existing_task_blocks_duplicate(self, engine, reference_time):
        """Same level while the task is waiting for its next step: no change."""
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.current_step_index = 1
        task.next_step_due_at = reference_time + timedelta(seconds=300)

        decision = engine.on_assessment(
            _assessment(RiskLevel.HIGH, 0.95, reference_time), task, reference_time
        )

        assert decision.effect == EscalationEffect.NONE

    def test_due_step_advances(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.current_step_index = 1
        task.next_step_due_at = reference_time + timedelta(seconds=300)
        later = reference_time + timedelta(seconds=300)

        decision = engine.on_assessment(_assessment(RiskLevel.HIGH, 0.9, later), task, later)

        assert decision.effect == EscalationEffect.ADVANCE_TASK

    def test_acknowledged_task_never_advances(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.acknowledged = True
        assert not task.is_due(reference_time + timedelta(hours=1))

    def test_drop_below_medium_cancels(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)

        decision = engine.on_assessment(
            _assessment(RiskLevel.LOW, 0.4, reference_time), task, reference_time, previous_level=RiskLevel.HIGH
        )

        assert decision.effect == EscalationEffect.CANCEL_TASK
        assert len(decision.immediate_actions) == 1

    def test_high_supersedes_medium(self, engine, reference_time):
        task = _task(engine, RiskLevel.MEDIUM, reference_time)

        decision = engine.on_assessment(_assessment(RiskLevel.HIGH, 0.9, reference_time), task, reference_time)

        assert decision.effect == EscalationEffect.CREATE_TASK
        assert decision.supersedes_task_id == task.task_id

    def test_medium_keeps_high_task(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.current_step_index = 1
        task.next_step_due_at = reference_time + timedelta(seconds=300)

        decision = engine.on_assessment(_assessment(RiskLevel.MEDIUM, 0.7, reference_time), task, reference_time)

        assert decision.effect == EscalationEffect.NONE

    def test_exhausted_task_keeps_slot(self, engine, reference_time):
        task = _task(engine, RiskLevel.MEDIUM, reference_time)
        task.current_step_index = 1
        task.status = TaskStatus.EXHAUSTED

        decision = engine.on_assessment(_assessment(RiskLevel.MEDIUM, 0.7, reference_time), task, reference_time)

        assert decision.effect == EscalationEffect.NONE

    def test_terminal_state_cancels(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)

        assert engine.on_state_change(task, JourneyState.HIRED).effect == EscalationEffect.CANCEL_TASK
        assert engine.on_state_change(task, JourneyState.SCREENING).effect == EscalationEffect.NONE
        assert engine.on_state_change(None, JourneyState.DISQUALIFIED).effect == EscalationEffect.NONE


# =============================================================
# TEST: Task Lifecycle
# =============================================================

class TestEscalationTask:
    """Test task state and cancellation."""

    def test_new_task_is_due_immediately(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)

        assert task.status == TaskStatus.ACTIVE
        assert task.step_outcomes == [StepOutcome.PENDING, StepOutcome.PENDING]
        assert task.next_step_due_at == reference_time
        assert task.is_due(reference_time)

    def test_cancel_bumps_generation_and_skips_pending(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.current_step_index = 1
        task.step_outcomes[0] = StepOutcome.DISPATCHED

        task.cancel("acknowledged")

        assert task.status == TaskStatus.CANCELLED
        assert task.generation == 1
        assert not task.is_current(0)
        assert not task.occupies_slot
        assert task.step_outcomes == [StepOutcome.DISPATCHED, StepOutcome.SKIPPED]
        assert task.to_dict()["cancel_reason"] == "acknowledged"

    def test_cancel_is_idempotent(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)
        task.cancel("first")
        task.cancel("second")
        assert task.generation == 1
        assert task.cancel_reason == "first"


# =============================================================
# TEST: Payloads
# =============================================================

class TestPayloads:
    """Test notification payload content."""

    def test_payload_carries_factors_and_actions(self, reference_time):
        assessment = _assessment(
            RiskLevel.HIGH, 0.9134, reference_time,
            factors=[RiskFactor("hours_since_last_message", 0.3, 26.0), RiskFactor("sentiment_trend", 0.2, -1.2)],
        )

        payload = build_payload(assessment)

        assert payload["risk_level"] == "high"
        assert payload["risk_score"] == 0.9134
        assert [f["name"] for f in payload["factors"]] == ["hours_since_last_message", "sentiment_trend"]
        assert payload["recommended_actions"] == [
            "Send a personal check-in message",
            "Have a recruiter call to address concerns",
        ]
        assert payload["journey_state"] == "technical_challenge"

    def test_default_recommended_action(self):
        assert recommended_actions([]) == [DEFAULT_RECOMMENDED_ACTION]
        assert recommended_actions(["weekend_activity_score", "time_of_day_score"]) == [
            "Offer scheduling outside office hours"
        ]

    def test_step_requests(self, engine, reference_time):
        task = _task(engine, RiskLevel.HIGH, reference_time)

        requests = engine.build_requests(task, 0, _assessment(RiskLevel.HIGH, 0.9, reference_time))

        assert [r.channel for r in requests] == [NotificationChannel.SLACK, NotificationChannel.EMAIL]
        assert all(r.task_id == task.task_id and r.step_index == 0 for r in requests)
        assert requests[0].payload["step"] == 1


# =============================================================
# TEST: Escalation Configuration
# =============================================================

class TestEscalationConfig:
    """Test policy files and environment loading."""

    def test_defaults_valid(self):
        assert EscalationConfig().validate() == []

    def test_from_env(self):
        config = EscalationConfig.from_env({"ESCALATION_MAX_RETRIES": "5", "ESCALATION_BACKOFF_MULTIPLIER": "2"})
        assert config.max_retries == 5
        assert config.backoff_multiplier == 2.0

    def test_from_env_collects_problems(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EscalationConfig.from_env({"ESCALATION_MAX_RETRIES": "many", "ESCALATION_BACKOFF_MULTIPLIER": "0.5"})

        problems = exc_info.value.problems
        assert any("ESCALATION_MAX_RETRIES" in p for p in problems)
        assert any("backoff_multiplier" in p for p in problems)

    def test_policy_file_overrides_levels(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({
            "medium": [
                {"delay_seconds": 0, "actions": [{"channel": "email", "target": "lead@example.com"}]},
                {"delay_seconds": 600, "actions": [{"channel": "slack", "target": "#hiring", "urgent": True}]},
            ]
        }))

        policy = load_policy_file(str(path))

        assert len(policy[RiskLevel.MEDIUM]) == 2
        assert policy[RiskLevel.MEDIUM][1] == EscalationStep(
            actions=(NotificationAction(NotificationChannel.SLACK, "#hiring", True),),
            delay_seconds=600.0,
        )
        assert policy[RiskLevel.HIGH] == default_policy()[RiskLevel.HIGH]

    def test_yaml_policy_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(
            "high:\n"
            "  - delay_seconds: 0\n"
            "    actions:\n"
            "      - {channel: slack, target: '#oncall', urgent: true}\n"
        )

        policy = load_policy_file(str(path))

        assert policy[RiskLevel.HIGH] == (
            EscalationStep(actions=(NotificationAction(NotificationChannel.SLACK, "#oncall", True),)),
        )
        assert policy[RiskLevel.MEDIUM] == default_policy()[RiskLevel.MEDIUM]

    def test_malformed_policy_file(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"medium": [{"actions": [{"channel": "pager", "target": "x"}]}]}))

        with pytest.raises(ConfigurationError):
            load_policy_file(str(path))

    def test_missing_medium_policy_invalid(self):
        policy = default_policy()
        policy[RiskLevel.MEDIUM] = ()
        assert EscalationConfig(policy=policy).validate()
