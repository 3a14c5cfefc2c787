"""
Escalation Engine - Configuration.

============================================================
PURPOSE
============================================================
Escalation step tables and dispatch retry settings.

============================================================
DEFAULT POLICY
============================================================
HIGH
  step 1 (immediate)  Slack #recruiting-alerts (urgent)
                      + email recruiting-lead
  step 2 (+5 min)     broadcast recruiting-team
MEDIUM
  step 1 (immediate)  Slack #recruiting-alerts
                      + dashboard flag
LOW
  dashboard flag, once on entering the level (no task)

============================================================
RETRY POLICY
============================================================
Up to max_retries retries after the first attempt, waiting
base * multiplier^n between attempts (1s, 4s, 16s).

============================================================
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from risk_scoring.types import RiskLevel

from .types import EscalationStep, NotificationAction, NotificationChannel


# ============================================================
# DEFAULT STEP TABLES
# ============================================================

DEFAULT_ALERT_CHANNEL = "#recruiting-alerts"
DEFAULT_LEAD_TARGET = "recruiting-lead"
DEFAULT_TEAM_TARGET = "recruiting-team"
DEFAULT_DASHBOARD_TARGET = "risk-dashboard"

HIGH_RISK_BROADCAST_DELAY_SECONDS = 300.0


def default_policy() -> Dict[RiskLevel, Tuple[EscalationStep, ...]]:
    return {
        RiskLevel.HIGH: (
            EscalationStep(
                actions=(
                    NotificationAction(NotificationChannel.SLACK, DEFAULT_ALERT_CHANNEL, urgent=True),
                    NotificationAction(NotificationChannel.EMAIL, DEFAULT_LEAD_TARGET, urgent=True),
                ),
                delay_seconds=0.0,
            ),
            EscalationStep(
                actions=(
                    NotificationAction(NotificationChannel.BROADCAST, DEFAULT_TEAM_TARGET, urgent=True),
                ),
                delay_seconds=HIGH_RISK_BROADCAST_DELAY_SECONDS,
            ),
        ),
        RiskLevel.MEDIUM: (
            EscalationStep(
                actions=(
                    NotificationAction(NotificationChannel.SLACK, DEFAULT_ALERT_CHANNEL, urgent=False),
                    NotificationAction(NotificationChannel.DASHBOARD, DEFAULT_DASHBOARD_TARGET),
                ),
                delay_seconds=0.0,
            ),
        ),
        RiskLevel.LOW: (
            EscalationStep(
                actions=(
                    NotificationAction(NotificationChannel.DASHBOARD, DEFAULT_DASHBOARD_TARGET),
                ),
                delay_seconds=0.0,
            ),
        ),
    }


def load_policy_file(path: str) -> Dict[RiskLevel, Tuple[EscalationStep, ...]]:
    """
    Load step tables from a JSON or YAML file.

    Format:
        {"high": [{"delay_seconds": 0, "actions": [
            {"channel": "slack", "target": "#alerts", "urgent": true}]}],
         "medium": [...], "low": [...]}

    Files ending in .yaml or .yml are read with yaml.safe_load.
    Levels missing from the file keep their default steps.

    Raises:
        ConfigurationError: If the file is unreadable or malformed
    """
    policy_path = Path(path)
    try:
        text = policy_path.read_text(encoding="utf-8")
        if policy_path.suffix.lower() in (".yaml", ".yml"):
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read escalation policy file {path}: {e}", cause=e)

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Escalation policy file {path} must contain a mapping")

    policy = default_policy()
    problems: List[str] = []
    for level_name, steps in raw.items():
        try:
            level = RiskLevel(level_name)
            policy[level] = tuple(EscalationStep.from_dict(step) for step in steps)
        except (KeyError, TypeError, ValueError) as e:
            problems.append(f"level {level_name!r}: {e}")

    if problems:
        raise ConfigurationError(f"Invalid escalation policy file {path}", problems=problems)
    return policy


# ============================================================
# ESCALATION CONFIGURATION
# ============================================================


@dataclass
class EscalationConfig:
    """
    Escalation and dispatch configuration.

    Loaded from environment variables with validation.
    """

    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_multiplier: float = 4.0
    policy: Dict[RiskLevel, Tuple[EscalationStep, ...]] = field(default_factory=default_policy)
    policy_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EscalationConfig":
        """
        Create configuration from environment variables.

        Reads ESCALATION_MAX_RETRIES, ESCALATION_BACKOFF_BASE_SECONDS,
        ESCALATION_BACKOFF_MULTIPLIER and ESCALATION_POLICY_FILE.

        Raises:
            ConfigurationError: On unparseable or invalid values
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        problems: List[str] = []

        def _read(name: str, default: Any, cast: Any) -> Any:
            raw = environ.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                problems.append(f"{name}={raw!r} is not a valid {cast.__name__}")
                return default

        policy_file = environ.get("ESCALATION_POLICY_FILE") or None
        config = cls(
            max_retries=_read("ESCALATION_MAX_RETRIES", 3, int),
            backoff_base_seconds=_read("ESCALATION_BACKOFF_BASE_SECONDS", 1.0, float),
            backoff_multiplier=_read("ESCALATION_BACKOFF_MULTIPLIER", 4.0, float),
            policy=load_policy_file(policy_file) if policy_file else default_policy(),
            policy_file=policy_file,
        )

        problems.extend(config.validate())
        if problems:
            raise ConfigurationError("Invalid escalation configuration", problems=problems)
        return config

    def backoff_delays(self) -> List[float]:
        """Waits before each retry, in order."""
        return [
            self.backoff_base_seconds * (self.backoff_multiplier ** n)
            for n in range(self.max_retries)
        ]

    def steps_for(self, level: RiskLevel) -> Tuple[EscalationStep, ...]:
        return self.policy.get(level, ())

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.max_retries < 0:
            errors.append("max_retries must be non-negative")
        if self.backoff_base_seconds < 0:
            errors.append("backoff_base_seconds must be non-negative")
        if self.backoff_multiplier < 1:
            errors.append("backoff_multiplier must be at least 1")

        for level in (RiskLevel.HIGH, RiskLevel.MEDIUM):
            if not self.policy.get(level):
                errors.append(f"policy for {level.value} must have at least one step")

        for level, steps in self.policy.items():
            for index, step in enumerate(steps):
                if step.delay_seconds < 0:
                    errors.append(f"{level.value} step {index + 1} has a negative delay")
                if not step.actions:
                    errors.append(f"{level.value} step {index + 1} has no actions")

        if len(self.policy.get(RiskLevel.LOW, ())) > 1:
            errors.append("low policy supports a single immediate step")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "backoff_base_seconds": self.backoff_base_seconds,
            "backoff_multiplier": self.backoff_multiplier,
            "policy_file": self.policy_file,
            "policy": {
                level.value: [step.to_dict() for step in steps]
                for level, steps in self.policy.items()
            },
        }
