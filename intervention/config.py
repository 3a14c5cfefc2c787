"""
Intervention Coordinator - Configuration.

============================================================
PURPOSE
============================================================
Top-level runtime configuration: scheduler cadence, worker
pool, inactivity threshold, persistence and logging, plus
the risk scoring and escalation sub-configurations.

All values are overridable from the environment (and a
.env file) without code changes.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from escalation.config import EscalationConfig
from risk_scoring.config import RiskScoringConfig


@dataclass
class InterventionConfig:
    """Configuration for the intervention engine."""

    # Scheduler settings
    scheduler_interval_seconds: float = 900.0
    """Risk assessment tick interval (default 15 minutes)."""

    inactivity_sweep_interval_seconds: float = 21600.0
    """Inactivity sweep interval (default 6 hours)."""

    inactivity_threshold_hours: float = 24.0
    """Hours without activity before a candidate is flagged."""

    worker_pool_size: int = 32
    """Maximum concurrent candidate assessments within a tick."""

    # Shutdown settings
    shutdown_timeout_seconds: float = 30.0
    """Timeout for draining in-flight escalations on stop."""

    # Persistence
    database_url: Optional[str] = None
    """Assessment store; persistence is disabled when unset."""

    # Logging
    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "text"
    """Log output format (json or text)."""

    # Sub-configurations
    risk: RiskScoringConfig = field(default_factory=RiskScoringConfig)
    escalation: EscalationConfig = field(default_factory=EscalationConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InterventionConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: Listing every invalid setting
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

        risk = RiskScoringConfig()
        escalation = EscalationConfig()
        try:
            risk = RiskScoringConfig.from_env(environ)
        except ConfigurationError as e:
            problems.extend(e.problems or [e.message])
        try:
            escalation = EscalationConfig.from_env(environ)
        except ConfigurationError as e:
            problems.extend(e.problems or [e.message])

        config = cls(
            scheduler_interval_seconds=_read("RISK_SCHEDULER_INTERVAL_SECONDS", 900.0, float),
            inactivity_sweep_interval_seconds=_read("RISK_INACTIVITY_SWEEP_INTERVAL_SECONDS", 21600.0, float),
            inactivity_threshold_hours=_read("RISK_INACTIVITY_THRESHOLD_HOURS", 24.0, float),
            worker_pool_size=_read("RISK_WORKER_POOL_SIZE", 32, int),
            shutdown_timeout_seconds=_read("SHUTDOWN_TIMEOUT_SECONDS", 30.0, float),
            database_url=environ.get("DATABASE_URL") or None,
            log_level=environ.get("LOG_LEVEL", "INFO"),
            log_format=environ.get("LOG_FORMAT", "text"),
            risk=risk,
            escalation=escalation,
        )

        problems.extend(config.validate(include_children=False))
        if problems:
            raise ConfigurationError("Invalid intervention configuration", problems=problems)
        return config

    def validate(self, include_children: bool = True) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.scheduler_interval_seconds <= 0:
            errors.append("scheduler_interval_seconds must be positive")

        if self.inactivity_sweep_interval_seconds <= 0:
            errors.append("inactivity_sweep_interval_seconds must be positive")

        if self.inactivity_threshold_hours <= 0:
            errors.append("inactivity_threshold_hours must be positive")

        if self.worker_pool_size < 1:
            errors.append("worker_pool_size must be at least 1")

        if self.log_format not in ("json", "text"):
            errors.append("log_format must be 'json' or 'text'")

        if include_children:
            errors.extend(self.risk.validate())
            errors.extend(self.escalation.validate())

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheduler_interval_seconds": self.scheduler_interval_seconds,
            "inactivity_sweep_interval_seconds": self.inactivity_sweep_interval_seconds,
            "inactivity_threshold_hours": self.inactivity_threshold_hours,
            "worker_pool_size": self.worker_pool_size,
            "shutdown_timeout_seconds": self.shutdown_timeout_seconds,
            "persistence_enabled": self.database_url is not None,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "risk": self.risk.to_dict(),
            "escalation": self.escalation.to_dict(),
        }
