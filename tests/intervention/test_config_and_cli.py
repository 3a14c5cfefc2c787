"""
Tests for engine configuration and the command-line entry point.

Tests cover:
- Environment loading and aggregated validation problems
- Policy file overrides
- Argument validation
- Seed file loading
- --show-config and --once runs
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from candidate_journey.types import JourneyState
from core.exceptions import ConfigurationError
from escalation.types import NotificationChannel
from intervention.cli import (
    async_main,
    build_config,
    create_parser,
    load_seed_file,
    main,
    seed_coordinator,
    validate_args,
)
from intervention.config import InterventionConfig
from intervention.coordinator import InterventionCoordinator
from risk_scoring.config import RiskScoringConfig
from risk_scoring.types import RiskLevel

from conftest import FixedProbabilityScorer, RecordingSender


def _write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


# =============================================================
# TEST: Configuration
# =============================================================

class TestInterventionConfig:
    """Test environment loading and validation."""

    def test_defaults(self):
        config = InterventionConfig.from_env({})

        assert config.scheduler_interval_seconds == 900.0
        assert config.inactivity_sweep_interval_seconds == 21600.0
        assert config.inactivity_threshold_hours == 24.0
        assert config.worker_pool_size == 32
        assert config.database_url is None
        assert config.escalation.max_retries == 3
        assert config.validate() == []

    def test_environment_overrides(self):
        config = InterventionConfig.from_env({
            "RISK_SCHEDULER_INTERVAL_SECONDS": "60",
            "RISK_WORKER_POOL_SIZE": "4",
            "RISK_BREAKPOINT_HIGH": "0.9",
            "ESCALATION_MAX_RETRIES": "1",
            "DATABASE_URL": "sqlite+aiosqlite:///engine.db",
            "LOG_FORMAT": "json",
        })

        assert config.scheduler_interval_seconds == 60.0
        assert config.worker_pool_size == 4
        assert config.risk.breakpoints.high == 0.9
        assert config.escalation.backoff_delays() == [1.0]
        assert config.to_dict()["persistence_enabled"] is True
        assert config.log_format == "json"

    def test_all_problems_reported(self):
        with pytest.raises(ConfigurationError) as exc_info:
            InterventionConfig.from_env({
                "RISK_SCHEDULER_INTERVAL_SECONDS": "soon",
                "RISK_WORKER_POOL_SIZE": "0",
                "RISK_BREAKPOINT_LOW": "0.7",
                "ESCALATION_MAX_RETRIES": "-1",
            })

        problems = exc_info.value.problems
        assert len(problems) >= 4
        assert any("RISK_SCHEDULER_INTERVAL_SECONDS" in p for p in problems)
        assert any("worker_pool_size" in p for p in problems)

    def test_risk_config_from_env(self):
        config = RiskScoringConfig.from_env({
            "RISK_FEATURE_WINDOW_DAYS": "14",
            "RISK_MATERIALITY_THRESHOLD": "0.05",
        })

        assert config.window.window_days == 14
        assert config.materiality_threshold == 0.05

        with pytest.raises(ConfigurationError):
            RiskScoringConfig.from_env({"RISK_MATERIALITY_THRESHOLD": "1.5"})

    def test_policy_file_from_env(self, tmp_path):
        path = _write_json(tmp_path / "policy.json", {
            "medium": [{"delay_seconds": 0, "actions": [{"channel": "email", "target": "owner"}]}],
        })

        config = InterventionConfig.from_env({"ESCALATION_POLICY_FILE": path})

        steps = config.escalation.steps_for(RiskLevel.MEDIUM)
        assert steps[0].actions[0].channel == NotificationChannel.EMAIL
        assert len(config.escalation.steps_for(RiskLevel.HIGH)) == 2


# =============================================================
# TEST: Arguments
# =============================================================

class TestArguments:
    """Test the parser, validation and config overrides."""

    def test_parse(self):
        args = create_parser().parse_args(["--data", "seed.json", "--once", "--tick-interval", "30"])

        assert args.data == "seed.json"
        assert args.once
        assert args.tick_interval == 30.0

    def test_validate_args(self, tmp_path):
        parser = create_parser()

        assert validate_args(parser.parse_args([])) == []

        errors = validate_args(parser.parse_args([
            "--tick-interval", "0",
            "--data", str(tmp_path / "missing.json"),
        ]))
        assert len(errors) == 2

    def test_build_config_applies_overrides(self, monkeypatch):
        monkeypatch.setenv("RISK_SCHEDULER_INTERVAL_SECONDS", "600")
        args = create_parser().parse_args(["--tick-interval", "45", "--log-level", "DEBUG"])

        config = build_config(args)

        assert config.scheduler_interval_seconds == 45.0
        assert config.log_level == "DEBUG"

    def test_show_config(self, monkeypatch, capsys):
        monkeypatch.setenv("RISK_SCHEDULER_INTERVAL_SECONDS", "600")

        assert main(["--show-config"]) == 0

        printed = json.loads(capsys.readouterr().out)
        assert printed["scheduler_interval_seconds"] == 600.0
        assert printed["escalation"]["max_retries"] == 3

    def test_invalid_environment_exits_nonzero(self, monkeypatch, capsys):
        monkeypatch.setenv("RISK_WORKER_POOL_SIZE", "many")

        assert main(["--show-config"]) == 1
        assert "RISK_WORKER_POOL_SIZE" in capsys.readouterr().err


# =============================================================
# TEST: Seed data
# =============================================================

class TestSeedData:
    """Test seeding candidates from JSON."""

    def test_load_seed_file(self, tmp_path):
        path = _write_json(tmp_path / "seed.json", {"candidates": [{"candidate_id": "a"}]})
        assert load_seed_file(path) == [{"candidate_id": "a"}]

    def test_seed_file_without_candidates(self, tmp_path):
        path = _write_json(tmp_path / "seed.json", {"people": []})
        with pytest.raises(ConfigurationError):
            load_seed_file(path)

    @pytest.mark.asyncio
    async def test_seed_coordinator(self, clock, reference_time):
        coordinator = InterventionCoordinator(
            clock=clock, sender=RecordingSender(), scorer=FixedProbabilityScorer(0.1)
        )
        entries = [
            {
                "candidate_id": "cand-1",
                "state": "technical_challenge",
                "created_at": (reference_time - timedelta(days=3)).isoformat(),
                "messages": [
                    {"message_id": "m2", "content": "Working on it",
                     "timestamp": (reference_time - timedelta(hours=2)).isoformat()},
                    {"message_id": "m1", "content": "Brief attached", "direction": "outbound",
                     "timestamp": (reference_time - timedelta(hours=5)).isoformat()},
                ],
            },
            {"state": "screening"},
        ]

        assert await seed_coordinator(coordinator, entries) == 1

        candidate = coordinator.registry.get("cand-1")
        assert candidate.current_state == JourneyState.TECHNICAL_CHALLENGE
        assert candidate.last_activity_at == reference_time - timedelta(hours=2)
        assert [m.message_id for m in coordinator.registry.history("cand-1")] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_once_prints_status(self, tmp_path, capsys):
        created = datetime.now(timezone.utc) - timedelta(days=2)
        path = _write_json(tmp_path / "seed.json", {
            "candidates": [
                {"candidate_id": "cand-1", "state": "screening", "created_at": created.isoformat()},
            ],
        })
        args = create_parser().parse_args(["--data", path, "--once"])

        exit_code = await async_main(args, InterventionConfig())

        status = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert status["candidates"] == 1
        assert status["feed_length"] == 1
        assert status["stats"]["inactivity_flags"] == 1
