"""
Intervention Coordinator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point for the intervention engine.

- Provides argparse-based CLI
- Loads configuration from the environment, then CLI overrides
- Seeds candidates and conversation history from a JSON file
- Runs one assessment tick or the scheduler loop

Notifications go to LoggingNotificationSender; production
deployments plug a real sender into InterventionCoordinator.

============================================================
USAGE
============================================================
python -m intervention --data candidates.json --once
python -m intervention --data candidates.json --tick-interval 60
python -m intervention --show-config

============================================================
SEED FILE FORMAT
============================================================
{
  "candidates": [
    {
      "candidate_id": "cand-1",
      "created_at": "2026-01-01T09:00:00+00:00",
      "state": "technical_challenge",
      "state_entered_at": "2026-01-03T09:00:00+00:00",
      "messages": [
        {"message_id": "m1", "content": "...", "direction": "inbound",
         "timestamp": "2026-01-03T10:00:00+00:00", "sentiment": 0.2}
      ]
    }
  ]
}

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from candidate_journey.types import ActivityMessage, JourneyState
from core.clock import from_iso8601
from core.exceptions import ConfigurationError, InterventionEngineError
from escalation.config import load_policy_file

from .config import InterventionConfig
from .coordinator import InterventionCoordinator


logger = logging.getLogger("intervention")


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("intervention")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="candidate-intervention",
        description="Candidate risk monitoring and intervention engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --data candidates.json --once      # One tick, print status, exit
  %(prog)s --data candidates.json             # Run scheduler until interrupted
  %(prog)s --show-config                      # Print effective configuration
        """
    )

    # --------------------------------------------------------
    # Input
    # --------------------------------------------------------
    parser.add_argument(
        "--data", "-d",
        type=str,
        metavar="PATH",
        help="JSON seed file with candidates and messages",
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--once",
        action="store_true",
        help="Run a single assessment tick and inactivity sweep, then exit",
    )

    execution_group.add_argument(
        "--tick-interval",
        type=float,
        metavar="SECONDS",
        help="Override the assessment tick interval",
    )

    execution_group.add_argument(
        "--policy-file",
        type=str,
        metavar="PATH",
        help="JSON or YAML escalation policy overriding the defaults",
    )

    execution_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="Persist assessments to this database",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: from LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the effective configuration and exit",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate CLI arguments, return list of errors."""
    errors = []

    if args.tick_interval is not None and args.tick_interval <= 0:
        errors.append("--tick-interval must be positive")

    if args.data and not Path(args.data).is_file():
        errors.append(f"--data file not found: {args.data}")

    if args.policy_file and not Path(args.policy_file).is_file():
        errors.append(f"--policy-file not found: {args.policy_file}")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> InterventionConfig:
    """
    Environment configuration with CLI overrides applied.

    Raises:
        ConfigurationError: If the result is invalid
    """
    config = InterventionConfig.from_env()

    if args.tick_interval is not None:
        config.scheduler_interval_seconds = args.tick_interval
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if args.policy_file:
        config.escalation.policy_file = args.policy_file
        config.escalation.policy = load_policy_file(args.policy_file)

    errors = config.validate()
    if errors:
        raise ConfigurationError("Invalid configuration", problems=errors)
    return config


# ============================================================
# SEED DATA
# ============================================================

def load_seed_file(path: str) -> List[Dict[str, Any]]:
    """
    Read the candidates list from a seed file.

    Raises:
        ConfigurationError: If the file is not valid seed JSON
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read seed file {path}: {e}", cause=e)

    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list):
        raise ConfigurationError(f"Seed file {path} has no 'candidates' list")
    return candidates


async def seed_coordinator(coordinator: InterventionCoordinator, entries: List[Dict[str, Any]]) -> int:
    """
    Register seeded candidates and replay their messages.

    Returns:
        Number of candidates registered
    """
    count = 0
    for entry in entries:
        try:
            candidate_id = str(entry["candidate_id"])
            coordinator.register_candidate(
                candidate_id,
                state=JourneyState(entry.get("state", JourneyState.INITIAL_CONTACT.value)),
                created_at=from_iso8601(entry["created_at"]) if entry.get("created_at") else None,
                state_entered_at=(
                    from_iso8601(entry["state_entered_at"]) if entry.get("state_entered_at") else None
                ),
            )
            messages = [ActivityMessage.from_dict(m) for m in entry.get("messages", [])]
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Skipping malformed seed entry {entry!r}: {e}")
            continue

        for message in sorted(messages, key=lambda m: m.timestamp):
            await coordinator.register_activity(candidate_id, message)
        count += 1

    logger.info(f"Seeded {count} candidates")
    return count


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: InterventionConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    coordinator = InterventionCoordinator(config)

    if args.data:
        await seed_coordinator(coordinator, load_seed_file(args.data))

    if args.once:
        try:
            await coordinator.start(run_scheduler=False)
            result = await coordinator.scheduler.run_tick()
            await coordinator.scheduler.run_inactivity_sweep()
            await coordinator.flush()
            print(json.dumps(coordinator.get_status(), indent=2, default=str))
            return 0 if result.succeeded else 1
        finally:
            await coordinator.stop()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await coordinator.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
        return 0
    except InterventionEngineError as e:
        logger.error(f"Fatal error: {e.to_log_format()}", exc_info=True)
        return 1
    finally:
        await coordinator.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        for problem in e.problems or []:
            print(f"  - {problem}", file=sys.stderr)
        return 1

    if args.show_config:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    setup_logging(config.log_level, config.log_format)

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
