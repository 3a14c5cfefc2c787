"""
Intervention Coordinator - Package.

============================================================
PURPOSE
============================================================
Runtime that ties the engine together.

- CandidateRegistry: candidates, history, per-candidate locks
- RiskAssessmentScheduler: periodic ticks and inactivity sweeps
- InterventionCoordinator: single point of state mutation
- cli: command-line entry point

============================================================
"""

from .config import InterventionConfig
from .registry import CandidateRegistry
from .scheduler import RiskAssessmentScheduler, TickResult
from .coordinator import InterventionCoordinator

__all__ = [
    "InterventionConfig",
    "CandidateRegistry",
    "RiskAssessmentScheduler",
    "TickResult",
    "InterventionCoordinator",
]
