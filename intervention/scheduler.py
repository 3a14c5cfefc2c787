"""
Intervention Coordinator - Risk Assessment Scheduler.

============================================================
RESPONSIBILITY
============================================================
Drives periodic risk assessment of every active candidate.

- Tick every scheduler_interval_seconds
- Inactivity sweep every inactivity_sweep_interval_seconds
- Bounded worker pool per tick: min(candidates, pool size)
- Per-candidate failures are isolated and logged

============================================================
TICK SEMANTICS
============================================================
1. Reconcile escalation tasks (terminal stragglers)
2. Snapshot active candidate ids (failure fails this tick only)
3. Assess each id through the worker pool
4. Record a TickResult

A tick that comes due while the previous one is still
running is skipped, not queued.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ExtractionError, ScorerUnavailableError

from .config import InterventionConfig


logger = logging.getLogger(__name__)


SleepFunc = Callable[[float], Awaitable[Any]]


# ============================================================
# TICK RESULT
# ============================================================


@dataclass
class TickResult:
    """Outcome of one scheduler tick."""

    tick_number: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    candidate_count: int = 0
    assessed: int = 0
    failed: int = 0
    retryable: int = 0
    error: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.skipped and self.error is None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick_number": self.tick_number,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "candidate_count": self.candidate_count,
            "assessed": self.assessed,
            "failed": self.failed,
            "retryable": self.retryable,
            "error": self.error,
        }


# ============================================================
# SCHEDULER
# ============================================================


class RiskAssessmentScheduler:
    """
    Timer-driven assessment of active candidates.

    The scheduler knows nothing about scoring: it is given
    a snapshot function, a per-candidate assessment coroutine
    and a sweep coroutine.
    """

    def __init__(
        self,
        snapshot: Callable[[], List[str]],
        assess: Callable[[str], Awaitable[Any]],
        sweep: Callable[[], Awaitable[int]],
        config: Optional[InterventionConfig] = None,
        clock: Optional[ClockProtocol] = None,
        reconcile: Optional[Callable[[], Awaitable[int]]] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize scheduler.

        Args:
            snapshot: Returns the active candidate ids (may raise)
            assess: Assesses one candidate
            sweep: Runs the inactivity sweep, returns flagged count
            config: Intervals and pool size
            clock: Clock for tick timestamps
            reconcile: Optional task reconciliation run at tick start
            sleep: Awaitable sleep (injectable for tests)
        """
        self._snapshot = snapshot
        self._assess = assess
        self._sweep = sweep
        self._reconcile = reconcile
        self._config = config or InterventionConfig()
        self._clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep

        self._running = False
        self._tick_in_progress = False
        self._sweep_in_progress = False
        self._loop_tasks: List[asyncio.Task] = []
        self._inflight: Set[asyncio.Task] = set()

        # Statistics
        self._tick_count = 0
        self._ticks_skipped = 0
        self._ticks_failed = 0
        self._sweeps_run = 0
        self._sweeps_skipped = 0
        self._last_tick: Optional[TickResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    @property
    def last_tick(self) -> Optional[TickResult]:
        return self._last_tick

    # --------------------------------------------------------
    # TICK
    # --------------------------------------------------------

    async def run_tick(self) -> TickResult:
        """Run one assessment tick (skipped if one is running)."""
        self._tick_count += 1
        result = TickResult(tick_number=self._tick_count, started_at=self._clock.now())

        if self._tick_in_progress:
            self._ticks_skipped += 1
            result.skipped = True
            result.finished_at = result.started_at
            logger.warning(f"Tick {result.tick_number} skipped: previous tick still running")
            return result

        self._tick_in_progress = True
        try:
            await self._execute_tick(result)
        finally:
            self._tick_in_progress = False
            result.finished_at = self._clock.now()
            self._last_tick = result

        logger.info(
            f"Tick {result.tick_number} complete: candidates={result.candidate_count} "
            f"assessed={result.assessed} failed={result.failed}"
            + (f" error={result.error}" if result.error else "")
        )
        return result

    async def _execute_tick(self, result: TickResult) -> None:
        try:
            if self._reconcile is not None:
                await self._reconcile()
            candidate_ids = list(self._snapshot())
        except Exception as e:
            self._ticks_failed += 1
            result.error = str(e)
            logger.error(f"Tick {result.tick_number} failed before assessment: {e}")
            return

        result.candidate_count = len(candidate_ids)
        if not candidate_ids:
            return

        pool_size = min(len(candidate_ids), self._config.worker_pool_size)
        semaphore = asyncio.Semaphore(pool_size)

        async def worker(candidate_id: str) -> None:
            async with semaphore:
                await self._assess_one(candidate_id, result)

        await asyncio.gather(*(worker(candidate_id) for candidate_id in candidate_ids))

    async def _assess_one(self, candidate_id: str, result: TickResult) -> None:
        try:
            await self._assess(candidate_id)
            result.assessed += 1
        except ScorerUnavailableError as e:
            result.failed += 1
            result.retryable += 1
            result.failures[candidate_id] = str(e)
            logger.warning(f"Assessment of {candidate_id} deferred to next tick: {e}")
        except ExtractionError as e:
            result.failed += 1
            result.failures[candidate_id] = str(e)
            logger.error(f"Assessment of {candidate_id} skipped: {e.to_log_format()}")
        except Exception as e:
            result.failed += 1
            result.failures[candidate_id] = str(e)
            logger.exception(f"Unexpected error assessing {candidate_id}: {e}")

    # --------------------------------------------------------
    # INACTIVITY SWEEP
    # --------------------------------------------------------

    async def run_inactivity_sweep(self) -> int:
        """Run one inactivity sweep; returns newly flagged count."""
        if self._sweep_in_progress:
            self._sweeps_skipped += 1
            logger.warning("Inactivity sweep skipped: previous sweep still running")
            return 0

        self._sweep_in_progress = True
        try:
            flagged = await self._sweep()
            self._sweeps_run += 1
            return flagged
        finally:
            self._sweep_in_progress = False

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the tick and sweep loops."""
        if self._running:
            return
        self._running = True
        self._loop_tasks = [
            asyncio.create_task(
                self._loop(self._config.scheduler_interval_seconds, self.run_tick),
                name="risk-scheduler-ticks",
            ),
            asyncio.create_task(
                self._loop(self._config.inactivity_sweep_interval_seconds, self.run_inactivity_sweep),
                name="risk-scheduler-sweeps",
            ),
        ]
        logger.info(
            f"Scheduler started: tick every {self._config.scheduler_interval_seconds}s, "
            f"sweep every {self._config.inactivity_sweep_interval_seconds}s, "
            f"pool size {self._config.worker_pool_size}"
        )

    async def stop(self) -> None:
        """Stop the loops and wait for in-flight runs to finish."""
        self._running = False
        for task in self._loop_tasks:
            task.cancel()
        await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        self._loop_tasks = []

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Scheduler stopped")

    async def _loop(self, interval: float, job: Callable[[], Awaitable[Any]]) -> None:
        # Fire-and-continue so an overrunning job is skipped, not queued
        while self._running:
            run = asyncio.create_task(self._guarded(job))
            self._inflight.add(run)
            run.add_done_callback(self._inflight.discard)
            await self._sleep(interval)

    async def _guarded(self, job: Callable[[], Awaitable[Any]]) -> None:
        try:
            await job()
        except Exception as e:
            logger.exception(f"Scheduled job failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "ticks": self._tick_count,
            "ticks_skipped": self._ticks_skipped,
            "ticks_failed": self._ticks_failed,
            "sweeps": self._sweeps_run,
            "sweeps_skipped": self._sweeps_skipped,
            "last_tick": self._last_tick.to_dict() if self._last_tick else None,
        }
