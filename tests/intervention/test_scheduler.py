"""
Tests for the Risk Assessment Scheduler.

Tests cover:
- Per-candidate failure isolation
- Skip-not-queue overlap handling
- Snapshot failures failing the tick only
- Bounded worker pool
- Loop start and stop
"""

import asyncio

import pytest

from core.exceptions import ExtractionError, RegistryUnavailableError, ScorerUnavailableError
from intervention.config import InterventionConfig
from intervention.scheduler import RiskAssessmentScheduler


async def _no_sweep():
    return 0


async def _wait_forever(interval):
    await asyncio.Event().wait()


# =============================================================
# TEST: Ticks
# =============================================================

class TestTicks:
    """Test a single assessment tick."""

    @pytest.mark.asyncio
    async def test_assesses_every_candidate(self, clock):
        assessed = []

        async def assess(candidate_id):
            assessed.append(candidate_id)

        scheduler = RiskAssessmentScheduler(lambda: ["a", "b", "c"], assess, _no_sweep, clock=clock)
        result = await scheduler.run_tick()

        assert sorted(assessed) == ["a", "b", "c"]
        assert result.succeeded
        assert (result.candidate_count, result.assessed, result.failed) == (3, 3, 0)
        assert scheduler.last_tick is result

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, clock):
        """One candidate failing never prevents the others."""
        assessed = []

        async def assess(candidate_id):
            if candidate_id == "bad-data":
                raise ExtractionError(candidate_id, "malformed history")
            if candidate_id == "no-model":
                raise ScorerUnavailableError("model")
            if candidate_id == "bug":
                raise RuntimeError("boom")
            assessed.append(candidate_id)

        scheduler = RiskAssessmentScheduler(
            lambda: ["ok-1", "bad-data", "no-model", "bug", "ok-2"], assess, _no_sweep, clock=clock
        )
        result = await scheduler.run_tick()

        assert sorted(assessed) == ["ok-1", "ok-2"]
        assert result.assessed == 2
        assert result.failed == 3
        assert result.retryable == 1
        assert set(result.failures) == {"bad-data", "no-model", "bug"}

    @pytest.mark.asyncio
    async def test_snapshot_failure_fails_tick_only(self, clock):
        calls = {"n": 0}

        def snapshot():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RegistryUnavailableError("registry offline")
            return ["a"]

        async def assess(candidate_id):
            return None

        scheduler = RiskAssessmentScheduler(snapshot, assess, _no_sweep, clock=clock)

        first = await scheduler.run_tick()
        second = await scheduler.run_tick()

        assert not first.succeeded
        assert "registry offline" in first.error
        assert first.assessed == 0
        assert second.succeeded
        assert second.assessed == 1
        assert scheduler.get_stats()["ticks_failed"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, clock):
        """A tick due while the previous one runs is skipped, not queued."""
        gate = asyncio.Event()
        assessed = []

        async def assess(candidate_id):
            await gate.wait()
            assessed.append(candidate_id)

        scheduler = RiskAssessmentScheduler(lambda: ["a"], assess, _no_sweep, clock=clock)

        first = asyncio.create_task(scheduler.run_tick())
        await asyncio.sleep(0)
        assert scheduler.tick_in_progress

        skipped = await scheduler.run_tick()
        gate.set()
        completed = await first

        assert skipped.skipped
        assert not skipped.succeeded
        assert completed.assessed == 1
        assert assessed == ["a"]
        assert scheduler.get_stats()["ticks_skipped"] == 1

    @pytest.mark.asyncio
    async def test_worker_pool_is_bounded(self, clock):
        active = {"now": 0, "max": 0}

        async def assess(candidate_id):
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0)
            active["now"] -= 1

        config = InterventionConfig(worker_pool_size=2)
        scheduler = RiskAssessmentScheduler(
            lambda: [f"c-{i}" for i in range(10)], assess, _no_sweep, config=config, clock=clock
        )
        result = await scheduler.run_tick()

        assert result.assessed == 10
        assert active["max"] == 2

    @pytest.mark.asyncio
    async def test_reconcile_runs_first(self, clock):
        order = []

        async def reconcile():
            order.append("reconcile")
            return 0

        async def assess(candidate_id):
            order.append(candidate_id)

        scheduler = RiskAssessmentScheduler(lambda: ["a"], assess, _no_sweep, clock=clock, reconcile=reconcile)
        await scheduler.run_tick()

        assert order == ["reconcile", "a"]


# =============================================================
# TEST: Sweeps and Lifecycle
# =============================================================

class TestSweepsAndLifecycle:
    """Test inactivity sweeps and the run loops."""

    @pytest.mark.asyncio
    async def test_sweep_returns_flagged_count(self, clock):
        async def sweep():
            return 4

        async def assess(candidate_id):
            return None

        scheduler = RiskAssessmentScheduler(lambda: [], assess, sweep, clock=clock)

        assert await scheduler.run_inactivity_sweep() == 4
        assert scheduler.get_stats()["sweeps"] == 1

    @pytest.mark.asyncio
    async def test_start_runs_tick_and_sweep_then_stops(self, clock):
        """Loops fire immediately, then wait their interval."""
        ticks = []
        sweeps = []

        async def assess(candidate_id):
            ticks.append(candidate_id)

        async def sweep():
            sweeps.append(1)
            return 0

        config = InterventionConfig(scheduler_interval_seconds=900, inactivity_sweep_interval_seconds=21600)
        scheduler = RiskAssessmentScheduler(
            lambda: ["a"], assess, sweep, config=config, clock=clock, sleep=_wait_forever
        )

        await scheduler.start()
        assert scheduler.is_running
        for _ in range(5):
            await asyncio.sleep(0)
        await scheduler.stop()

        assert ticks == ["a"]
        assert sweeps == [1]
        assert not scheduler.is_running
