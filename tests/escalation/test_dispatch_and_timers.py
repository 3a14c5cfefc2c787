"""
Tests for Notification Dispatch and Step Timers.

Tests cover:
- Retry with exponential backoff (1s, 4s, 16s)
- Exhaustion after the retry bound
- Cancellation stopping retries
- Unexpected sender errors
- Generation-checked timers
"""

import asyncio

import pytest

from core.exceptions import DispatchFailedError
from escalation.config import EscalationConfig
from escalation.dispatcher import LoggingNotificationSender, RetryingDispatcher
from escalation.timers import StepTimerService
from escalation.types import DispatchRequest, NotificationChannel

from conftest import FlakySender, GatedSleep


def _request(channel=NotificationChannel.SLACK, urgent=True):
    return DispatchRequest(
        candidate_id="cand-1",
        channel=channel,
        target="#recruiting-alerts",
        payload={"risk_level": "high", "risk_score": 0.91, "factors": []},
        urgent=urgent,
        task_id="task-1",
        step_index=0,
    )


# =============================================================
# TEST: Retrying Dispatcher
# =============================================================

class TestRetryingDispatcher:
    """Test bounded retries around the sender."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, recording_sleep):
        sender = FlakySender()
        dispatcher = RetryingDispatcher(sender, sleep=recording_sleep)

        assert await dispatcher.dispatch(_request()) is True

        candidate_id, channel, payload = sender.sent[0]
        assert (candidate_id, channel) == ("cand-1", "slack")
        assert payload["target"] == "#recruiting-alerts"
        assert payload["urgent"] is True
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, recording_sleep):
        """Two failures, then delivery on the third attempt."""
        sender = FlakySender(failures=2)
        dispatcher = RetryingDispatcher(sender, sleep=recording_sleep)

        assert await dispatcher.dispatch(_request()) is True

        assert sender.attempts["slack"] == 3
        assert recording_sleep.delays == [1.0, 4.0]
        assert dispatcher.get_stats() == {"dispatched": 1, "failed": 0, "retries": 2}

    @pytest.mark.asyncio
    async def test_exhaustion_raises_after_four_attempts(self, recording_sleep):
        """Three retries with 1s/4s/16s backoff, then DispatchFailedError."""
        sender = FlakySender(failures=10)
        dispatcher = RetryingDispatcher(sender, sleep=recording_sleep)

        with pytest.raises(DispatchFailedError) as exc_info:
            await dispatcher.dispatch(_request())

        assert exc_info.value.attempts == 4
        assert exc_info.value.channel == "slack"
        assert sender.attempts["slack"] == 4
        assert recording_sleep.delays == [1.0, 4.0, 16.0]
        assert dispatcher.failed_count == 1

    @pytest.mark.asyncio
    async def test_backoff_delays_match_config(self):
        config = EscalationConfig(max_retries=2, backoff_base_seconds=0.5, backoff_multiplier=2.0)
        assert config.backoff_delays() == [0.5, 1.0]
        assert EscalationConfig().backoff_delays() == [1.0, 4.0, 16.0]

    @pytest.mark.asyncio
    async def test_cancellation_stops_retries(self, recording_sleep):
        """Once should_continue turns False no further attempt is made."""
        sender = FlakySender(failures=10)
        dispatcher = RetryingDispatcher(sender, sleep=recording_sleep)
        checks = []

        def should_continue():
            checks.append(True)
            return len(checks) < 3

        assert await dispatcher.dispatch(_request(), should_continue=should_continue) is False
        assert sender.attempts["slack"] == 2
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self, recording_sleep):
        sender = FlakySender()
        dispatcher = RetryingDispatcher(sender, sleep=recording_sleep)

        assert await dispatcher.dispatch(_request(), should_continue=lambda: False) is False
        assert sender.attempts == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_not_retried(self, recording_sleep):
        class BrokenSender:
            calls = 0

            async def dispatch(self, candidate_id, channel, payload):
                BrokenSender.calls += 1
                raise KeyError("target")

        dispatcher = RetryingDispatcher(BrokenSender(), sleep=recording_sleep)

        with pytest.raises(DispatchFailedError) as exc_info:
            await dispatcher.dispatch(_request())

        assert BrokenSender.calls == 1
        assert isinstance(exc_info.value.cause, KeyError)
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_logging_sender_records(self):
        sender = LoggingNotificationSender()
        dispatcher = RetryingDispatcher(sender)

        await dispatcher.dispatch(_request(NotificationChannel.DASHBOARD, urgent=False))

        assert sender.sent[0][1] == "dashboard"


# =============================================================
# TEST: Step Timers
# =============================================================

class TestStepTimerService:
    """Test cancellable generation-checked timers."""

    @pytest.mark.asyncio
    async def test_fires_when_current(self):
        sleep = GatedSleep()
        timers = StepTimerService(sleep=sleep)
        fired = []

        timers.schedule("task-1", 0, 300.0, is_current=lambda g: True, callback=lambda: fired.append(1))
        await asyncio.sleep(0)
        assert sleep.delays == [300.0]
        assert timers.has_timer("task-1")

        sleep.release()
        for _ in range(3):
            await asyncio.sleep(0)

        assert fired == [1]
        assert timers.fired_count == 1
        assert timers.pending_count == 0

    @pytest.mark.asyncio
    async def test_stale_generation_does_not_fire(self):
        """A timer that wakes after its task moved on does nothing."""
        sleep = GatedSleep()
        timers = StepTimerService(sleep=sleep)
        fired = []
        generation = {"value": 0}

        timers.schedule(
            "task-1", 0, 300.0,
            is_current=lambda g: g == generation["value"],
            callback=lambda: fired.append(1),
        )
        await asyncio.sleep(0)
        generation["value"] = 1
        sleep.release()
        for _ in range(3):
            await asyncio.sleep(0)

        assert fired == []
        assert timers.stale_count == 1

    @pytest.mark.asyncio
    async def test_cancel(self):
        sleep = GatedSleep()
        timers = StepTimerService(sleep=sleep)
        fired = []

        timers.schedule("task-1", 0, 300.0, is_current=lambda g: True, callback=lambda: fired.append(1))
        assert timers.cancel("task-1") is True
        assert timers.cancel("task-1") is False

        sleep.release()
        for _ in range(3):
            await asyncio.sleep(0)

        assert fired == []
        assert timers.pending_count == 0

    @pytest.mark.asyncio
    async def test_reschedule_replaces_timer(self):
        sleep = GatedSleep()
        timers = StepTimerService(sleep=sleep)
        fired = []

        timers.schedule("task-1", 0, 300.0, is_current=lambda g: True, callback=lambda: fired.append("old"))
        timers.schedule("task-1", 1, 60.0, is_current=lambda g: True, callback=lambda: fired.append("new"))
        sleep.release()
        for _ in range(3):
            await asyncio.sleep(0)

        assert fired == ["new"]

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        timers = StepTimerService(sleep=GatedSleep())
        timers.schedule("a", 0, 10.0, is_current=lambda g: True, callback=lambda: None)
        timers.schedule("b", 0, 10.0, is_current=lambda g: True, callback=lambda: None)

        await timers.cancel_all()

        assert timers.pending_count == 0
