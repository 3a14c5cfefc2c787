"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
Deterministic building blocks for engine tests:

- MockClock pinned to a known weekday noon
- Recording and flaky notification senders
- Sleep functions that record delays instead of waiting
- A scorer with a settable probability
- The canonical high-risk candidate history

============================================================
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from candidate_journey.types import ActivityMessage, MessageDirection
from core.clock import MockClock
from core.exceptions import DispatchFailedError
from risk_scoring.scorers import RiskScorer


# Wednesday 4 March 2026, 12:00 UTC
REFERENCE_TIME = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


# ============================================================
# TEST DOUBLES
# ============================================================

class RecordingSender:
    """NotificationSender that records every delivery."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    async def dispatch(self, candidate_id: str, channel: str, payload: Dict[str, Any]) -> None:
        self.sent.append((candidate_id, channel, payload))

    def channels(self, candidate_id: Optional[str] = None) -> List[str]:
        return [c for cid, c, _ in self.sent if candidate_id is None or cid == candidate_id]


class FlakySender(RecordingSender):
    """Fails the first `failures` attempts per channel with DispatchFailedError."""

    def __init__(self, failures: int = 0, channels: Optional[List[str]] = None) -> None:
        super().__init__()
        self.failures = failures
        self.failing_channels = channels
        self.attempts: Dict[str, int] = {}

    async def dispatch(self, candidate_id: str, channel: str, payload: Dict[str, Any]) -> None:
        self.attempts[channel] = self.attempts.get(channel, 0) + 1
        failing = self.failing_channels is None or channel in self.failing_channels
        if failing and self.attempts[channel] <= self.failures:
            raise DispatchFailedError(f"{channel} unavailable", candidate_id=candidate_id, channel=channel)
        await super().dispatch(candidate_id, channel, payload)


class RecordingSleep:
    """Records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class GatedSleep:
    """Records requested delays and blocks until release()."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self._gate = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._gate.wait()

    def release(self) -> None:
        self._gate.set()


class FixedProbabilityScorer(RiskScorer):
    """Scorer whose probability is set by the test."""

    name = "fixed"

    def __init__(self, probability: float = 0.0) -> None:
        super().__init__()
        self.probability = probability
        self.initialize()

    def _score(self, vector):
        return self.probability, {"hours_since_last_message": self.probability}


# ============================================================
# HELPERS
# ============================================================

def make_message(
    message_id: str,
    timestamp: datetime,
    content: str = "ok",
    inbound: bool = True,
    sentiment: Optional[float] = None,
) -> ActivityMessage:
    return ActivityMessage(
        message_id=message_id,
        content=content,
        timestamp=timestamp,
        direction=MessageDirection.INBOUND if inbound else MessageDirection.OUTBOUND,
        sentiment=sentiment,
    )


def high_risk_history(now: datetime) -> List[ActivityMessage]:
    """
    Slow, shrinking, souring conversation.

    Three recruiter prompts, each answered 25h later with a
    short reply; sentiment falls from 0.6 to -0.6; the last
    reply was 25h ago.
    """
    hours = lambda h: now - timedelta(hours=h)  # noqa: E731
    return [
        make_message("out-1", hours(120), "Here is the challenge brief", inbound=False),
        make_message("in-1", hours(95), "ok", sentiment=0.6),
        make_message("out-2", hours(80), "Any questions so far?", inbound=False),
        make_message("in-2", hours(55), "fine", sentiment=0.0),
        make_message("out-3", hours(50), "How is it going?", inbound=False),
        make_message("in-3", hours(25), "hm", sentiment=-0.6),
    ]


async def settle(coordinator, rounds: int = 3) -> None:
    """Let woken timers run, then wait for every spawned execution."""
    for _ in range(rounds):
        for _ in range(5):
            await asyncio.sleep(0)
        await coordinator.flush()


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def reference_time() -> datetime:
    return REFERENCE_TIME


@pytest.fixture
def clock() -> MockClock:
    return MockClock(REFERENCE_TIME)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def timer_sleep() -> GatedSleep:
    return GatedSleep()
