"""
Risk Scoring Engine - Assessment Feed.

============================================================
PURPOSE
============================================================
Append-only stream of every RiskAssessment produced.

Consumers either:
- subscribe(callback) to be called on each publish, or
- read(offset) to page through with their own cursor

The feed is independent of escalation: publish() returns as
soon as the entry is appended, and delivery to subscribers
runs in background tasks. A slow or failing subscriber never
delays assessments or notifications.

============================================================
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Set, Union

from .types import RiskAssessment


logger = logging.getLogger(__name__)


FeedCallback = Callable[[RiskAssessment], Union[None, Awaitable[None]]]


# ============================================================
# SUBSCRIBER PROTOCOL
# ============================================================


class AssessmentSubscriber(Protocol):
    """Protocol for feed consumers with a named handler."""

    async def on_assessment(self, assessment: RiskAssessment) -> None:
        ...


class _Subscription:
    """A callback and its most recent delivery task."""

    __slots__ = ("callback", "tail")

    def __init__(self, callback: FeedCallback) -> None:
        self.callback = callback
        self.tail: Optional[asyncio.Task] = None


# ============================================================
# ASSESSMENT FEED
# ============================================================


class AssessmentFeed:
    """
    In-memory append-only assessment log.

    ============================================================
    GUARANTEES
    ============================================================
    - Offsets are stable; entries are never removed
    - Each subscriber sees assessments in publish order
    - A subscriber exception is logged and isolated
    - flush() waits for every pending delivery

    ============================================================
    """

    def __init__(self) -> None:
        self._entries: List[RiskAssessment] = []
        self._subscriptions: List[_Subscription] = []
        self._deliveries: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_deliveries(self) -> int:
        return sum(1 for delivery in self._deliveries if not delivery.done())

    def subscribe(self, callback: FeedCallback) -> Callable[[], None]:
        """
        Register a callback (sync or async).

        Returns:
            Function that removes the subscription
        """
        subscription = _Subscription(callback)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def read(self, offset: int = 0, limit: Optional[int] = None) -> List[RiskAssessment]:
        """Entries from offset onward (at most limit)."""
        if offset < 0:
            raise ValueError("offset must be non-negative")
        end = None if limit is None else offset + limit
        return list(self._entries[offset:end])

    def latest_for(self, candidate_id: str) -> Optional[RiskAssessment]:
        for assessment in reversed(self._entries):
            if assessment.candidate_id == candidate_id:
                return assessment
        return None

    async def publish(self, assessment: RiskAssessment) -> int:
        """
        Append an assessment and schedule subscriber delivery.

        Returns:
            Offset of the new entry
        """
        offset = len(self._entries)
        self._entries.append(assessment)

        for subscription in list(self._subscriptions):
            delivery = asyncio.create_task(
                self._deliver(subscription.callback, assessment, offset, subscription.tail)
            )
            subscription.tail = delivery
            self._deliveries.add(delivery)
            delivery.add_done_callback(self._deliveries.discard)

        return offset

    async def flush(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def cancel_pending(self) -> int:
        """Cancel undelivered notifications; returns how many."""
        pending = [delivery for delivery in self._deliveries if not delivery.done()]
        for delivery in pending:
            delivery.cancel()
        return len(pending)

    async def _deliver(
        self,
        callback: FeedCallback,
        assessment: RiskAssessment,
        offset: int,
        previous: Optional[asyncio.Task],
    ) -> None:
        # Chained on the subscriber's previous delivery to keep order
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        try:
            result = callback(assessment)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                f"Assessment feed subscriber failed for candidate "
                f"{assessment.candidate_id} (offset={offset})"
            )
