"""
Escalation Engine - Notification Dispatch.

============================================================
PURPOSE
============================================================
Hands dispatch requests to the external NotificationSender
with bounded retries.

- The engine never talks to Slack or email itself
- Each failed attempt is retried with exponential backoff
- Retries stop as soon as the owning task is cancelled
- Exhaustion surfaces DispatchFailedError to the caller

============================================================
RETRY TIMELINE (defaults)
============================================================
attempt 1 ─fail─► wait 1s ─► attempt 2 ─fail─► wait 4s ─►
attempt 3 ─fail─► wait 16s ─► attempt 4 ─fail─► DispatchFailedError

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from core.exceptions import DispatchFailedError

from .config import EscalationConfig
from .types import DispatchRequest


logger = logging.getLogger(__name__)


SleepFunc = Callable[[float], Awaitable[Any]]


# ============================================================
# NOTIFICATION SENDER PROTOCOL
# ============================================================


class NotificationSender(Protocol):
    """
    Protocol for transport-specific delivery.

    Implementations raise DispatchFailedError when a single
    delivery attempt fails.
    """

    async def dispatch(self, candidate_id: str, channel: str, payload: Dict[str, Any]) -> None:
        ...


# ============================================================
# LOGGING SENDER
# ============================================================


class LoggingNotificationSender:
    """
    Logs notifications instead of sending them.

    Used by the CLI and for local development. Every dispatch
    is also kept in `sent` for inspection.
    """

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    async def dispatch(self, candidate_id: str, channel: str, payload: Dict[str, Any]) -> None:
        self.sent.append((candidate_id, channel, payload))
        factors = ", ".join(f["name"] for f in payload.get("factors", []))
        logger.info(
            f"NOTIFY [{channel}] -> {payload.get('target')}: candidate={candidate_id} "
            f"level={payload.get('risk_level')} score={payload.get('risk_score')} "
            f"urgent={payload.get('urgent')} factors=[{factors}]"
        )


# ============================================================
# RETRYING DISPATCHER
# ============================================================


class RetryingDispatcher:
    """
    Bounded-retry wrapper around a NotificationSender.

    ============================================================
    CANCELLATION
    ============================================================
    `should_continue` is checked before every attempt. When it
    returns False the dispatch stops quietly and returns False:
    a cancelled task must not notify.

    ============================================================
    """

    def __init__(
        self,
        sender: NotificationSender,
        config: Optional[EscalationConfig] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            sender: External notification sender
            config: Retry bound and backoff settings
            sleep: Awaitable sleep (injectable for tests)
        """
        self._sender = sender
        self._config = config or EscalationConfig()
        self._sleep = sleep or asyncio.sleep

        # Statistics
        self.dispatched_count = 0
        self.failed_count = 0
        self.retry_count = 0

    async def dispatch(
        self,
        request: DispatchRequest,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """
        Dispatch one request with retries.

        Returns:
            True if delivered, False if stopped by cancellation

        Raises:
            DispatchFailedError: After the retry bound is exhausted
        """
        max_attempts = self._config.max_retries + 1
        delay = self._config.backoff_base_seconds
        channel = request.channel.value
        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            if should_continue is not None and not should_continue():
                logger.info(
                    f"Dispatch to {channel} for candidate {request.candidate_id} "
                    f"stopped: task no longer current"
                )
                return False

            try:
                await self._sender.dispatch(request.candidate_id, channel, request.sender_payload())
                self.dispatched_count += 1
                return True

            except DispatchFailedError as e:
                last_error = e
                if attempt < self._config.max_retries:
                    self.retry_count += 1
                    logger.warning(
                        f"Dispatch to {channel} for candidate {request.candidate_id} failed "
                        f"(attempt {attempt + 1}/{max_attempts}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    await self._sleep(delay)
                    delay = delay * self._config.backoff_multiplier
                    continue

            except Exception as e:
                # Unexpected error - do not retry
                logger.exception(
                    f"Unexpected error dispatching to {channel} for candidate {request.candidate_id}: {e}"
                )
                self.failed_count += 1
                raise DispatchFailedError(
                    f"Dispatch to {channel} failed: {e}",
                    candidate_id=request.candidate_id,
                    channel=channel,
                    attempts=attempt + 1,
                    cause=e,
                ) from e

        self.failed_count += 1
        logger.error(
            f"Dispatch to {channel} for candidate {request.candidate_id} failed "
            f"after {max_attempts} attempts"
        )
        raise DispatchFailedError(
            f"Dispatch to {channel} failed after {max_attempts} attempts",
            candidate_id=request.candidate_id,
            channel=channel,
            attempts=max_attempts,
            cause=last_error,
        )

    def get_stats(self) -> Dict[str, int]:
        return {
            "dispatched": self.dispatched_count,
            "failed": self.failed_count,
            "retries": self.retry_count,
        }
