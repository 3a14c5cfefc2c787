"""
Escalation Engine - Step Timers.

============================================================
PURPOSE
============================================================
One cancellable asyncio timer per escalation task.

A timer sleeps for the step delay, then asks the owner
whether the task generation it was armed for is still
current. Only then does it fire its callback.

Cancelling a timer is synchronous, so it can happen in the
same critical section as the state change that caused it.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


SleepFunc = Callable[[float], Awaitable[Any]]


class StepTimerService:
    """Per-task delay timers checked against task generation."""

    def __init__(self, sleep: Optional[SleepFunc] = None):
        self._sleep = sleep or asyncio.sleep
        self._timers: Dict[str, Tuple[int, asyncio.Task]] = {}
        self.fired_count = 0
        self.stale_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    def has_timer(self, task_id: str) -> bool:
        return task_id in self._timers

    def schedule(
        self,
        task_id: str,
        generation: int,
        delay_seconds: float,
        is_current: Callable[[int], bool],
        callback: Callable[[], None],
    ) -> None:
        """
        Arm the timer for a task, replacing any previous one.

        Args:
            task_id: Owning escalation task
            generation: Task generation the timer belongs to
            delay_seconds: Wait before firing
            is_current: Generation check evaluated at fire time
            callback: Called (synchronously) if still current
        """
        self.cancel(task_id)
        timer = asyncio.create_task(
            self._run(task_id, generation, delay_seconds, is_current, callback),
            name=f"escalation-timer-{task_id}",
        )
        self._timers[task_id] = (generation, timer)

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending timer; returns True if one existed."""
        entry = self._timers.pop(task_id, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    async def cancel_all(self) -> None:
        timers = [timer for _, timer in self._timers.values()]
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    async def _run(
        self,
        task_id: str,
        generation: int,
        delay_seconds: float,
        is_current: Callable[[int], bool],
        callback: Callable[[], None],
    ) -> None:
        await self._sleep(delay_seconds)

        entry = self._timers.get(task_id)
        if entry is not None and entry[1] is asyncio.current_task():
            del self._timers[task_id]

        if not is_current(generation):
            self.stale_count += 1
            logger.debug(f"Timer for task {task_id} (generation {generation}) is stale, ignoring")
            return

        self.fired_count += 1
        callback()
