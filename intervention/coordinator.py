"""
Intervention Coordinator - Core.

============================================================
RESPONSIBILITY
============================================================
Single point of mutation for shared engine state:

- Candidate registry (state, risk fields, activity)
- Assessment history and feed
- Active escalation task per candidate

Every mutation for a candidate happens while holding that
candidate's lock. Dispatch I/O happens outside the lock so
an acknowledgment is never blocked by a slow notification.

============================================================
ESCALATION EXECUTION
============================================================
1. Under the lock, claim the step (advance the step index)
   and remember the task generation
2. Outside the lock, dispatch every action of the step;
   retries stop once the generation changes
3. Under the lock, record the step outcome and either arm
   the timer for the next step or mark the task exhausted

Cancellation (acknowledgment, terminal state, level drop,
supersession) bumps the generation and cancels the timer in
the same synchronous section. Races resolve in favor of
cancellation.

============================================================
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from candidate_journey.state_machine import JourneyStateMachine
from candidate_journey.types import ActivityMessage, Candidate, JourneyState, JourneyTrigger
from core.clock import ClockProtocol, SystemClock, ensure_utc
from core.exceptions import DispatchFailedError, ScorerUnavailableError
from database.engine import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
)
from escalation.dispatcher import NotificationSender, RetryingDispatcher, LoggingNotificationSender
from escalation.engine import EscalationPolicyEngine, build_payload
from escalation.timers import StepTimerService
from escalation.types import (
    DispatchRequest,
    EscalationDecision,
    EscalationEffect,
    EscalationTask,
    StepOutcome,
    TaskStatus,
)
from risk_scoring.features import RiskFeatureExtractor
from risk_scoring.feed import AssessmentFeed
from risk_scoring.repository import AssessmentRepositorySink
from risk_scoring.scorers import RiskScorer, RuleBasedRiskScorer
from risk_scoring.types import RiskAssessment, RiskLevel, categorize_risk

from .config import InterventionConfig
from .registry import CandidateRegistry
from .scheduler import RiskAssessmentScheduler, SleepFunc


logger = logging.getLogger(__name__)


# Step dispatch results
_SENT = "sent"
_STOPPED = "stopped"
_FAILED = "failed"


class InterventionCoordinator:
    """
    Owns the registry, assessment history and active tasks.

    Usage:
        coordinator = InterventionCoordinator(config, sender=my_sender)
        coordinator.register_candidate("cand-1")
        await coordinator.register_activity("cand-1", message)
        await coordinator.start()
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        config: Optional[InterventionConfig] = None,
        clock: Optional[ClockProtocol] = None,
        sender: Optional[NotificationSender] = None,
        scorer: Optional[RiskScorer] = None,
        extractor: Optional[RiskFeatureExtractor] = None,
        registry: Optional[CandidateRegistry] = None,
        feed: Optional[AssessmentFeed] = None,
        sleep: Optional[SleepFunc] = None,
        timer_sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize coordinator.

        Args:
            config: Engine configuration (defaults if omitted)
            clock: Time source for every decision
            sender: External notification sender
            scorer: Risk scorer (rule-based if omitted)
            extractor: Feature extractor
            registry: Candidate registry
            feed: Assessment feed
            sleep: Sleep used for scheduler loops and dispatch backoff
            timer_sleep: Sleep used for escalation step delays
        """
        self.config = config or InterventionConfig()
        self.clock = clock or SystemClock()
        self.registry = registry or CandidateRegistry(window=self.config.risk.window)
        self.feed = feed or AssessmentFeed()
        self.state_machine = JourneyStateMachine(self.clock)
        self.extractor = extractor or RiskFeatureExtractor(self.config.risk)
        self.scorer = scorer or RuleBasedRiskScorer(self.config.risk)
        self.policy = EscalationPolicyEngine(self.config.escalation)
        self.sender = sender or LoggingNotificationSender()
        self.dispatcher = RetryingDispatcher(self.sender, self.config.escalation, sleep=sleep)
        self.timers = StepTimerService(sleep=timer_sleep or sleep)
        self.scheduler = RiskAssessmentScheduler(
            snapshot=self.registry.snapshot_active_ids,
            assess=self.assess_candidate,
            sweep=self.run_inactivity_sweep,
            config=self.config,
            clock=self.clock,
            reconcile=self._prepare_tick,
            sleep=sleep,
        )

        self._tasks: Dict[str, EscalationTask] = {}
        self._closed_tasks: List[EscalationTask] = []
        self._assessments: Dict[str, List[RiskAssessment]] = {}
        self._executions: Set[asyncio.Task] = set()
        self._db_engine = None
        self._started = False

        # Statistics
        self._stats: Dict[str, int] = {
            "assessments": 0,
            "tasks_created": 0,
            "tasks_cancelled": 0,
            "tasks_exhausted": 0,
            "steps_dispatched": 0,
            "steps_failed": 0,
            "dispatch_failures": 0,
            "acknowledgments": 0,
            "inactivity_flags": 0,
            "duplicate_messages": 0,
        }

    # --------------------------------------------------------
    # CANDIDATES AND EVENTS
    # --------------------------------------------------------

    def register_candidate(
        self,
        candidate_id: str,
        state: JourneyState = JourneyState.INITIAL_CONTACT,
        created_at: Optional[datetime] = None,
        state_entered_at: Optional[datetime] = None,
    ) -> Candidate:
        """Add a candidate to the registry (idempotent)."""
        now = self.clock.now()
        created = min(ensure_utc(created_at), now) if created_at else now
        entered = max(min(ensure_utc(state_entered_at), now), created) if state_entered_at else None
        candidate = self.registry.add(
            Candidate(
                candidate_id=candidate_id,
                current_state=JourneyState(state),
                created_at=created,
                state_entered_at=entered,
            )
        )
        self._assessments.setdefault(candidate_id, [])
        return candidate

    async def register_activity(self, candidate_id: str, message: ActivityMessage) -> bool:
        """
        Record a conversation message.

        Duplicate message ids are ignored. Inbound messages
        reset inactivity and acknowledge any escalation task.

        Returns:
            False for a duplicate message, True otherwise

        Raises:
            UnknownCandidateError: If the candidate is not registered
        """
        async with self.registry.lock_for(candidate_id):
            candidate = self.registry.get(candidate_id)
            if not self.registry.add_message(candidate_id, message, now=self.clock.now()):
                self._stats["duplicate_messages"] += 1
                logger.debug(f"Duplicate message {message.message_id} for {candidate_id} ignored")
                return False

            if message.is_inbound:
                timestamp = min(ensure_utc(message.timestamp), self.clock.now())
                if timestamp > candidate.last_activity_at:
                    candidate.last_activity_at = timestamp
                candidate.inactivity_flagged = False
                self._acknowledge(candidate_id, "candidate resumed activity")
            return True

    async def transition(self, candidate_id: str, trigger: JourneyTrigger) -> JourneyState:
        """
        Apply a journey trigger.

        Raises:
            UnknownCandidateError: If the candidate is not registered
            InvalidTransitionError: If the trigger is not allowed
        """
        async with self.registry.lock_for(candidate_id):
            candidate = self.registry.get(candidate_id)
            new_state = self.state_machine.transition(candidate, trigger)

            decision = self.policy.on_state_change(self._tasks.get(candidate_id), new_state)
            if decision.effect == EscalationEffect.CANCEL_TASK:
                self._cancel_task(candidate_id, decision.reason)
            return new_state

    async def request_takeover_ack(self, candidate_id: str) -> bool:
        """
        Operator takeover: cancel the candidate's escalation.

        Returns:
            True if a task was cancelled
        """
        async with self.registry.lock_for(candidate_id):
            self.registry.get(candidate_id)
            return self._acknowledge(candidate_id, "operator takeover")

    # --------------------------------------------------------
    # ASSESSMENT
    # --------------------------------------------------------

    async def assess_candidate(self, candidate_id: str) -> Optional[RiskAssessment]:
        """
        Score one candidate and apply the escalation decision.

        Returns:
            The assessment, or None for a terminal candidate

        Raises:
            ExtractionError: Malformed candidate data
            ScorerUnavailableError: Scorer not initialized
        """
        async with self.registry.lock_for(candidate_id):
            candidate = self.registry.get(candidate_id)
            if candidate.current_state.is_terminal():
                return None

            now = self.clock.now()
            vector = self.extractor.extract(candidate, self.registry.history(candidate_id), now)
            probability, factors = self.scorer.score(vector)
            level = categorize_risk(probability, self.config.risk.breakpoints)

            assessment = RiskAssessment(
                candidate_id=candidate_id,
                probability=probability,
                risk_level=level,
                factors=tuple(factors),
                journey_state=candidate.current_state.value,
                scorer_name=self.scorer.name,
                features=vector.as_dict(),
                assessed_at=now,
            )

            previous_level = RiskLevel(candidate.last_risk_level) if candidate.last_risk_level else None
            candidate.last_risk_score = probability
            candidate.last_risk_level = level.value
            candidate.last_assessed_at = now
            self._assessments.setdefault(candidate_id, []).append(assessment)
            self._stats["assessments"] += 1

            decision = self.policy.on_assessment(
                assessment, self._tasks.get(candidate_id), now, previous_level
            )
            self._apply_decision(candidate_id, assessment, decision, now)

        logger.debug(
            f"Assessed {candidate_id}: p={probability:.3f} level={level.value} "
            f"decision={decision.effect.value}"
        )
        await self.feed.publish(assessment)
        return assessment

    def _apply_decision(
        self,
        candidate_id: str,
        assessment: RiskAssessment,
        decision: EscalationDecision,
        now: datetime,
    ) -> None:
        if decision.effect == EscalationEffect.CANCEL_TASK:
            self._cancel_task(candidate_id, decision.reason)

        elif decision.effect == EscalationEffect.CREATE_TASK:
            if decision.supersedes_task_id:
                self._cancel_task(candidate_id, f"superseded: {decision.reason}")
            task = self.policy.create_task(candidate_id, decision, now)
            self._tasks[candidate_id] = task
            self._stats["tasks_created"] += 1
            self._schedule_step(task, task.steps[0].delay_seconds if task.steps else 0.0)

        elif decision.effect == EscalationEffect.ADVANCE_TASK:
            task = self._tasks[candidate_id]
            self.timers.cancel(task.task_id)
            self._spawn_execution(candidate_id, task.task_id, task.generation, task.current_step_index)

        if decision.immediate_actions:
            payload = build_payload(assessment)
            for request in self.policy.build_immediate_requests(
                candidate_id, decision.immediate_actions, payload
            ):
                self._spawn(self._dispatch_immediate(request))

    # --------------------------------------------------------
    # TASK LIFECYCLE
    # --------------------------------------------------------

    def _acknowledge(self, candidate_id: str, reason: str) -> bool:
        task = self._tasks.get(candidate_id)
        if task is None:
            return False
        task.acknowledged = True
        self._stats["acknowledgments"] += 1
        return self._cancel_task(candidate_id, f"acknowledged: {reason}")

    def _cancel_task(self, candidate_id: str, reason: str) -> bool:
        """Cancel and remove the candidate's task. Caller holds the lock."""
        task = self._tasks.pop(candidate_id, None)
        if task is None:
            return False
        task.cancel(reason)
        self.timers.cancel(task.task_id)
        self._closed_tasks.append(task)
        self._stats["tasks_cancelled"] += 1
        logger.info(f"Escalation task {task.task_id} for {candidate_id} cancelled: {reason}")
        return True

    def _is_task_current(self, candidate_id: str, task_id: str, generation: int) -> bool:
        task = self._tasks.get(candidate_id)
        return task is not None and task.task_id == task_id and task.is_current(generation)

    def _schedule_step(self, task: EscalationTask, delay_seconds: float) -> None:
        step_index = task.current_step_index
        task.next_step_due_at = self.clock.now() + timedelta(seconds=delay_seconds)

        if delay_seconds <= 0:
            self._spawn_execution(task.candidate_id, task.task_id, task.generation, step_index)
            return

        candidate_id, task_id, generation = task.candidate_id, task.task_id, task.generation
        self.timers.schedule(
            task_id,
            generation,
            delay_seconds,
            is_current=lambda g: self._is_task_current(candidate_id, task_id, g),
            callback=lambda: self._spawn_execution(candidate_id, task_id, generation, step_index),
        )

    def _spawn(self, coro: Any) -> asyncio.Task:
        execution = asyncio.create_task(coro)
        self._executions.add(execution)
        execution.add_done_callback(self._executions.discard)
        return execution

    def _spawn_execution(self, candidate_id: str, task_id: str, generation: int, step_index: int) -> None:
        self._spawn(self._execute_step(candidate_id, task_id, generation, step_index))

    async def _execute_step(
        self,
        candidate_id: str,
        task_id: str,
        generation: int,
        step_index: int,
    ) -> None:
        async with self.registry.lock_for(candidate_id):
            task = self._tasks.get(candidate_id)
            if (
                task is None
                or task.task_id != task_id
                or not task.is_current(generation)
                or task.acknowledged
                or task.current_step_index != step_index
            ):
                logger.debug(f"Step {step_index + 1} of task {task_id} no longer current, skipping")
                return

            # Claim the step so a racing trigger cannot run it twice
            task.current_step_index += 1
            task.next_step_due_at = None
            assessment = self._assessments[candidate_id][-1]
            requests = self.policy.build_requests(task, step_index, assessment)

        logger.info(
            f"Executing step {step_index + 1}/{len(task.steps)} of task {task_id} "
            f"for {candidate_id} ({len(requests)} actions)"
        )
        results = await asyncio.gather(
            *(self._dispatch_step_request(request, task, generation) for request in requests)
        )

        async with self.registry.lock_for(candidate_id):
            outcome = self._step_outcome(results)
            task.step_outcomes[step_index] = outcome
            if outcome in (StepOutcome.FAILED, StepOutcome.PARTIALLY_FAILED):
                self._stats["steps_failed"] += 1
            elif outcome == StepOutcome.DISPATCHED:
                self._stats["steps_dispatched"] += 1

            if not self._is_task_current(candidate_id, task_id, generation):
                return

            if task.has_pending_steps:
                self._schedule_step(task, task.steps[task.current_step_index].delay_seconds)
            else:
                task.status = TaskStatus.EXHAUSTED
                task.next_step_due_at = None
                self._stats["tasks_exhausted"] += 1
                logger.info(f"Escalation task {task_id} for {candidate_id} exhausted")

    async def _dispatch_step_request(
        self,
        request: DispatchRequest,
        task: EscalationTask,
        generation: int,
    ) -> str:
        try:
            sent = await self.dispatcher.dispatch(request, should_continue=lambda: task.is_current(generation))
        except DispatchFailedError as e:
            self._stats["dispatch_failures"] += 1
            logger.error(
                f"Step {(request.step_index or 0) + 1} of task {request.task_id}: "
                f"{e.to_log_format()}"
            )
            return _FAILED
        return _SENT if sent else _STOPPED

    @staticmethod
    def _step_outcome(results: List[str]) -> StepOutcome:
        sent = results.count(_SENT)
        failed = results.count(_FAILED)
        if sent == len(results):
            return StepOutcome.DISPATCHED
        if failed == 0:
            return StepOutcome.SKIPPED
        if sent == 0:
            return StepOutcome.FAILED
        return StepOutcome.PARTIALLY_FAILED

    async def _dispatch_immediate(self, request: DispatchRequest) -> None:
        try:
            await self.dispatcher.dispatch(request)
        except DispatchFailedError as e:
            self._stats["dispatch_failures"] += 1
            logger.error(f"One-off {request.channel.value} notification failed: {e.to_log_format()}")

    # --------------------------------------------------------
    # SWEEPS AND RECONCILIATION
    # --------------------------------------------------------

    async def run_inactivity_sweep(self) -> int:
        """
        Flag candidates inactive beyond the threshold.

        Flags once per inactivity episode and raises a
        dashboard flag; never rescores.

        Returns:
            Number of newly flagged candidates
        """
        threshold = self.config.inactivity_threshold_hours
        flagged = 0

        for candidate_id in self.registry.snapshot_active_ids():
            async with self.registry.lock_for(candidate_id):
                candidate = self.registry.find(candidate_id)
                if candidate is None or candidate.current_state.is_terminal():
                    continue
                if candidate.inactivity_flagged:
                    continue
                hours_inactive = self.clock.hours_since(candidate.last_activity_at)
                if hours_inactive < threshold:
                    continue

                candidate.inactivity_flagged = True
                flagged += 1
                self._stats["inactivity_flags"] += 1
                logger.info(f"Candidate {candidate_id} inactive for {hours_inactive:.1f}h, flagged")

                payload = {
                    "reason": "inactivity",
                    "hours_inactive": round(hours_inactive, 2),
                    "journey_state": candidate.current_state.value,
                    "risk_level": candidate.last_risk_level,
                    "risk_score": candidate.last_risk_score,
                    "factors": [],
                    "recommended_actions": ["Send a personal check-in message"],
                }
                for request in self.policy.build_immediate_requests(
                    candidate_id, self._dashboard_actions(), payload
                ):
                    self._spawn(self._dispatch_immediate(request))

        if flagged:
            logger.info(f"Inactivity sweep flagged {flagged} candidates")
        return flagged

    def _dashboard_actions(self) -> tuple:
        steps = self.config.escalation.steps_for(RiskLevel.LOW)
        return steps[0].actions if steps else ()

    async def reconcile_tasks(self) -> int:
        """
        Cancel tasks whose candidate is gone or terminal.

        Returns:
            Number of tasks cancelled
        """
        cancelled = 0
        for candidate_id in list(self._tasks):
            async with self.registry.lock_for(candidate_id):
                candidate = self.registry.find(candidate_id)
                if candidate is None or candidate.current_state.is_terminal():
                    if self._cancel_task(candidate_id, "candidate no longer active"):
                        cancelled += 1
        return cancelled

    async def _prepare_tick(self) -> int:
        self._ensure_scorer_ready()
        return await self.reconcile_tasks()

    def _ensure_scorer_ready(self) -> None:
        if self.scorer.is_ready:
            return
        try:
            self.scorer.initialize()
        except ScorerUnavailableError as e:
            logger.warning(f"Scorer not ready, assessments will be retried next tick: {e}")

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self, run_scheduler: bool = True) -> None:
        """
        Initialize the scorer and persistence, then start the scheduler.

        Args:
            run_scheduler: False to drive ticks manually (CLI --once, tests)
        """
        if self._started:
            return

        logger.info("=" * 60)
        logger.info("STARTING INTERVENTION ENGINE")
        logger.info("=" * 60)

        self._ensure_scorer_ready()

        if self.config.database_url:
            self._db_engine = create_database_engine(self.config.database_url)
            await create_all_tables(self._db_engine)
            sink = AssessmentRepositorySink(
                create_session_factory(self._db_engine),
                engine_version=self.config.risk.engine_version,
            )
            self.feed.subscribe(sink.on_assessment)
            logger.info("Assessment persistence enabled")

        if run_scheduler:
            await self.scheduler.start()
        self._started = True

    async def stop(self) -> None:
        """Stop the scheduler, cancel timers, then drain dispatches and feed deliveries."""
        await self.scheduler.stop()
        await self.timers.cancel_all()
        try:
            await asyncio.wait_for(self.flush(), timeout=self.config.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"{len(self._executions)} escalation dispatches and "
                f"{self.feed.pending_deliveries} feed deliveries still running after "
                f"{self.config.shutdown_timeout_seconds}s, cancelling"
            )
            for execution in list(self._executions):
                execution.cancel()
            self.feed.cancel_pending()

        if self._db_engine is not None:
            await self._db_engine.dispose()
            self._db_engine = None

        self._started = False
        logger.info("Intervention engine stopped")

    async def flush(self) -> None:
        """Wait until in-flight step executions, dispatches and feed deliveries finish."""
        while self._executions or self.feed.pending_deliveries:
            if self._executions:
                await asyncio.gather(*list(self._executions))
            await self.feed.flush()

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_task(self, candidate_id: str) -> Optional[EscalationTask]:
        return self._tasks.get(candidate_id)

    def get_closed_tasks(self, candidate_id: Optional[str] = None) -> List[EscalationTask]:
        return [
            task for task in self._closed_tasks
            if candidate_id is None or task.candidate_id == candidate_id
        ]

    def get_assessments(self, candidate_id: str) -> List[RiskAssessment]:
        return list(self._assessments.get(candidate_id, []))

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of engine state for health endpoints and the CLI."""
        tasks = list(self._tasks.values())
        return {
            "started": self._started,
            "candidates": len(self.registry),
            "candidates_by_state": self.registry.count_by_state(),
            "inactive_flagged": sum(1 for c in self.registry if c.inactivity_flagged),
            "active_tasks": sum(1 for t in tasks if t.status == TaskStatus.ACTIVE),
            "exhausted_tasks": sum(1 for t in tasks if t.status == TaskStatus.EXHAUSTED),
            "pending_timers": self.timers.pending_count,
            "inflight_dispatches": len(self._executions),
            "feed_length": len(self.feed),
            "scorer": {"name": self.scorer.name, "ready": self.scorer.is_ready},
            "stats": dict(self._stats),
            "dispatcher": self.dispatcher.get_stats(),
            "scheduler": self.scheduler.get_stats(),
        }
