"""
Workflow Application Services
=============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: WorkflowService owns transitions, SLAService owns trackers
- Dependency Inversion: Depend on abstractions (store, config provider,
  context resolver, notification sink), not concrete implementations

Both services are stateless between calls. Every operation opens its own
store transaction; coordination between concurrent callers and the breach
sweep happens only through the store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncContextManager, Dict, List, Optional, Tuple
from uuid import uuid4

from src.config import SLAStatus, StateType, HistoryTrigger
from src.core import (
    Clock,
    SystemClock,
    ConcurrentModificationException,
    ConditionNotMetException,
    ConfirmationRequiredException,
    InvalidTransitionException,
    MalformedRuleException,
    RepositoryException,
    ResourceNotFoundException,
    TrackerNotFoundException,
    TransitionNotPermittedException,
    ValidationException,
    WorkflowConfigurationException,
)
from src.workflow.domain import (
    ActorContext,
    ApproachingBreachInfo,
    BreachResult,
    BreachSweepResult,
    ConditionEvaluator,
    EscalationEvent,
    SLACalculator,
    SLAInfo,
    SLAStats,
    SLATracker,
    SECONDS_PER_DAY,
    StateConfig,
    TransitionConfig,
    TransitionOption,
    TransitionResult,
    WorkflowConfig,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowHistoryEntry,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IExecutionRepository(ABC):
    """Interface for workflow execution data access."""

    @abstractmethod
    async def get(self, entity_type: str, entity_id: str) -> Optional[WorkflowExecution]:
        """Get the execution for an entity."""

    @abstractmethod
    async def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Create new execution."""

    @abstractmethod
    async def update_state(
        self,
        execution_id: str,
        expected_version: int,
        new_state: str,
        updated_at: datetime,
        completed_at: Optional[datetime]
    ) -> bool:
        """
        Move the execution to ``new_state`` if it is still at ``expected_version``.

        Returns:
            False if another writer got there first
        """


class IHistoryRepository(ABC):
    """Interface for workflow history data access."""

    @abstractmethod
    async def add(self, entry: WorkflowHistoryEntry) -> WorkflowHistoryEntry:
        """Append a history entry."""

    @abstractmethod
    async def list_for_execution(self, execution_id: str) -> List[WorkflowHistoryEntry]:
        """History of one execution, oldest first."""


class ISLATrackerRepository(ABC):
    """Interface for SLA tracker data access."""

    @abstractmethod
    async def get(self, tracker_id: str) -> Optional[SLATracker]:
        """Get tracker by ID."""

    @abstractmethod
    async def get_active_for_execution(self, execution_id: str) -> Optional[SLATracker]:
        """Most recently started RUNNING or PAUSED tracker."""

    @abstractmethod
    async def list_open_for_execution(self, execution_id: str) -> List[SLATracker]:
        """Trackers not yet closed (RUNNING, PAUSED, or BREACHED without completed_at)."""

    @abstractmethod
    async def list_for_execution(self, execution_id: str) -> List[SLATracker]:
        """All trackers of an execution, oldest first."""

    @abstractmethod
    async def create(self, tracker: SLATracker) -> SLATracker:
        """Create new tracker."""

    @abstractmethod
    async def save(self, tracker: SLATracker, expected_status: str) -> bool:
        """
        Persist mutable fields if the stored status is still ``expected_status``.

        Returns:
            False if the row changed underneath the caller
        """

    @abstractmethod
    async def list_overdue(self, now: datetime) -> List[SLATracker]:
        """RUNNING trackers whose due date has passed."""

    @abstractmethod
    async def mark_breached(self, tracker_id: str, now: datetime) -> Optional[SLATracker]:
        """
        Atomically flip one tracker to BREACHED.

        The update only applies while the tracker is RUNNING and overdue.

        Returns:
            The breached tracker, or None if it no longer qualified
        """

    @abstractmethod
    async def list_approaching(self, now: datetime, until: datetime) -> List[SLATracker]:
        """RUNNING trackers due in the window (now, until]."""

    @abstractmethod
    async def list_escalation_candidates(
        self,
        entity_type: str,
        state_code: str
    ) -> List[SLATracker]:
        """Open RUNNING or BREACHED trackers for a state."""

    @abstractmethod
    async def increment_escalation(self, tracker_id: str, now: datetime) -> Optional[int]:
        """
        Atomically bump the escalation count and stamp last_escalated_at.

        Returns:
            New count, or None if the tracker does not exist
        """

    @abstractmethod
    async def count_by_status(self, entity_type: Optional[str] = None) -> Dict[str, int]:
        """Tracker counts keyed by status."""

    @abstractmethod
    async def list_completed_durations(
        self,
        entity_type: Optional[str] = None
    ) -> List[Tuple[datetime, datetime, int]]:
        """(started_at, completed_at, paused_duration_seconds) of COMPLETED trackers."""


@dataclass
class StoreTransaction:
    """Repositories bound to one unit of work."""
    executions: IExecutionRepository
    history: IHistoryRepository
    trackers: ISLATrackerRepository


class IWorkflowStore(ABC):
    """Interface for transactional access to workflow state."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """
        Open a unit of work.

        Commits on clean exit and rolls back if the block raises.
        """


class IWorkflowConfigProvider(ABC):
    """Interface for workflow definition access."""

    @abstractmethod
    def get_config(self) -> WorkflowConfig:
        """Get current workflow configuration."""


class IEntityContextResolver(ABC):
    """
    Supplies the flattened field snapshot conditions are evaluated against.

    Called outside the workflow store's transactions; implementations may
    open their own sessions on the same database.
    """

    @abstractmethod
    async def resolve(self, entity_type: str, entity_id: str) -> Dict[str, Any]:
        """Resolve the entity context for a given entity."""


class INotificationSink(ABC):
    """Receives workflow and SLA events for external delivery."""

    @abstractmethod
    async def notify_transition(self, result: TransitionResult) -> None:
        """A transition was committed."""

    @abstractmethod
    async def notify_breach(self, breach: BreachResult) -> None:
        """A tracker was newly breached."""

    @abstractmethod
    async def notify_approaching_breach(self, approaching: List[ApproachingBreachInfo]) -> None:
        """Digest of trackers close to their due date."""

    @abstractmethod
    async def notify_escalation(self, event: EscalationEvent) -> None:
        """An escalation rule fired."""


# ========== Application Services ==========

class SLAService:
    """
    Service for SLA tracker lifecycle, breach detection and statistics.

    Tracker open/close during a transition is delegated here by
    WorkflowService so it happens inside the transition's unit of work.
    """

    def __init__(self, store: IWorkflowStore, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock or SystemClock()

    # ----- Transition hooks (run inside the caller's transaction) -----

    async def open_tracker(
        self,
        tx: StoreTransaction,
        execution: WorkflowExecution,
        state: StateConfig,
        now: datetime
    ) -> Optional[SLATracker]:
        """Start a RUNNING tracker if the state has an SLA target."""
        if not state.has_sla:
            return None

        tracker = SLATracker(
            id=str(uuid4()),
            execution_id=execution.id,
            entity_type=execution.entity_type,
            entity_id=execution.entity_id,
            state_code=state.code,
            target_days=state.sla_days,
            started_at=now,
            due_at=SLACalculator.due_at(now, state.sla_days),
        )
        return await tx.trackers.create(tracker)

    async def close_trackers(
        self,
        tx: StoreTransaction,
        execution_id: str,
        now: datetime
    ) -> int:
        """Close every open tracker of an execution. Returns how many were closed."""
        closed = 0
        for tracker in await tx.trackers.list_open_for_execution(execution_id):
            previous_status = tracker.status
            tracker.complete(now)
            if await tx.trackers.save(tracker, previous_status):
                closed += 1
                continue

            # Status changed since listing (the sweep breached it); close the fresh row
            fresh = await tx.trackers.get(tracker.id)
            if fresh is None or fresh.is_closed:
                continue
            previous_status = fresh.status
            fresh.complete(now)
            if not await tx.trackers.save(fresh, previous_status):
                raise ConcurrentModificationException(
                    fresh.entity_type, fresh.entity_id, None, None
                )
            closed += 1
        return closed

    # ----- Queries -----

    async def get_current_sla(self, entity_type: str, entity_id: str) -> Optional[SLAInfo]:
        """
        SLA of the entity's current state.

        Returns:
            SLAInfo, or None if the entity has no execution or no active tracker
        """
        async with self._store.transaction() as tx:
            execution = await tx.executions.get(entity_type, entity_id)
            if execution is None:
                return None
            tracker = await tx.trackers.get_active_for_execution(execution.id)

        if tracker is None:
            return None
        return SLAInfo.from_tracker(tracker, self._clock.now())

    async def get_sla_history(self, entity_type: str, entity_id: str) -> List[SLATracker]:
        """Every tracker the entity has had, oldest first."""
        async with self._store.transaction() as tx:
            execution = await tx.executions.get(entity_type, entity_id)
            if execution is None:
                return []
            return await tx.trackers.list_for_execution(execution.id)

    async def get_tracker(self, tracker_id: str) -> SLATracker:
        async with self._store.transaction() as tx:
            tracker = await tx.trackers.get(tracker_id)
        if tracker is None:
            raise TrackerNotFoundException(tracker_id)
        return tracker

    # ----- Commands -----

    async def pause_sla(self, tracker_id: str) -> bool:
        """
        Pause a RUNNING tracker.

        Returns:
            True if the tracker was paused; False is a no-op (missing, closed,
            or not RUNNING)
        """
        return await self._mutate(tracker_id, "pause", lambda t, now: t.pause(now))

    async def resume_sla(self, tracker_id: str) -> bool:
        """
        Resume a PAUSED tracker, sliding its due date by the pause length.

        Returns:
            True if resumed; False is a no-op (idempotent double resume)
        """
        return await self._mutate(tracker_id, "resume", lambda t, now: t.resume(now))

    async def extend_sla(self, tracker_id: str, additional_days: int) -> bool:
        """
        Add days to both the target and the due date.

        Raises:
            ValidationException: If additional_days is not positive
        """
        if additional_days < 1:
            raise ValidationException(
                "additional_days must be at least 1",
                {"additional_days": additional_days}
            )
        return await self._mutate(
            tracker_id, "extend", lambda t, now: t.extend(additional_days, now)
        )

    async def _mutate(self, tracker_id: str, operation: str, change) -> bool:
        now = self._clock.now()
        async with self._store.transaction() as tx:
            tracker = await tx.trackers.get(tracker_id)
            if tracker is None:
                logger.info(
                    "SLA tracker not found, ignoring",
                    extra={"tracker_id": tracker_id, "operation": operation}
                )
                return False

            previous_status = tracker.status
            if not change(tracker, now):
                return False
            saved = await tx.trackers.save(tracker, previous_status)

        if saved:
            logger.info(
                f"SLA tracker {operation}",
                extra={
                    "tracker_id": tracker_id,
                    "entity_type": tracker.entity_type,
                    "entity_id": tracker.entity_id,
                    "status": tracker.status,
                    "due_at": tracker.due_at.isoformat()
                }
            )
        return saved

    async def increment_escalation_count(self, tracker_id: str) -> int:
        """
        Bump the escalation counter and stamp ``last_escalated_at``.

        Raises:
            TrackerNotFoundException: If the tracker does not exist
        """
        async with self._store.transaction() as tx:
            count = await tx.trackers.increment_escalation(tracker_id, self._clock.now())
        if count is None:
            raise TrackerNotFoundException(tracker_id)
        return count

    async def check_for_breaches(self) -> BreachSweepResult:
        """
        Record every overdue RUNNING tracker as BREACHED.

        Each tracker is breached in its own transaction with a conditional
        update, so repeated or concurrent sweeps breach it at most once.
        Per-tracker failures are logged and counted; a failure to list
        candidates propagates.
        """
        now = self._clock.now()
        async with self._store.transaction() as tx:
            candidates = await tx.trackers.list_overdue(now)

        result = BreachSweepResult()
        for candidate in candidates:
            try:
                async with self._store.transaction() as tx:
                    breached = await tx.trackers.mark_breached(candidate.id, now)
            except Exception as e:
                result.failed_count += 1
                logger.error(
                    "Failed to record SLA breach",
                    extra={
                        "tracker_id": candidate.id,
                        "entity_type": candidate.entity_type,
                        "entity_id": candidate.entity_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                continue

            if breached is None:
                continue

            result.breaches.append(BreachResult(
                tracker_id=breached.id,
                execution_id=breached.execution_id,
                entity_type=breached.entity_type,
                entity_id=breached.entity_id,
                state_code=breached.state_code,
                due_at=breached.due_at,
                breached_at=now,
                days_overdue=max(1, SLACalculator.days_between_ceil(breached.due_at, now))
            ))

        if result.breaches or result.failed_count:
            logger.warning(
                "SLA breaches detected",
                extra={
                    "breached": len(result.breaches),
                    "failed": result.failed_count,
                    "candidates": len(candidates)
                }
            )
        return result

    async def get_approaching_breaches(self, warning_days: int = 3) -> List[ApproachingBreachInfo]:
        """RUNNING trackers due within the next ``warning_days``. Read-only."""
        now = self._clock.now()
        until = now + timedelta(days=warning_days)
        async with self._store.transaction() as tx:
            trackers = await tx.trackers.list_approaching(now, until)

        return [
            ApproachingBreachInfo(
                tracker_id=t.id,
                entity_type=t.entity_type,
                entity_id=t.entity_id,
                state_code=t.state_code,
                due_at=t.due_at,
                days_remaining=max(0, SLACalculator.days_between_ceil(now, t.due_at)),
                escalation_count=t.escalation_count
            )
            for t in sorted(trackers, key=lambda t: t.due_at)
        ]

    async def list_escalation_candidates(
        self,
        entity_type: str,
        state_code: str
    ) -> List[SLATracker]:
        async with self._store.transaction() as tx:
            return await tx.trackers.list_escalation_candidates(entity_type, state_code)

    async def get_stats(self, entity_type: Optional[str] = None) -> SLAStats:
        """
        Aggregate tracker counts and outcomes.

        ``breach_rate`` covers finished outcomes only: breached / (breached +
        completed). Running trackers are excluded.
        """
        async with self._store.transaction() as tx:
            counts = await tx.trackers.count_by_status(entity_type)
            durations = await tx.trackers.list_completed_durations(entity_type)

        running = counts.get(SLAStatus.RUNNING, 0)
        paused = counts.get(SLAStatus.PAUSED, 0)
        breached = counts.get(SLAStatus.BREACHED, 0)
        completed = counts.get(SLAStatus.COMPLETED, 0)

        average_days = None
        if durations:
            total_seconds = sum(
                (completed_at - started_at).total_seconds() - paused_seconds
                for started_at, completed_at, paused_seconds in durations
            )
            average_days = SLACalculator.round_half_up(
                total_seconds / len(durations) / SECONDS_PER_DAY, 1
            )

        outcomes = breached + completed
        breach_rate = SLACalculator.round_half_up(breached / outcomes * 100, 1) if outcomes else 0.0

        return SLAStats(
            total=sum(counts.values()),
            running=running,
            paused=paused,
            breached=breached,
            completed=completed,
            average_completion_days=average_days,
            breach_rate=breach_rate
        )


class WorkflowService:
    """
    Configuration-driven workflow engine.

    One instance serves every configured entity type; states and transitions
    come from the config provider on each call so a hot reload takes effect
    immediately.
    """

    def __init__(
        self,
        store: IWorkflowStore,
        config_provider: IWorkflowConfigProvider,
        context_resolver: IEntityContextResolver,
        sla_service: SLAService,
        notification_sink: Optional[INotificationSink] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._config_provider = config_provider
        self._context_resolver = context_resolver
        self._sla_service = sla_service
        self._sink = notification_sink
        self._clock = clock or SystemClock()

    def get_definition(self, entity_type: str) -> WorkflowDefinition:
        """
        Raises:
            ResourceNotFoundException: If no workflow is configured for the type
        """
        definition = self._config_provider.get_config().for_entity_type(entity_type)
        if definition is None:
            raise ResourceNotFoundException("Workflow", entity_type)
        return definition

    async def get_or_create_execution(self, entity_type: str, entity_id: str) -> WorkflowExecution:
        """
        Get the entity's execution, starting it in the initial state on first touch.
        """
        definition = self.get_definition(entity_type)

        async with self._store.transaction() as tx:
            execution = await tx.executions.get(entity_type, entity_id)
        if execution is not None:
            return execution

        try:
            return await self._create_execution(definition, entity_id)
        except RepositoryException:
            # Lost a creation race; the winner's row is there now
            async with self._store.transaction() as tx:
                execution = await tx.executions.get(entity_type, entity_id)
            if execution is None:
                raise
            return execution

    async def _create_execution(self, definition: WorkflowDefinition, entity_id: str) -> WorkflowExecution:
        now = self._clock.now()
        initial = definition.get_state(definition.initial_state)

        async with self._store.transaction() as tx:
            execution = await tx.executions.create(WorkflowExecution(
                id=str(uuid4()),
                entity_type=definition.entity_type,
                entity_id=entity_id,
                workflow_code=definition.code,
                current_state=initial.code,
                started_at=now,
                updated_at=now,
            ))
            await tx.history.add(WorkflowHistoryEntry(
                id=None,
                execution_id=execution.id,
                to_state=initial.code,
                performed_at=now,
                trigger=HistoryTrigger.AUTOMATIC,
                details={"event": "workflow_started", "workflow_code": definition.code}
            ))

        logger.info(
            "Workflow execution started",
            extra={
                "entity_type": definition.entity_type,
                "entity_id": entity_id,
                "workflow_code": definition.code,
                "state": initial.code
            }
        )
        return execution

    async def get_current_state(self, entity_type: str, entity_id: str) -> WorkflowExecution:
        return await self.get_or_create_execution(entity_type, entity_id)

    async def get_history(self, entity_type: str, entity_id: str) -> List[WorkflowHistoryEntry]:
        async with self._store.transaction() as tx:
            execution = await tx.executions.get(entity_type, entity_id)
            if execution is None:
                return []
            return await tx.history.list_for_execution(execution.id)

    async def get_available_transitions(
        self,
        entity_type: str,
        entity_id: str,
        actor: Optional[ActorContext] = None
    ) -> List[TransitionOption]:
        """
        Every transition leaving the current state that the actor's role may take.

        Transitions whose conditions fail are still returned with
        ``can_transition=False`` and per-condition status; the execute path
        re-validates.

        Raises:
            WorkflowConfigurationException: If a condition rule is malformed
        """
        actor = actor or ActorContext()
        definition = self.get_definition(entity_type)
        execution = await self.get_or_create_execution(entity_type, entity_id)

        candidates = [
            t for t in definition.transitions_from(execution.current_state)
            if t.allows_role(actor.role)
        ]
        if not candidates:
            return []

        context = await self._build_context(execution, actor)

        options = []
        for transition in candidates:
            try:
                can_transition = ConditionEvaluator.evaluate(transition.condition, context)
                statuses = ConditionEvaluator.explain(transition.condition, context)
            except MalformedRuleException as e:
                self._log_malformed_rule(definition, transition, e)
                raise WorkflowConfigurationException() from e

            options.append(TransitionOption(
                code=transition.code,
                label=transition.label or transition.code,
                from_state=transition.from_state,
                target_state=transition.to_state,
                can_transition=can_transition,
                conditions=statuses,
                warnings=self._warnings_for(definition, transition),
                confirm_required=transition.confirm_required,
                confirm_message=transition.confirm_message,
                button_variant=transition.button_variant
            ))
        return options

    async def execute_transition(
        self,
        entity_type: str,
        entity_id: str,
        transition: str,
        actor: Optional[ActorContext] = None,
        comment: Optional[str] = None,
        expected_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> TransitionResult:
        """
        Validate and apply a transition atomically.

        Args:
            transition: Transition code, or a target state code when exactly
                one transition from the current state leads there
            expected_state: The state the caller believes the entity is in

        Raises:
            InvalidTransitionException: No such transition from the current state
            TransitionNotPermittedException: Actor's role may not take it
            ConditionNotMetException: Condition tree evaluated false
            ConfirmationRequiredException: Missing mandatory comment
            ConcurrentModificationException: State moved under the caller
            WorkflowConfigurationException: Condition rule is malformed
        """
        actor = actor or ActorContext()
        definition = self.get_definition(entity_type)
        requested_at = self._clock.now()
        await self.get_or_create_execution(entity_type, entity_id)

        # Entity data is loaded before the write transaction so loaders that
        # read through the same database never wait on its lock.
        resolved = await self._context_resolver.resolve(entity_type, entity_id)

        async with self._store.transaction() as tx:
            execution = await tx.executions.get(entity_type, entity_id)
            if expected_state is not None and execution.current_state != expected_state:
                raise ConcurrentModificationException(
                    entity_type, entity_id, expected_state, execution.current_state
                )

            config = definition.find_transition(execution.current_state, transition)
            if config is None:
                left_state = await self._state_left_since(
                    tx, definition, execution, transition, requested_at
                )
                if left_state is not None:
                    raise ConcurrentModificationException(
                        entity_type, entity_id, left_state, execution.current_state
                    )
                raise InvalidTransitionException(transition, execution.current_state)
            if not config.allows_role(actor.role):
                raise TransitionNotPermittedException(config.code, actor.role)

            context = self._merge_context(resolved, execution, actor)
            try:
                passed = ConditionEvaluator.evaluate(config.condition, context)
                if not passed:
                    unmet = [
                        s.label for s in ConditionEvaluator.explain(config.condition, context)
                        if not s.met
                    ]
                    raise ConditionNotMetException(config.code, unmet)
            except MalformedRuleException as e:
                self._log_malformed_rule(definition, config, e)
                raise WorkflowConfigurationException() from e

            if config.confirm_required and not (comment and comment.strip()):
                raise ConfirmationRequiredException(config.code, config.confirm_message)

            now = self._clock.now()
            target = definition.get_state(config.to_state)
            completed_at = now if target.state_type == StateType.TERMINAL else None

            updated = await tx.executions.update_state(
                execution.id, execution.version, target.code, now, completed_at
            )
            if not updated:
                raise ConcurrentModificationException(
                    entity_type, entity_id, execution.current_state, None
                )

            await self._sla_service.close_trackers(tx, execution.id, now)

            await tx.history.add(WorkflowHistoryEntry(
                id=None,
                execution_id=execution.id,
                from_state=execution.current_state,
                to_state=target.code,
                transition_code=config.code,
                performed_at=now,
                performed_by=actor.user_id,
                performed_by_role=actor.role,
                comment=comment,
                trigger=HistoryTrigger.MANUAL,
                duration_in_state_seconds=int((now - execution.updated_at).total_seconds()),
                details=details or {}
            ))

            tracker = await self._sla_service.open_tracker(tx, execution, target, now)

        result = TransitionResult(
            execution_id=execution.id,
            entity_type=entity_type,
            entity_id=entity_id,
            transition_code=config.code,
            from_state=execution.current_state,
            new_state=target.code,
            version=execution.version + 1,
            performed_at=now,
            performed_by=actor.user_id,
            comment=comment,
            sla_tracker_id=tracker.id if tracker else None
        )

        logger.info(
            "Workflow transition executed",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "transition": config.code,
                "from_state": result.from_state,
                "to_state": result.new_state,
                "user_id": actor.user_id
            }
        )

        await self._notify_transition(result)
        return result

    async def _state_left_since(
        self,
        tx: StoreTransaction,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
        requested: str,
        since: datetime
    ) -> Optional[str]:
        """
        The state the execution moved out of after ``since``, if ``requested``
        was a valid edge from it.
        """
        if execution.updated_at < since:
            return None
        for entry in await tx.history.list_for_execution(execution.id):
            if (
                entry.to_state == execution.current_state
                and entry.from_state is not None
                and entry.performed_at >= since
                and definition.find_transition(entry.from_state, requested) is not None
            ):
                return entry.from_state
        return None

    async def _build_context(self, execution: WorkflowExecution, actor: ActorContext) -> Dict[str, Any]:
        resolved = await self._context_resolver.resolve(execution.entity_type, execution.entity_id)
        return self._merge_context(resolved, execution, actor)

    @staticmethod
    def _merge_context(
        resolved: Optional[Dict[str, Any]],
        execution: WorkflowExecution,
        actor: ActorContext
    ) -> Dict[str, Any]:
        base = {
            "status": execution.current_state,
            "entityType": execution.entity_type,
            "entityId": execution.entity_id,
            "actor": {"id": actor.user_id, "role": actor.role},
        }
        return {**(resolved or {}), **base}

    def _warnings_for(self, definition: WorkflowDefinition, transition: TransitionConfig) -> List[str]:
        warnings = []
        if transition.confirm_required:
            warnings.append(transition.confirm_message or "Confirmation comment required")
        target = definition.get_state(transition.to_state)
        if target is not None and target.has_sla:
            label = target.label or target.code
            warnings.append(f"Entering {label} starts a {target.sla_days}-day SLA")
        return warnings

    def _log_malformed_rule(
        self,
        definition: WorkflowDefinition,
        transition: TransitionConfig,
        error: MalformedRuleException
    ) -> None:
        logger.error(
            "Malformed transition condition",
            extra={
                "workflow_code": definition.code,
                "transition": transition.code,
                "from_state": transition.from_state,
                "condition": transition.condition.model_dump() if transition.condition else None,
                "error": str(error)
            }
        )

    async def _notify_transition(self, result: TransitionResult) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.notify_transition(result)
        except Exception as e:
            logger.error(
                "Transition notification failed",
                extra={
                    "entity_type": result.entity_type,
                    "entity_id": result.entity_id,
                    "transition": result.transition_code,
                    "error": str(e)
                }
            )
