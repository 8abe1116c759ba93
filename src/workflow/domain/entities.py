"""
Workflow Domain Entities
========================

Pure Python domain entities for the workflow and SLA engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Every method that
depends on time takes ``now`` explicitly; entities never read a clock.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from src.config import SLAStatus, HistoryTrigger, ACTIVE_SLA_STATUSES
from src.workflow.domain.conditions import ConditionStatus
from src.workflow.domain.value_objects import SLACalculator, SECONDS_PER_DAY


@dataclass
class WorkflowExecution:
    """
    An entity's position in its workflow.

    Exactly one per (entity_type, entity_id). ``version`` increases on every
    state change and backs the optimistic concurrency check.
    """

    id: str
    entity_type: str
    entity_id: str
    workflow_code: str
    current_state: str
    started_at: datetime
    updated_at: datetime
    version: int = 1
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class SLATracker:
    """
    SLA clock for one state entry of one execution.

    Invariants:
    - ``paused_at`` is set iff status is PAUSED
    - a COMPLETED tracker is never modified again
    - ``completed_at`` set means the state was left (closed), whatever the status
    """

    id: str
    execution_id: str
    entity_type: str
    entity_id: str
    state_code: str
    target_days: int
    started_at: datetime
    due_at: datetime
    status: str = SLAStatus.RUNNING
    paused_at: Optional[datetime] = None
    paused_duration_seconds: int = 0
    breached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    escalation_count: int = 0
    last_escalated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """RUNNING or PAUSED."""
        return self.status in ACTIVE_SLA_STATUSES

    @property
    def is_closed(self) -> bool:
        return self.status == SLAStatus.COMPLETED or self.completed_at is not None

    def elapsed_seconds(self, now: datetime) -> float:
        return SLACalculator.effective_elapsed_seconds(
            self.started_at,
            self.paused_duration_seconds,
            self.status,
            self.paused_at,
            now
        )

    def days_in_state(self, now: datetime) -> int:
        """Whole wall-clock days since the state was entered."""
        return int((now - self.started_at).total_seconds() // SECONDS_PER_DAY)

    def pause(self, now: datetime) -> bool:
        """Stop the clock. Only a RUNNING, open tracker can pause."""
        if self.is_closed or self.status != SLAStatus.RUNNING:
            return False
        self.status = SLAStatus.PAUSED
        self.paused_at = now
        return True

    def resume(self, now: datetime) -> bool:
        """
        Restart the clock.

        The finished pause is folded into the cumulative counter and the due
        date slides by the same whole seconds.
        """
        if self.is_closed or self.status != SLAStatus.PAUSED or self.paused_at is None:
            return False
        self._fold_pause(now)
        self.status = SLAStatus.RUNNING
        return True

    def extend(self, additional_days: int, now: datetime) -> bool:
        """
        Push the target out by ``additional_days``.

        A BREACHED tracker whose new due date is in the future runs again.
        """
        if self.is_closed:
            return False
        self.target_days += additional_days
        self.due_at = self.due_at + timedelta(days=additional_days)
        if self.status == SLAStatus.BREACHED and self.due_at > now:
            self.status = SLAStatus.RUNNING
            self.breached_at = None
        return True

    def complete(self, now: datetime) -> bool:
        """
        Close the tracker because its state was left.

        A BREACHED tracker keeps its status so the outcome stays visible in
        statistics; it is only stamped closed.
        """
        if self.is_closed:
            return False
        if self.status == SLAStatus.PAUSED and self.paused_at is not None:
            self._fold_pause(now)
        if self.status != SLAStatus.BREACHED:
            self.status = SLAStatus.COMPLETED
        self.completed_at = now
        return True

    def _fold_pause(self, now: datetime) -> None:
        pause_seconds = max(0, int((now - self.paused_at).total_seconds()))
        self.paused_duration_seconds += pause_seconds
        self.due_at = self.due_at + timedelta(seconds=pause_seconds)
        self.paused_at = None


@dataclass
class WorkflowHistoryEntry:
    """Audit record of one state change (or of the execution's creation)."""

    id: Optional[str]
    execution_id: str
    to_state: str
    performed_at: datetime
    from_state: Optional[str] = None
    transition_code: Optional[str] = None
    performed_by: Optional[str] = None
    performed_by_role: Optional[str] = None
    comment: Optional[str] = None
    trigger: str = HistoryTrigger.MANUAL
    duration_in_state_seconds: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionOption:
    """A transition the caller could take from the current state."""

    code: str
    label: str
    from_state: str
    target_state: str
    can_transition: bool
    conditions: List[ConditionStatus] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confirm_required: bool = False
    confirm_message: Optional[str] = None
    button_variant: str = "default"


@dataclass
class TransitionResult:
    """Outcome of a committed transition."""

    execution_id: str
    entity_type: str
    entity_id: str
    transition_code: str
    from_state: str
    new_state: str
    version: int
    performed_at: datetime
    performed_by: Optional[str] = None
    comment: Optional[str] = None
    sla_tracker_id: Optional[str] = None


@dataclass
class SLAInfo:
    """Read model of the active tracker at a point in time."""

    tracker_id: str
    entity_type: str
    entity_id: str
    state_code: str
    status: str
    target_days: int
    started_at: datetime
    due_at: datetime
    elapsed_seconds: float
    remaining_days: int
    percent_complete: int
    is_breached: bool
    paused_at: Optional[datetime] = None
    paused_duration_seconds: int = 0
    breached_at: Optional[datetime] = None
    escalation_count: int = 0

    @property
    def is_paused(self) -> bool:
        return self.status == SLAStatus.PAUSED

    @property
    def elapsed_days(self) -> float:
        return SLACalculator.round_half_up(self.elapsed_seconds / SECONDS_PER_DAY, 1)

    @classmethod
    def from_tracker(cls, tracker: SLATracker, now: datetime) -> "SLAInfo":
        elapsed = tracker.elapsed_seconds(now)
        return cls(
            tracker_id=tracker.id,
            entity_type=tracker.entity_type,
            entity_id=tracker.entity_id,
            state_code=tracker.state_code,
            status=tracker.status,
            target_days=tracker.target_days,
            started_at=tracker.started_at,
            due_at=tracker.due_at,
            elapsed_seconds=elapsed,
            remaining_days=SLACalculator.remaining_days(tracker.target_days, elapsed),
            percent_complete=SLACalculator.percent_complete(tracker.target_days, elapsed),
            is_breached=SLACalculator.is_breached(tracker.status, tracker.due_at, now),
            paused_at=tracker.paused_at,
            paused_duration_seconds=tracker.paused_duration_seconds,
            breached_at=tracker.breached_at,
            escalation_count=tracker.escalation_count
        )


@dataclass
class BreachResult:
    """A tracker newly recorded as breached by the sweep."""

    tracker_id: str
    execution_id: str
    entity_type: str
    entity_id: str
    state_code: str
    due_at: datetime
    breached_at: datetime
    days_overdue: int


@dataclass
class BreachSweepResult:
    """Partial result of a sweep: what was breached and how many trackers failed."""

    breaches: List[BreachResult] = field(default_factory=list)
    failed_count: int = 0

    def __len__(self) -> int:
        return len(self.breaches)

    def __iter__(self):
        return iter(self.breaches)


@dataclass
class ApproachingBreachInfo:
    """A RUNNING tracker whose due date falls inside the warning window."""

    tracker_id: str
    entity_type: str
    entity_id: str
    state_code: str
    due_at: datetime
    days_remaining: int
    escalation_count: int = 0


@dataclass
class SLAStats:
    """Aggregate tracker counts and outcome metrics."""

    total: int = 0
    running: int = 0
    paused: int = 0
    breached: int = 0
    completed: int = 0
    average_completion_days: Optional[float] = None
    breach_rate: float = 0.0


@dataclass
class EscalationEvent:
    """An escalation rule fired for a tracker."""

    rule_name: str
    action: str
    tracker_id: str
    entity_type: str
    entity_id: str
    state_code: str
    days_in_state: int
    escalation_count: int
    notify_roles: List[str]
    triggered_at: datetime
    message: Optional[str] = None
