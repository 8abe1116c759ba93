"""
Workflow Application DTOs
=========================

Data Transfer Objects for the workflow API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.workflow.domain import (
    ApproachingBreachInfo,
    SLAInfo,
    SLAStats,
    SLATracker,
    TransitionOption,
    TransitionResult,
    WorkflowExecution,
    WorkflowHistoryEntry,
)


# ========== Type Aliases for Literals ==========
SLAStatusStr = Literal["RUNNING", "PAUSED", "BREACHED", "COMPLETED"]


# ========== Request DTOs ==========

class ExecuteTransitionRequest(BaseModel):
    """Request model for executing a transition."""
    transition: str = Field(
        ...,
        min_length=1,
        description="Transition code, or target state code when unambiguous"
    )
    comment: Optional[str] = Field(None, description="Confirmation comment")
    expected_state: Optional[str] = Field(
        None,
        description="State the caller last saw; mismatch returns 409"
    )
    details: Dict[str, Any] = Field(default_factory=dict, description="Extra audit details")

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class ExtendSLARequest(BaseModel):
    """Request model for extending an SLA."""
    additional_days: int = Field(..., ge=1, le=365, description="Days to add to the target")
    reason: Optional[str] = Field(None, description="Why the extension was granted")


# ========== Response DTOs ==========

class ConditionStatusResponse(BaseModel):
    label: str
    met: bool


class TransitionOptionResponse(BaseModel):
    """Response model for one available transition."""
    code: str
    label: str
    from_state: str
    target_state: str
    can_transition: bool = Field(..., description="Authoritative gate for the UI")
    conditions: List[ConditionStatusResponse] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    confirm_required: bool = False
    confirm_message: Optional[str] = None
    button_variant: str = "default"

    @classmethod
    def from_domain(cls, option: TransitionOption) -> "TransitionOptionResponse":
        return cls(
            code=option.code,
            label=option.label,
            from_state=option.from_state,
            target_state=option.target_state,
            can_transition=option.can_transition,
            conditions=[
                ConditionStatusResponse(label=c.label, met=c.met) for c in option.conditions
            ],
            warnings=option.warnings,
            confirm_required=option.confirm_required,
            confirm_message=option.confirm_message,
            button_variant=option.button_variant
        )


class AvailableTransitionsResponse(BaseModel):
    entity_type: str
    entity_id: str
    current_state: str
    transitions: List[TransitionOptionResponse]


class TransitionResultResponse(BaseModel):
    """Response model for an executed transition."""
    execution_id: str
    entity_type: str
    entity_id: str
    transition: str
    from_state: str
    new_state: str
    version: int
    performed_at: datetime
    sla_tracker_id: Optional[str] = None

    @classmethod
    def from_domain(cls, result: TransitionResult) -> "TransitionResultResponse":
        return cls(
            execution_id=result.execution_id,
            entity_type=result.entity_type,
            entity_id=result.entity_id,
            transition=result.transition_code,
            from_state=result.from_state,
            new_state=result.new_state,
            version=result.version,
            performed_at=result.performed_at,
            sla_tracker_id=result.sla_tracker_id
        )


class ExecutionResponse(BaseModel):
    """Response model for an entity's workflow state."""
    execution_id: str
    entity_type: str
    entity_id: str
    workflow_code: str
    current_state: str
    version: int
    started_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, execution: WorkflowExecution) -> "ExecutionResponse":
        return cls(
            execution_id=execution.id,
            entity_type=execution.entity_type,
            entity_id=execution.entity_id,
            workflow_code=execution.workflow_code,
            current_state=execution.current_state,
            version=execution.version,
            started_at=execution.started_at,
            updated_at=execution.updated_at,
            completed_at=execution.completed_at
        )


class HistoryEntryResponse(BaseModel):
    id: Optional[str]
    from_state: Optional[str]
    to_state: str
    transition: Optional[str]
    performed_at: datetime
    performed_by: Optional[str]
    performed_by_role: Optional[str]
    comment: Optional[str]
    trigger: str
    duration_in_state_seconds: Optional[int]
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, entry: WorkflowHistoryEntry) -> "HistoryEntryResponse":
        return cls(
            id=entry.id,
            from_state=entry.from_state,
            to_state=entry.to_state,
            transition=entry.transition_code,
            performed_at=entry.performed_at,
            performed_by=entry.performed_by,
            performed_by_role=entry.performed_by_role,
            comment=entry.comment,
            trigger=entry.trigger,
            duration_in_state_seconds=entry.duration_in_state_seconds,
            details=entry.details
        )


class SLAInfoResponse(BaseModel):
    """Response model for the active SLA of an entity."""
    tracker_id: str
    state_code: str
    status: SLAStatusStr
    target_days: int
    started_at: datetime
    due_at: datetime
    elapsed_days: float
    remaining_days: int = Field(..., description="Whole days left, never negative")
    percent_complete: int = Field(..., ge=0, le=100)
    is_breached: bool = Field(
        ...,
        description="True once recorded as breached or past due but not yet swept"
    )
    is_paused: bool
    paused_at: Optional[datetime] = None
    paused_duration_seconds: int = 0
    breached_at: Optional[datetime] = None
    escalation_count: int = 0

    @classmethod
    def from_domain(cls, info: SLAInfo) -> "SLAInfoResponse":
        return cls(
            tracker_id=info.tracker_id,
            state_code=info.state_code,
            status=info.status,
            target_days=info.target_days,
            started_at=info.started_at,
            due_at=info.due_at,
            elapsed_days=info.elapsed_days,
            remaining_days=info.remaining_days,
            percent_complete=info.percent_complete,
            is_breached=info.is_breached,
            is_paused=info.is_paused,
            paused_at=info.paused_at,
            paused_duration_seconds=info.paused_duration_seconds,
            breached_at=info.breached_at,
            escalation_count=info.escalation_count
        )


class SLATrackerResponse(BaseModel):
    """Response model for a tracker row (history or after a command)."""
    id: str
    entity_type: str
    entity_id: str
    state_code: str
    status: SLAStatusStr
    target_days: int
    started_at: datetime
    due_at: datetime
    paused_at: Optional[datetime] = None
    paused_duration_seconds: int = 0
    breached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    escalation_count: int = 0
    last_escalated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, tracker: SLATracker) -> "SLATrackerResponse":
        return cls(
            id=tracker.id,
            entity_type=tracker.entity_type,
            entity_id=tracker.entity_id,
            state_code=tracker.state_code,
            status=tracker.status,
            target_days=tracker.target_days,
            started_at=tracker.started_at,
            due_at=tracker.due_at,
            paused_at=tracker.paused_at,
            paused_duration_seconds=tracker.paused_duration_seconds,
            breached_at=tracker.breached_at,
            completed_at=tracker.completed_at,
            escalation_count=tracker.escalation_count,
            last_escalated_at=tracker.last_escalated_at
        )


class SLACommandResponse(BaseModel):
    """Response model for pause/resume/extend."""
    changed: bool = Field(..., description="False when the command was a no-op")
    tracker: Optional[SLATrackerResponse] = None


class SLAStatsResponse(BaseModel):
    """Response model for SLA statistics."""
    total: int
    running: int
    paused: int
    breached: int
    completed: int
    average_completion_days: Optional[float] = None
    breach_rate: float = Field(..., description="Percentage of finished trackers that breached")

    @classmethod
    def from_domain(cls, stats: SLAStats) -> "SLAStatsResponse":
        return cls(
            total=stats.total,
            running=stats.running,
            paused=stats.paused,
            breached=stats.breached,
            completed=stats.completed,
            average_completion_days=stats.average_completion_days,
            breach_rate=stats.breach_rate
        )


class ApproachingBreachResponse(BaseModel):
    tracker_id: str
    entity_type: str
    entity_id: str
    state_code: str
    due_at: datetime
    days_remaining: int
    escalation_count: int = 0

    @classmethod
    def from_domain(cls, info: ApproachingBreachInfo) -> "ApproachingBreachResponse":
        return cls(
            tracker_id=info.tracker_id,
            entity_type=info.entity_type,
            entity_id=info.entity_id,
            state_code=info.state_code,
            due_at=info.due_at,
            days_remaining=info.days_remaining,
            escalation_count=info.escalation_count
        )
