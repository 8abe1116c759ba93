"""
Workflow Value Objects
======================

Immutable value objects for the workflow domain.

Workflow definitions are loaded from YAML and validated here; they are never
mutated at runtime. ``SLACalculator`` holds the pure elapsed-time arithmetic.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import SLAStatus, StateType
from src.workflow.domain.conditions import Condition, ConditionGroup, parse_rule


SECONDS_PER_DAY = 24 * 60 * 60

StateTypeStr = Literal["INITIAL", "INTERMEDIATE", "TERMINAL", "REJECTED"]
EscalationActionStr = Literal["NOTIFY", "ESCALATE"]


@dataclass(frozen=True)
class ActorContext:
    """The caller performing a workflow operation, as supplied by the auth layer."""
    user_id: Optional[str] = None
    role: Optional[str] = None


class StateConfig(BaseModel):
    """A named workflow state."""
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    label: str = ""
    state_type: StateTypeStr = StateType.INTERMEDIATE
    sla_days: Optional[int] = Field(default=None, ge=0, description="SLA target on entry")

    @property
    def has_sla(self) -> bool:
        return bool(self.sla_days and self.sla_days > 0)

    @property
    def is_terminal(self) -> bool:
        return self.state_type == StateType.TERMINAL


class TransitionConfig(BaseModel):
    """A conditionally-gated edge between two states."""
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    from_state: str
    to_state: str
    label: str = ""
    condition: Optional[Union[Condition, ConditionGroup]] = None
    allowed_roles: List[str] = Field(default_factory=list)
    confirm_required: bool = False
    confirm_message: Optional[str] = None
    button_variant: str = "default"

    @field_validator("condition", mode="before")
    @classmethod
    def parse_condition(cls, v):
        """Accept raw mappings; empty mapping means no gate."""
        return parse_rule(v)

    def allows_role(self, role: Optional[str]) -> bool:
        return not self.allowed_roles or role in self.allowed_roles


class EscalationRuleConfig(BaseModel):
    """Escalate entities that linger in a state."""
    model_config = ConfigDict(frozen=True)

    state: str
    name: str
    trigger_after_days: int = Field(ge=0)
    action: EscalationActionStr = "NOTIFY"
    notify_roles: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    repeat_interval_days: Optional[int] = Field(default=None, ge=1)
    max_repeats: Optional[int] = Field(default=None, ge=1)


class WorkflowDefinition(BaseModel):
    """
    State machine for one entity type.

    States and transitions are data; the same engine serves every definition.
    """
    model_config = ConfigDict(frozen=True)

    code: str
    entity_type: str
    name: str = ""
    initial_state: str
    states: List[StateConfig]
    transitions: List[TransitionConfig] = Field(default_factory=list)
    escalation_rules: List[EscalationRuleConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_graph(self) -> "WorkflowDefinition":
        """Every referenced state must exist; codes unique per source state."""
        codes = {s.code for s in self.states}
        if len(codes) != len(self.states):
            raise ValueError(f"{self.code}: duplicate state codes")
        if self.initial_state not in codes:
            raise ValueError(f"{self.code}: initial state '{self.initial_state}' is not defined")

        seen = set()
        for t in self.transitions:
            if t.from_state not in codes or t.to_state not in codes:
                raise ValueError(
                    f"{self.code}: transition '{t.code}' references an undefined state"
                )
            key = (t.from_state, t.code)
            if key in seen:
                raise ValueError(
                    f"{self.code}: duplicate transition '{t.code}' from '{t.from_state}'"
                )
            seen.add(key)

        for rule in self.escalation_rules:
            if rule.state not in codes:
                raise ValueError(
                    f"{self.code}: escalation rule '{rule.name}' references undefined state '{rule.state}'"
                )
        return self

    def get_state(self, code: str) -> Optional[StateConfig]:
        for state in self.states:
            if state.code == code:
                return state
        return None

    def transitions_from(self, state_code: str) -> List[TransitionConfig]:
        return [t for t in self.transitions if t.from_state == state_code]

    def find_transition(self, state_code: str, requested: str) -> Optional[TransitionConfig]:
        """
        Find the edge leaving ``state_code`` named by ``requested``.

        ``requested`` is a transition code, or a target state code when exactly
        one transition leads there.
        """
        candidates = self.transitions_from(state_code)
        for t in candidates:
            if t.code == requested:
                return t
        by_target = [t for t in candidates if t.to_state == requested]
        if len(by_target) == 1:
            return by_target[0]
        return None

    def escalation_rules_for(self, state_code: str) -> List[EscalationRuleConfig]:
        return [r for r in self.escalation_rules if r.state == state_code]


class WorkflowConfig(BaseModel):
    """All workflow definitions, keyed by entity type."""

    workflows: List[WorkflowDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_entity_types(self) -> "WorkflowConfig":
        entity_types = [w.entity_type for w in self.workflows]
        duplicates = {e for e in entity_types if entity_types.count(e) > 1}
        if duplicates:
            raise ValueError(f"More than one workflow for entity types: {sorted(duplicates)}")
        return self

    def for_entity_type(self, entity_type: str) -> Optional[WorkflowDefinition]:
        for workflow in self.workflows:
            if workflow.entity_type == entity_type:
                return workflow
        return None

    @property
    def by_entity_type(self) -> Dict[str, WorkflowDefinition]:
        return {w.entity_type: w for w in self.workflows}


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA time arithmetic in one place.
    All durations are in seconds unless the name says days.
    """

    @staticmethod
    def effective_elapsed_seconds(
        started_at: datetime,
        paused_duration_seconds: int,
        status: str,
        paused_at: Optional[datetime],
        now: datetime
    ) -> float:
        """
        Time counted against the target.

        elapsed = now - started_at - cumulative pauses - current open pause,
        clamped at zero. The open pause is not yet folded into the counter.
        """
        elapsed = (now - started_at).total_seconds()
        elapsed -= paused_duration_seconds
        if status == SLAStatus.PAUSED and paused_at is not None:
            elapsed -= (now - paused_at).total_seconds()
        return max(0.0, elapsed)

    @staticmethod
    def remaining_days(target_days: int, elapsed_seconds: float) -> int:
        """Whole days left, rounded up, never negative."""
        remaining = target_days * SECONDS_PER_DAY - elapsed_seconds
        return max(0, math.ceil(remaining / SECONDS_PER_DAY))

    @staticmethod
    def round_half_up(value: float, places: int = 0) -> float:
        """Round with halves going up (12.5 -> 13), unlike the built-in ``round``."""
        quantum = Decimal(1).scaleb(-places)
        return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))

    @staticmethod
    def percent_complete(target_days: int, elapsed_seconds: float) -> int:
        """Share of the target used, 0-100."""
        total = target_days * SECONDS_PER_DAY
        if total <= 0:
            return 100
        return min(100, int(SLACalculator.round_half_up(100 * elapsed_seconds / total)))

    @staticmethod
    def is_breached(status: str, due_at: datetime, now: datetime) -> bool:
        """
        Breached if recorded so, or past due but not yet swept.

        The boundary is strict: exactly at ``due_at`` is not breached.
        """
        return status == SLAStatus.BREACHED or now > due_at

    @staticmethod
    def days_between_ceil(start: datetime, end: datetime) -> int:
        """Whole days from start to end, rounded up."""
        return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)

    @staticmethod
    def due_at(started_at: datetime, target_days: int) -> datetime:
        return started_at + timedelta(days=target_days)
