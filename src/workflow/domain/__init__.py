"""
Workflow Domain Layer
=====================

Domain layer for the workflow and SLA engine.

Contains:
- Entities: WorkflowExecution, SLATracker, history and read models
- Value Objects: workflow definitions loaded from YAML
- Domain Services: ConditionEvaluator, SLACalculator (stateless)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.workflow.domain.conditions import (
    Condition,
    ConditionGroup,
    ConditionEvaluator,
    ConditionStatus,
    MISSING,
    parse_rule,
    resolve_path,
)
from src.workflow.domain.entities import (
    WorkflowExecution,
    SLATracker,
    WorkflowHistoryEntry,
    TransitionOption,
    TransitionResult,
    SLAInfo,
    BreachResult,
    BreachSweepResult,
    ApproachingBreachInfo,
    SLAStats,
    EscalationEvent,
)
from src.workflow.domain.value_objects import (
    ActorContext,
    StateConfig,
    TransitionConfig,
    EscalationRuleConfig,
    WorkflowDefinition,
    WorkflowConfig,
    SLACalculator,
    SECONDS_PER_DAY,
)

__all__ = [
    # Conditions
    "Condition",
    "ConditionGroup",
    "ConditionEvaluator",
    "ConditionStatus",
    "MISSING",
    "parse_rule",
    "resolve_path",
    # Entities
    "WorkflowExecution",
    "SLATracker",
    "WorkflowHistoryEntry",
    "TransitionOption",
    "TransitionResult",
    "SLAInfo",
    "BreachResult",
    "BreachSweepResult",
    "ApproachingBreachInfo",
    "SLAStats",
    "EscalationEvent",
    # Value Objects & Services
    "ActorContext",
    "StateConfig",
    "TransitionConfig",
    "EscalationRuleConfig",
    "WorkflowDefinition",
    "WorkflowConfig",
    "SLACalculator",
    "SECONDS_PER_DAY",
]
