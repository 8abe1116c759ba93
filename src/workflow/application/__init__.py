"""
Workflow Application Layer
==========================

Application layer for the workflow and SLA engine.

Contains:
- Services: WorkflowService and SLAService
- Interfaces: store, config provider, context resolver, notification sink
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.workflow.application.dto import (
    ExecuteTransitionRequest,
    ExtendSLARequest,
    ConditionStatusResponse,
    TransitionOptionResponse,
    AvailableTransitionsResponse,
    TransitionResultResponse,
    ExecutionResponse,
    HistoryEntryResponse,
    SLAInfoResponse,
    SLATrackerResponse,
    SLACommandResponse,
    SLAStatsResponse,
    ApproachingBreachResponse,
)
from src.workflow.application.services import (
    WorkflowService,
    SLAService,
    IExecutionRepository,
    IHistoryRepository,
    ISLATrackerRepository,
    IWorkflowStore,
    IWorkflowConfigProvider,
    IEntityContextResolver,
    INotificationSink,
    StoreTransaction,
)

__all__ = [
    # DTOs
    "ExecuteTransitionRequest",
    "ExtendSLARequest",
    "ConditionStatusResponse",
    "TransitionOptionResponse",
    "AvailableTransitionsResponse",
    "TransitionResultResponse",
    "ExecutionResponse",
    "HistoryEntryResponse",
    "SLAInfoResponse",
    "SLATrackerResponse",
    "SLACommandResponse",
    "SLAStatsResponse",
    "ApproachingBreachResponse",
    # Services
    "WorkflowService",
    "SLAService",
    # Interfaces
    "IExecutionRepository",
    "IHistoryRepository",
    "ISLATrackerRepository",
    "IWorkflowStore",
    "IWorkflowConfigProvider",
    "IEntityContextResolver",
    "INotificationSink",
    "StoreTransaction",
]
