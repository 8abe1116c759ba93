"""
Workflow Infrastructure Layer
=============================

Infrastructure implementations for the workflow module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the transactional store
- External: Config hot-reload, context resolver, notification sinks, scheduler
"""

from src.workflow.infrastructure.models import (
    WorkflowExecutionModel,
    SLATrackerModel,
    WorkflowHistoryModel,
)
from src.workflow.infrastructure.repositories import (
    SQLAlchemyExecutionRepository,
    SQLAlchemyHistoryRepository,
    SQLAlchemySLATrackerRepository,
    SQLAlchemyWorkflowStore,
)
from src.workflow.infrastructure.external import (
    WorkflowConfigManager,
    RegistryContextResolver,
    LoggingNotificationSink,
    SlackNotificationSink,
    CircuitBreaker,
    CircuitState,
    SweepScheduler,
)

__all__ = [
    "WorkflowExecutionModel",
    "SLATrackerModel",
    "WorkflowHistoryModel",
    "SQLAlchemyExecutionRepository",
    "SQLAlchemyHistoryRepository",
    "SQLAlchemySLATrackerRepository",
    "SQLAlchemyWorkflowStore",
    "WorkflowConfigManager",
    "RegistryContextResolver",
    "LoggingNotificationSink",
    "SlackNotificationSink",
    "CircuitBreaker",
    "CircuitState",
    "SweepScheduler",
]
