"""Shared pytest fixtures for the workflow engine tests."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest
import yaml

from src.core import DeterministicClock
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)
from src.workflow.application import (
    IEntityContextResolver,
    INotificationSink,
    SLAService,
    WorkflowService,
)
from src.workflow.domain import (
    ActorContext,
    Condition,
    StateConfig,
    TransitionConfig,
    WorkflowDefinition,
)
from src.workflow.infrastructure import SQLAlchemyWorkflowStore, WorkflowConfigManager
from src.workflow.services import BreachSweeper


WORKFLOWS_YAML = Path(__file__).resolve().parent.parent / "workflows.yaml"

START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

SUBMITTER = ActorContext(user_id="user-submitter", role="SAFETY_MANAGER")
REVIEWER = ActorContext(user_id="user-reviewer", role="LEAD_REVIEWER")
COORDINATOR = ActorContext(user_id="user-coordinator", role="PROGRAMME_COORDINATOR")
REVIEW_REQUESTER = ActorContext(user_id="user-ansp", role="ANSP_ADMIN")


# Small workflows exercising condition gates and configuration errors
INCIDENT_WORKFLOW: Dict[str, Any] = {
    "code": "INCIDENT_WORKFLOW_TEST",
    "entity_type": "INCIDENT",
    "initial_state": "REPORTED",
    "states": [
        {"code": "REPORTED", "label": "Reported", "state_type": "INITIAL"},
        {"code": "TRIAGE", "label": "Triage", "state_type": "INTERMEDIATE", "sla_days": 5},
        {"code": "ARCHIVED", "label": "Archived", "state_type": "TERMINAL"},
    ],
    "transitions": [
        {
            "code": "TRIAGE_CRITICAL",
            "from_state": "REPORTED",
            "to_state": "TRIAGE",
            "condition": {
                "type": "condition",
                "field": "severity",
                "operator": "equals",
                "value": "CRITICAL",
                "label": "Severity is critical",
            },
        },
        {"code": "ARCHIVE", "from_state": "REPORTED", "to_state": "ARCHIVED"},
        {"code": "RETURN", "from_state": "TRIAGE", "to_state": "REPORTED"},
    ],
}


def broken_workflow() -> WorkflowDefinition:
    """
    A definition whose gate never went through load-time validation, as a
    hand-built provider could supply.
    """
    condition = Condition.model_construct(field="title", operator="matches", value="(unclosed")
    return WorkflowDefinition(
        code="BROKEN_WORKFLOW_TEST",
        entity_type="BROKEN",
        initial_state="NEW",
        states=[
            StateConfig(code="NEW", state_type="INITIAL"),
            StateConfig(code="DONE", state_type="TERMINAL"),
        ],
        transitions=[
            TransitionConfig.model_construct(code="FINISH", from_state="NEW", to_state="DONE", condition=condition),
        ],
    )


class StaticContextResolver(IEntityContextResolver):
    """Context snapshots held in memory, keyed by entity."""

    def __init__(self):
        self.contexts: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def set(self, entity_type: str, entity_id: str, context: Dict[str, Any]) -> None:
        self.contexts[(entity_type, entity_id)] = context

    async def resolve(self, entity_type: str, entity_id: str) -> Dict[str, Any]:
        return dict(self.contexts.get((entity_type, entity_id), {}))


class RecordingSink(INotificationSink):
    """Records every notification; optionally fails on breach and escalation."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.transitions: List[Any] = []
        self.breaches: List[Any] = []
        self.approaching: List[Any] = []
        self.escalations: List[Any] = []

    async def notify_transition(self, result) -> None:
        self.transitions.append(result)

    async def notify_breach(self, breach) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.breaches.append(breach)

    async def notify_approaching_breach(self, approaching) -> None:
        self.approaching.append(list(approaching))

    async def notify_escalation(self, event) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.escalations.append(event)


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(START)


@pytest.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database, fresh per test."""
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}")
    await create_tables()
    yield get_session_maker()
    await close_database()


@pytest.fixture
def store(session_maker) -> SQLAlchemyWorkflowStore:
    return SQLAlchemyWorkflowStore(session_maker)


@pytest.fixture
def config_manager() -> WorkflowConfigManager:
    """Shipped workflow definitions plus the test-only workflows."""
    with open(WORKFLOWS_YAML) as f:
        data = yaml.safe_load(f)
    data["workflows"].extend([INCIDENT_WORKFLOW, broken_workflow()])

    manager = WorkflowConfigManager()
    manager.load_data(data)
    return manager


@pytest.fixture
def resolver() -> StaticContextResolver:
    return StaticContextResolver()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def sla_service(store, clock) -> SLAService:
    return SLAService(store, clock)


@pytest.fixture
def workflow_service(store, config_manager, resolver, sla_service, sink, clock) -> WorkflowService:
    return WorkflowService(store, config_manager, resolver, sla_service, sink, clock)


@pytest.fixture
def sweeper(sla_service, config_manager, sink, clock) -> BreachSweeper:
    return BreachSweeper(sla_service, config_manager, sink, clock)


@pytest.fixture
def triage_incident(workflow_service, resolver, clock):
    """Factory: move an incident into TRIAGE (5-day SLA) and return the result."""

    async def _triage(entity_id: str):
        resolver.set("INCIDENT", entity_id, {"severity": "CRITICAL"})
        return await workflow_service.execute_transition("INCIDENT", entity_id, "TRIAGE_CRITICAL")

    return _triage
