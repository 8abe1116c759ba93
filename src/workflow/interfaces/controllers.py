"""
Workflow Controllers (API Routes)
=================================

FastAPI routes for workflow transitions and SLA tracking.

Controllers are thin - they delegate to application services. Domain
exceptions propagate to the application exception handler, which maps them
to HTTP status codes. The caller's identity arrives in ``X-User-Id`` /
``X-User-Role`` headers set by the upstream auth layer.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from src.core import TrackerNotFoundException
from src.shared.infrastructure.logging import get_logger
from src.workflow.application import (
    ApproachingBreachResponse,
    AvailableTransitionsResponse,
    ExecuteTransitionRequest,
    ExecutionResponse,
    ExtendSLARequest,
    HistoryEntryResponse,
    SLACommandResponse,
    SLAInfoResponse,
    SLAService,
    SLAStatsResponse,
    SLATrackerResponse,
    TransitionOptionResponse,
    TransitionResultResponse,
    WorkflowService,
)
from src.workflow.domain import ActorContext

logger = get_logger(__name__)
router = APIRouter(prefix="/workflow", tags=["Workflow"])


# ========== Example payloads for Swagger ==========

TRANSITIONS_RESPONSE_EXAMPLE = {
    "entity_type": "CAP",
    "entity_id": "cap-001",
    "current_state": "ACCEPTED",
    "transitions": [
        {
            "code": "MARK_IMPLEMENTED",
            "label": "Mark Implemented",
            "from_state": "ACCEPTED",
            "target_state": "IMPLEMENTED",
            "can_transition": False,
            "conditions": [{"label": "At least one evidence document", "met": False}],
            "warnings": ["Entering Implemented starts a 14-day SLA"],
            "confirm_required": True,
            "confirm_message": "Confirm that all corrective actions are implemented",
            "button_variant": "default"
        }
    ]
}


# ========== Dependencies ==========

def get_workflow_service(request: Request) -> WorkflowService:
    """Get workflow service from app state."""
    service = getattr(request.app.state, "workflow_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow service not available"
        )
    return service


def get_sla_service(request: Request) -> SLAService:
    """Get SLA service from app state."""
    service = getattr(request.app.state, "sla_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA service not available"
        )
    return service


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> ActorContext:
    """Caller identity supplied by the auth layer."""
    return ActorContext(user_id=x_user_id, role=x_user_role)


# ========== SLA Route Handlers ==========

@router.get(
    "/sla/stats",
    response_model=SLAStatsResponse,
    summary="Get SLA statistics",
    description="""
    Aggregate tracker counts and outcomes.

    `breach_rate` = breached / (breached + completed) * 100; running trackers
    are excluded. `average_completion_days` excludes paused time.
    """
)
async def get_sla_stats(
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    sla_service: SLAService = Depends(get_sla_service)
):
    stats = await sla_service.get_stats(entity_type.upper() if entity_type else None)
    return SLAStatsResponse.from_domain(stats)


@router.get(
    "/sla/approaching",
    response_model=List[ApproachingBreachResponse],
    summary="List SLAs approaching breach"
)
async def get_approaching_breaches(
    warning_days: int = Query(3, ge=1, le=90, description="Look-ahead window in days"),
    sla_service: SLAService = Depends(get_sla_service)
):
    approaching = await sla_service.get_approaching_breaches(warning_days)
    return [ApproachingBreachResponse.from_domain(a) for a in approaching]


async def _command_response(sla_service: SLAService, tracker_id: str, changed: bool) -> SLACommandResponse:
    try:
        tracker = await sla_service.get_tracker(tracker_id)
    except TrackerNotFoundException:
        return SLACommandResponse(changed=False, tracker=None)
    return SLACommandResponse(changed=changed, tracker=SLATrackerResponse.from_domain(tracker))


@router.post(
    "/sla/{tracker_id}/pause",
    response_model=SLACommandResponse,
    summary="Pause an SLA",
    description="No-op (`changed: false`) unless the tracker is RUNNING."
)
async def pause_sla(
    tracker_id: str,
    actor: ActorContext = Depends(get_actor),
    sla_service: SLAService = Depends(get_sla_service)
):
    changed = await sla_service.pause_sla(tracker_id)
    logger.info("SLA pause requested", extra={"tracker_id": tracker_id, "user_id": actor.user_id, "changed": changed})
    return await _command_response(sla_service, tracker_id, changed)


@router.post(
    "/sla/{tracker_id}/resume",
    response_model=SLACommandResponse,
    summary="Resume an SLA",
    description="No-op (`changed: false`) unless the tracker is PAUSED."
)
async def resume_sla(
    tracker_id: str,
    actor: ActorContext = Depends(get_actor),
    sla_service: SLAService = Depends(get_sla_service)
):
    changed = await sla_service.resume_sla(tracker_id)
    logger.info("SLA resume requested", extra={"tracker_id": tracker_id, "user_id": actor.user_id, "changed": changed})
    return await _command_response(sla_service, tracker_id, changed)


@router.post(
    "/sla/{tracker_id}/extend",
    response_model=SLACommandResponse,
    summary="Extend an SLA",
    description="""
    Add days to the target and due date. A BREACHED tracker whose new due
    date is in the future returns to RUNNING.
    """
)
async def extend_sla(
    tracker_id: str,
    request: ExtendSLARequest,
    actor: ActorContext = Depends(get_actor),
    sla_service: SLAService = Depends(get_sla_service)
):
    changed = await sla_service.extend_sla(tracker_id, request.additional_days)
    logger.info(
        "SLA extension requested",
        extra={
            "tracker_id": tracker_id,
            "user_id": actor.user_id,
            "additional_days": request.additional_days,
            "reason": request.reason,
            "changed": changed
        }
    )
    return await _command_response(sla_service, tracker_id, changed)


# ========== Entity Route Handlers ==========

@router.get(
    "/{entity_type}/{entity_id}/transitions",
    response_model=AvailableTransitionsResponse,
    summary="List available transitions",
    description="""
    Transitions leaving the entity's current state that the caller's role may take.

    Transitions with unmet conditions are included with `can_transition: false`
    and per-condition status so the UI can explain why they are blocked.
    """,
    responses={
        200: {
            "description": "Available transitions",
            "content": {"application/json": {"example": TRANSITIONS_RESPONSE_EXAMPLE}}
        },
        404: {"description": "No workflow configured for the entity type"}
    }
)
async def get_available_transitions(
    entity_type: str,
    entity_id: str,
    actor: ActorContext = Depends(get_actor),
    workflow_service: WorkflowService = Depends(get_workflow_service)
):
    entity_type = entity_type.upper()
    options = await workflow_service.get_available_transitions(entity_type, entity_id, actor)
    execution = await workflow_service.get_current_state(entity_type, entity_id)

    return AvailableTransitionsResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        current_state=execution.current_state,
        transitions=[TransitionOptionResponse.from_domain(o) for o in options]
    )


@router.post(
    "/{entity_type}/{entity_id}/transitions",
    response_model=TransitionResultResponse,
    summary="Execute a transition",
    description="""
    Validate and apply a transition atomically.

    **Errors:**
    - 400: no such transition from the current state
    - 403: role not allowed
    - 409: entity changed concurrently (refetch and retry)
    - 412: conditions not met
    - 422: confirmation comment required
    """
)
async def execute_transition(
    entity_type: str,
    entity_id: str,
    request: ExecuteTransitionRequest,
    actor: ActorContext = Depends(get_actor),
    workflow_service: WorkflowService = Depends(get_workflow_service)
):
    result = await workflow_service.execute_transition(
        entity_type.upper(),
        entity_id,
        request.transition,
        actor=actor,
        comment=request.comment,
        expected_state=request.expected_state,
        details=request.details
    )
    return TransitionResultResponse.from_domain(result)


@router.get(
    "/{entity_type}/{entity_id}/state",
    response_model=ExecutionResponse,
    summary="Get current workflow state"
)
async def get_current_state(
    entity_type: str,
    entity_id: str,
    workflow_service: WorkflowService = Depends(get_workflow_service)
):
    execution = await workflow_service.get_current_state(entity_type.upper(), entity_id)
    return ExecutionResponse.from_domain(execution)


@router.get(
    "/{entity_type}/{entity_id}/history",
    response_model=List[HistoryEntryResponse],
    summary="Get workflow history"
)
async def get_history(
    entity_type: str,
    entity_id: str,
    workflow_service: WorkflowService = Depends(get_workflow_service)
):
    history = await workflow_service.get_history(entity_type.upper(), entity_id)
    return [HistoryEntryResponse.from_domain(entry) for entry in history]


@router.get(
    "/{entity_type}/{entity_id}/sla",
    response_model=Optional[SLAInfoResponse],
    summary="Get current SLA",
    description="Active SLA of the current state, or `null` if the state has none."
)
async def get_current_sla(
    entity_type: str,
    entity_id: str,
    sla_service: SLAService = Depends(get_sla_service)
):
    info = await sla_service.get_current_sla(entity_type.upper(), entity_id)
    return SLAInfoResponse.from_domain(info) if info else None


@router.get(
    "/{entity_type}/{entity_id}/sla/history",
    response_model=List[SLATrackerResponse],
    summary="Get SLA history"
)
async def get_sla_history(
    entity_type: str,
    entity_id: str,
    sla_service: SLAService = Depends(get_sla_service)
):
    trackers = await sla_service.get_sla_history(entity_type.upper(), entity_id)
    return [SLATrackerResponse.from_domain(t) for t in trackers]
