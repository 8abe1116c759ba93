"""Tests for WorkflowService: transitions, gates, history and tracker hand-off."""

import asyncio
import logging
from datetime import timedelta

import pytest

from src.config import HistoryTrigger, SLAStatus
from src.core import (
    ConcurrentModificationException,
    ConditionNotMetException,
    ConfirmationRequiredException,
    InvalidTransitionException,
    ResourceNotFoundException,
    TransitionNotPermittedException,
    WorkflowConfigurationException,
)
from src.workflow.application import IEntityContextResolver, WorkflowService
from src.workflow.domain import ActorContext

from tests.conftest import COORDINATOR, REVIEWER, START, SUBMITTER


async def submit_cap(workflow_service, entity_id="cap-1"):
    return await workflow_service.execute_transition(
        "CAP", entity_id, "SUBMIT", actor=SUBMITTER, comment="Ready for review"
    )


class TestExecutionLifecycle:
    async def test_first_touch_starts_in_initial_state(self, workflow_service):
        execution = await workflow_service.get_current_state("CAP", "cap-1")

        assert execution.current_state == "DRAFT"
        assert execution.workflow_code == "CAP_WORKFLOW_V1"
        assert execution.version == 1

        history = await workflow_service.get_history("CAP", "cap-1")
        assert len(history) == 1
        assert history[0].trigger == HistoryTrigger.AUTOMATIC
        assert history[0].from_state is None
        assert history[0].to_state == "DRAFT"

    async def test_get_or_create_is_stable(self, workflow_service):
        first = await workflow_service.get_or_create_execution("CAP", "cap-1")
        second = await workflow_service.get_or_create_execution("CAP", "cap-1")
        assert first.id == second.id

    async def test_unknown_entity_type(self, workflow_service):
        with pytest.raises(ResourceNotFoundException):
            await workflow_service.get_current_state("INVOICE", "inv-1")

    async def test_history_of_untouched_entity_is_empty(self, workflow_service):
        assert await workflow_service.get_history("CAP", "never-seen") == []


class TestExecuteTransition:
    async def test_transition_updates_state_and_records_history(self, workflow_service, clock, sink):
        await workflow_service.get_current_state("CAP", "cap-1")
        clock.advance(seconds=60)

        result = await submit_cap(workflow_service)

        assert result.from_state == "DRAFT"
        assert result.new_state == "SUBMITTED"
        assert result.transition_code == "SUBMIT"
        assert result.version == 2
        assert result.performed_by == SUBMITTER.user_id

        execution = await workflow_service.get_current_state("CAP", "cap-1")
        assert execution.current_state == "SUBMITTED"
        assert execution.version == 2

        history = await workflow_service.get_history("CAP", "cap-1")
        assert [h.to_state for h in history] == ["DRAFT", "SUBMITTED"]
        entry = history[-1]
        assert entry.trigger == HistoryTrigger.MANUAL
        assert entry.performed_by_role == "SAFETY_MANAGER"
        assert entry.comment == "Ready for review"
        assert entry.duration_in_state_seconds == 60

        assert [t.new_state for t in sink.transitions] == ["SUBMITTED"]

    async def test_target_state_can_name_the_transition(self, workflow_service):
        result = await workflow_service.execute_transition(
            "CAP", "cap-1", "SUBMITTED", actor=SUBMITTER, comment="ok"
        )
        assert result.transition_code == "SUBMIT"

    async def test_unknown_transition(self, workflow_service):
        with pytest.raises(InvalidTransitionException) as exc_info:
            await workflow_service.execute_transition("CAP", "cap-1", "VERIFY", actor=REVIEWER)
        assert exc_info.value.current_state == "DRAFT"

    async def test_role_not_allowed(self, workflow_service):
        await submit_cap(workflow_service)
        with pytest.raises(TransitionNotPermittedException):
            await workflow_service.execute_transition("CAP", "cap-1", "ACCEPT", actor=SUBMITTER)

    async def test_missing_role_not_allowed_on_restricted_transition(self, workflow_service):
        with pytest.raises(TransitionNotPermittedException):
            await workflow_service.execute_transition(
                "CAP", "cap-1", "SUBMIT", actor=ActorContext(user_id="anon"), comment="x"
            )

    @pytest.mark.parametrize("comment", [None, "", "   "])
    async def test_confirmation_comment_required(self, workflow_service, comment):
        with pytest.raises(ConfirmationRequiredException) as exc_info:
            await workflow_service.execute_transition(
                "CAP", "cap-1", "SUBMIT", actor=SUBMITTER, comment=comment
            )
        assert exc_info.value.message == "Are you sure you want to submit this CAP for review?"

        execution = await workflow_service.get_current_state("CAP", "cap-1")
        assert execution.current_state == "DRAFT"

    async def test_expected_state_mismatch(self, workflow_service):
        await submit_cap(workflow_service)
        with pytest.raises(ConcurrentModificationException) as exc_info:
            await workflow_service.execute_transition(
                "CAP", "cap-1", "ACCEPT", actor=REVIEWER, expected_state="DRAFT"
            )
        assert exc_info.value.actual_state == "SUBMITTED"

    async def test_terminal_state_completes_execution(self, workflow_service, clock):
        result = await workflow_service.execute_transition("INCIDENT", "inc-1", "ARCHIVE")
        execution = await workflow_service.get_current_state("INCIDENT", "inc-1")

        assert result.new_state == "ARCHIVED"
        assert execution.completed_at == clock.now()
        assert execution.is_completed
        assert await workflow_service.get_available_transitions("INCIDENT", "inc-1") == []


class TestConditions:
    async def test_minor_severity_blocks_critical_only_transition(self, workflow_service, resolver):
        resolver.set("INCIDENT", "inc-1", {"severity": "MINOR"})

        with pytest.raises(ConditionNotMetException) as exc_info:
            await workflow_service.execute_transition("INCIDENT", "inc-1", "TRIAGE_CRITICAL")
        assert exc_info.value.unmet == ["Severity is critical"]

    async def test_critical_severity_passes(self, workflow_service, resolver):
        resolver.set("INCIDENT", "inc-1", {"severity": "CRITICAL"})

        result = await workflow_service.execute_transition("INCIDENT", "inc-1", "TRIAGE_CRITICAL")
        assert result.new_state == "TRIAGE"

    async def test_evidence_required_to_mark_implemented(self, workflow_service, resolver):
        await submit_cap(workflow_service)
        await workflow_service.execute_transition("CAP", "cap-1", "ACCEPT", actor=REVIEWER)

        resolver.set("CAP", "cap-1", {"relations": {"documents": {"count": 0}}})
        with pytest.raises(ConditionNotMetException):
            await workflow_service.execute_transition(
                "CAP", "cap-1", "MARK_IMPLEMENTED", actor=SUBMITTER, comment="done"
            )

        resolver.set("CAP", "cap-1", {"relations": {"documents": {"count": 2}}})
        result = await workflow_service.execute_transition(
            "CAP", "cap-1", "MARK_IMPLEMENTED", actor=SUBMITTER, comment="done"
        )
        assert result.new_state == "IMPLEMENTED"

    async def test_resolver_may_read_the_store(self, store, config_manager, sla_service, clock):
        class StoreBackedResolver(IEntityContextResolver):
            async def resolve(self, entity_type, entity_id):
                async with store.transaction() as tx:
                    execution = await tx.executions.get(entity_type, entity_id)
                return {"severity": "CRITICAL", "seenState": execution.current_state}

        service = WorkflowService(store, config_manager, StoreBackedResolver(), sla_service, None, clock)

        result = await asyncio.wait_for(
            service.execute_transition("INCIDENT", "inc-1", "TRIAGE_CRITICAL"), timeout=10
        )
        assert result.new_state == "TRIAGE"

    async def test_base_fields_override_resolved_context(self, workflow_service, resolver):
        # A resolver cannot spoof the current status seen by conditions
        resolver.set("INCIDENT", "inc-1", {"severity": "CRITICAL", "status": "ARCHIVED"})
        context = await workflow_service._build_context(
            await workflow_service.get_current_state("INCIDENT", "inc-1"),
            ActorContext(user_id="u-9", role="AUDITOR")
        )
        assert context["status"] == "REPORTED"
        assert context["actor"] == {"id": "u-9", "role": "AUDITOR"}
        assert context["severity"] == "CRITICAL"

    async def test_malformed_rule_surfaces_generic_error(self, workflow_service, caplog):
        with caplog.at_level(logging.ERROR):
            with pytest.raises(WorkflowConfigurationException) as exc_info:
                await workflow_service.execute_transition("BROKEN", "b-1", "FINISH")

        assert "unclosed" not in exc_info.value.message
        record = next(r for r in caplog.records if r.getMessage() == "Malformed transition condition")
        assert record.transition == "FINISH"
        assert record.condition["value"] == "(unclosed"

        execution = await workflow_service.get_current_state("BROKEN", "b-1")
        assert execution.current_state == "NEW"


class TestAvailableTransitions:
    async def test_lists_role_permitted_transitions(self, workflow_service):
        options = await workflow_service.get_available_transitions("CAP", "cap-1", SUBMITTER)

        assert [o.code for o in options] == ["SUBMIT"]
        submit = options[0]
        assert submit.can_transition is True
        assert submit.confirm_required is True
        assert submit.target_state == "SUBMITTED"
        assert "Entering Submitted starts a 7-day SLA" in submit.warnings

    async def test_other_roles_see_nothing(self, workflow_service):
        await submit_cap(workflow_service)
        assert await workflow_service.get_available_transitions("CAP", "cap-1", SUBMITTER) == []

        options = await workflow_service.get_available_transitions("CAP", "cap-1", COORDINATOR)
        assert {o.code for o in options} == {"ACCEPT", "REJECT"}
        reject = next(o for o in options if o.code == "REJECT")
        assert reject.button_variant == "destructive"

    async def test_unmet_conditions_are_explained(self, workflow_service, resolver):
        resolver.set("FINDING", "f-1", {"severity": "CRITICAL", "cap": {"status": "ACCEPTED"}})
        await workflow_service.execute_transition("FINDING", "f-1", "START_WORK", actor=SUBMITTER)

        options = await workflow_service.get_available_transitions("FINDING", "f-1", REVIEWER)
        close = next(o for o in options if o.code == "CLOSE")

        assert close.can_transition is False
        assert [(c.label, c.met) for c in close.conditions] == [
            ("Finding is minor or an observation", False),
            ("Linked CAP verified", False),
        ]

    async def test_malformed_rule_fails_listing(self, workflow_service):
        with pytest.raises(WorkflowConfigurationException):
            await workflow_service.get_available_transitions("BROKEN", "b-1")


class TestSLAHandOff:
    async def test_entering_sla_state_opens_tracker(self, workflow_service, sla_service):
        result = await submit_cap(workflow_service)

        info = await sla_service.get_current_sla("CAP", "cap-1")
        assert info.tracker_id == result.sla_tracker_id
        assert info.state_code == "SUBMITTED"
        assert info.target_days == 7
        assert info.remaining_days == 7
        assert info.percent_complete == 0
        assert info.status == SLAStatus.RUNNING

    async def test_leaving_state_closes_tracker(self, workflow_service, sla_service, clock):
        await submit_cap(workflow_service)
        clock.advance(days=2)
        result = await workflow_service.execute_transition("CAP", "cap-1", "ACCEPT", actor=REVIEWER)

        trackers = await sla_service.get_sla_history("CAP", "cap-1")
        assert [(t.state_code, t.status) for t in trackers] == [
            ("SUBMITTED", SLAStatus.COMPLETED),
            ("ACCEPTED", SLAStatus.RUNNING),
        ]
        assert trackers[0].completed_at == START + timedelta(days=2)
        assert trackers[1].id == result.sla_tracker_id
        assert trackers[1].target_days == 30

    async def test_state_without_sla_has_no_tracker(self, workflow_service, sla_service, clock):
        await submit_cap(workflow_service)
        clock.advance(days=1)
        result = await workflow_service.execute_transition(
            "CAP", "cap-1", "REJECT", actor=REVIEWER, comment="Missing root cause"
        )

        assert result.sla_tracker_id is None
        assert await sla_service.get_current_sla("CAP", "cap-1") is None

    async def test_breached_tracker_is_closed_on_exit(self, workflow_service, sla_service, clock):
        await submit_cap(workflow_service)
        clock.advance(days=8)
        await sla_service.check_for_breaches()

        await workflow_service.execute_transition("CAP", "cap-1", "ACCEPT", actor=REVIEWER)

        submitted = (await sla_service.get_sla_history("CAP", "cap-1"))[0]
        assert submitted.status == SLAStatus.BREACHED
        assert submitted.completed_at == clock.now()

    async def test_sink_failure_does_not_undo_transition(self, workflow_service, sink, monkeypatch):
        async def broken(result):
            raise RuntimeError("sink down")

        monkeypatch.setattr(sink, "notify_transition", broken)
        result = await submit_cap(workflow_service)

        assert result.new_state == "SUBMITTED"
        execution = await workflow_service.get_current_state("CAP", "cap-1")
        assert execution.current_state == "SUBMITTED"
