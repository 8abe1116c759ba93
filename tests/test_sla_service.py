"""Tests for SLAService: pause/resume, breach sweep, extension and stats."""

import uuid
from datetime import timedelta

import pytest

from src.config import SLAStatus
from src.core import TrackerNotFoundException, ValidationException
from src.workflow.domain import SECONDS_PER_DAY

from tests.conftest import START

DAY = timedelta(days=1)


class TestPauseResume:
    async def test_pause_then_immediate_resume_is_neutral(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=2)
        before = await sla_service.get_current_sla("INCIDENT", "inc-1")

        assert await sla_service.pause_sla(result.sla_tracker_id) is True
        assert await sla_service.resume_sla(result.sla_tracker_id) is True

        after = await sla_service.get_current_sla("INCIDENT", "inc-1")
        assert after.remaining_days == before.remaining_days == 3
        assert after.due_at == before.due_at

    async def test_pause_freezes_remaining_time(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=2)
        await sla_service.pause_sla(result.sla_tracker_id)
        clock.advance(days=1)

        paused = await sla_service.get_current_sla("INCIDENT", "inc-1")
        assert paused.is_paused
        assert paused.remaining_days == 3
        assert paused.elapsed_days == 2.0

        await sla_service.resume_sla(result.sla_tracker_id)
        resumed = await sla_service.get_current_sla("INCIDENT", "inc-1")
        assert resumed.status == SLAStatus.RUNNING
        assert resumed.remaining_days == 3
        assert resumed.paused_duration_seconds == SECONDS_PER_DAY
        assert resumed.due_at == START + 6 * DAY

    async def test_resume_is_idempotent(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        tracker_id = result.sla_tracker_id

        await sla_service.pause_sla(tracker_id)
        clock.advance(seconds=3600)
        assert await sla_service.resume_sla(tracker_id) is True
        clock.advance(seconds=3600)
        assert await sla_service.resume_sla(tracker_id) is False

        tracker = await sla_service.get_tracker(tracker_id)
        assert tracker.paused_duration_seconds == 3600

    async def test_pause_cycles_accumulate(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        tracker_id = result.sla_tracker_id

        for hours in (1, 2):
            await sla_service.pause_sla(tracker_id)
            clock.advance(seconds=hours * 3600)
            await sla_service.resume_sla(tracker_id)
            clock.advance(seconds=600)

        tracker = await sla_service.get_tracker(tracker_id)
        assert tracker.paused_duration_seconds == 3 * 3600
        assert tracker.due_at == START + 5 * DAY + timedelta(hours=3)

    async def test_pause_twice_is_a_no_op(self, triage_incident, sla_service):
        result = await triage_incident("inc-1")
        assert await sla_service.pause_sla(result.sla_tracker_id) is True
        assert await sla_service.pause_sla(result.sla_tracker_id) is False

    @pytest.mark.parametrize("tracker_id", ["not-a-uuid", str(uuid.uuid4())])
    async def test_missing_tracker_is_a_no_op(self, sla_service, tracker_id):
        assert await sla_service.pause_sla(tracker_id) is False
        assert await sla_service.resume_sla(tracker_id) is False
        assert await sla_service.extend_sla(tracker_id, 2) is False

    async def test_closed_tracker_cannot_be_paused(self, triage_incident, workflow_service, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=1)
        await workflow_service.execute_transition("INCIDENT", "inc-1", "RETURN")

        assert await sla_service.pause_sla(result.sla_tracker_id) is False
        tracker = await sla_service.get_tracker(result.sla_tracker_id)
        assert tracker.status == SLAStatus.COMPLETED


class TestBreachSweep:
    async def test_due_date_boundary(self, triage_incident, sla_service, clock):
        # 5-day target, paused on day 2 for one day: due date slides to day 6
        result = await triage_incident("inc-1")
        clock.set_time(START + 2 * DAY)
        await sla_service.pause_sla(result.sla_tracker_id)
        clock.set_time(START + 3 * DAY)
        await sla_service.resume_sla(result.sla_tracker_id)

        clock.set_time(START + 6 * DAY)
        info = await sla_service.get_current_sla("INCIDENT", "inc-1")
        assert info.is_breached is False
        assert info.remaining_days == 0
        assert len(await sla_service.check_for_breaches()) == 0

        clock.advance(seconds=1)
        info = await sla_service.get_current_sla("INCIDENT", "inc-1")
        assert info.is_breached is True
        assert info.status == SLAStatus.RUNNING

        sweep = await sla_service.check_for_breaches()
        assert [b.tracker_id for b in sweep.breaches] == [result.sla_tracker_id]
        assert sweep.breaches[0].days_overdue == 1

    async def test_sweep_breaches_each_tracker_once(self, triage_incident, sla_service, clock):
        await triage_incident("inc-1")
        await triage_incident("inc-2")
        clock.advance(days=5, seconds=10)

        first = await sla_service.check_for_breaches()
        second = await sla_service.check_for_breaches()

        assert len(first) == 2
        assert {b.entity_id for b in first} == {"inc-1", "inc-2"}
        assert len(second) == 0

    async def test_breached_tracker_records_time(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=9)
        await sla_service.check_for_breaches()

        tracker = await sla_service.get_tracker(result.sla_tracker_id)
        assert tracker.status == SLAStatus.BREACHED
        assert tracker.breached_at == clock.now()

    async def test_paused_tracker_is_not_swept(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        await sla_service.pause_sla(result.sla_tracker_id)
        clock.advance(days=30)

        assert len(await sla_service.check_for_breaches()) == 0

    async def test_current_sla_ignores_breached_tracker(self, triage_incident, sla_service, clock):
        await triage_incident("inc-1")
        clock.advance(days=6)
        await sla_service.check_for_breaches()

        assert await sla_service.get_current_sla("INCIDENT", "inc-1") is None


class TestExtend:
    async def test_extend_revives_breached_tracker(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=6)
        await sla_service.check_for_breaches()

        assert await sla_service.extend_sla(result.sla_tracker_id, 3) is True

        tracker = await sla_service.get_tracker(result.sla_tracker_id)
        assert tracker.status == SLAStatus.RUNNING
        assert tracker.breached_at is None
        assert tracker.target_days == 8
        assert tracker.due_at == START + 8 * DAY

    async def test_extend_still_past_due_stays_breached(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")
        clock.advance(days=20)
        await sla_service.check_for_breaches()

        assert await sla_service.extend_sla(result.sla_tracker_id, 1) is True

        tracker = await sla_service.get_tracker(result.sla_tracker_id)
        assert tracker.status == SLAStatus.BREACHED
        assert tracker.breached_at is not None
        assert tracker.due_at == START + 6 * DAY

    async def test_extend_requires_positive_days(self, triage_incident, sla_service):
        result = await triage_incident("inc-1")
        with pytest.raises(ValidationException):
            await sla_service.extend_sla(result.sla_tracker_id, 0)


class TestEscalationCount:
    async def test_increment(self, triage_incident, sla_service, clock):
        result = await triage_incident("inc-1")

        assert await sla_service.increment_escalation_count(result.sla_tracker_id) == 1
        clock.advance(days=1)
        assert await sla_service.increment_escalation_count(result.sla_tracker_id) == 2

        tracker = await sla_service.get_tracker(result.sla_tracker_id)
        assert tracker.last_escalated_at == clock.now()

    async def test_missing_tracker_raises(self, sla_service):
        with pytest.raises(TrackerNotFoundException):
            await sla_service.increment_escalation_count(str(uuid.uuid4()))


class TestReporting:
    async def test_breach_rate(self, triage_incident, workflow_service, sla_service, clock):
        for i in range(4):
            await triage_incident(f"inc-{i}")
        clock.advance(days=1)
        for i in range(3):
            await workflow_service.execute_transition("INCIDENT", f"inc-{i}", "RETURN")
        clock.advance(days=5)
        await sla_service.check_for_breaches()

        stats = await sla_service.get_stats()

        assert stats.total == 4
        assert stats.completed == 3
        assert stats.breached == 1
        assert stats.running == 0
        assert stats.breach_rate == 25.0
        assert stats.average_completion_days == 1.0

    async def test_stats_filter_by_entity_type(self, triage_incident, sla_service):
        await triage_incident("inc-1")

        assert (await sla_service.get_stats("INCIDENT")).running == 1
        empty = await sla_service.get_stats("CAP")
        assert empty.total == 0
        assert empty.breach_rate == 0.0
        assert empty.average_completion_days is None

    async def test_approaching_breaches(self, triage_incident, sla_service, clock):
        await triage_incident("inc-1")
        clock.advance(days=1)
        await triage_incident("inc-2")
        clock.advance(days=2, seconds=1)

        approaching = await sla_service.get_approaching_breaches(warning_days=2)

        assert [a.entity_id for a in approaching] == ["inc-1"]
        assert approaching[0].days_remaining == 2

        wider = await sla_service.get_approaching_breaches(warning_days=3)
        assert [a.entity_id for a in wider] == ["inc-1", "inc-2"]

    async def test_sla_history_of_unknown_entity(self, sla_service):
        assert await sla_service.get_sla_history("INCIDENT", "nope") == []
        assert await sla_service.get_current_sla("INCIDENT", "nope") is None
