"""
SLA Background Services
=======================

Background jobs that monitor SLA trackers independently of request traffic.

BreachSweeper:
1. Records overdue RUNNING trackers as BREACHED (via SLAService)
2. Forwards each new breach to the notification sink
3. Applies configured escalation rules to trackers lingering in a state
4. Sends a periodic digest of trackers approaching their due date
"""

from typing import Dict, List, Optional, Tuple

from src.config import settings, EscalationAction, ESCALATION_ROLES
from src.core import Clock, SystemClock
from src.shared.infrastructure.logging import get_logger, log_latency
from src.workflow.application.services import (
    INotificationSink,
    IWorkflowConfigProvider,
    SLAService,
)
from src.workflow.domain import (
    EscalationEvent,
    EscalationRuleConfig,
    SECONDS_PER_DAY,
    SLATracker,
)

logger = get_logger(__name__)


class BreachSweeper:
    """
    Runs breach detection and escalation on a schedule.

    A sweep never raises for an individual tracker: failures are logged and
    counted so one bad record cannot block the rest. A failure to reach the
    store at all propagates so the scheduler logs it and retries next tick.
    """

    def __init__(
        self,
        sla_service: SLAService,
        config_provider: IWorkflowConfigProvider,
        notification_sink: INotificationSink,
        clock: Optional[Clock] = None
    ):
        self._sla_service = sla_service
        self._config_provider = config_provider
        self._sink = notification_sink
        self._clock = clock or SystemClock()

    async def run_breach_sweep(self) -> Dict[str, int]:
        """
        One sweep: detect breaches, notify, escalate.

        Returns:
            Summary counts of the sweep
        """
        with log_latency(logger, "breach_sweep"):
            result = await self._sla_service.check_for_breaches()

            notify_failures = 0
            for breach in result.breaches:
                try:
                    await self._sink.notify_breach(breach)
                except Exception as e:
                    notify_failures += 1
                    logger.error(
                        "Breach notification failed",
                        extra={"tracker_id": breach.tracker_id, "error": str(e)}
                    )

            escalations, escalation_failures = await self.apply_escalation_rules()

        summary = {
            "breaches": len(result.breaches),
            "breach_failures": result.failed_count,
            "notification_failures": notify_failures,
            "escalations": len(escalations),
            "escalation_failures": escalation_failures,
        }
        logger.info("Breach sweep finished", extra=summary)
        return summary

    async def apply_escalation_rules(self) -> Tuple[List[EscalationEvent], int]:
        """
        Fire every escalation rule whose trigger and cadence are satisfied.

        Returns:
            (events emitted, number of trackers that failed)
        """
        config = self._config_provider.get_config()
        events: List[EscalationEvent] = []
        failures = 0

        for workflow in config.workflows:
            for rule in workflow.escalation_rules:
                candidates = await self._sla_service.list_escalation_candidates(
                    workflow.entity_type, rule.state
                )
                for tracker in candidates:
                    try:
                        event = await self._escalate_if_due(tracker, rule)
                    except Exception as e:
                        failures += 1
                        logger.error(
                            "Escalation failed",
                            extra={
                                "tracker_id": tracker.id,
                                "rule": rule.name,
                                "error": str(e)
                            },
                            exc_info=True
                        )
                        continue
                    if event is not None:
                        events.append(event)

        return events, failures

    def should_escalate(self, tracker: SLATracker, rule: EscalationRuleConfig) -> bool:
        """
        Trigger after ``trigger_after_days`` in the state, then at most every
        ``repeat_interval_days`` until ``max_repeats``.
        """
        now = self._clock.now()
        if tracker.days_in_state(now) < rule.trigger_after_days:
            return False

        if rule.max_repeats is not None and tracker.escalation_count >= rule.max_repeats:
            return False

        if tracker.last_escalated_at is not None:
            if rule.repeat_interval_days is None:
                return False
            days_since_last = int((now - tracker.last_escalated_at).total_seconds() // SECONDS_PER_DAY)
            if days_since_last < rule.repeat_interval_days:
                return False

        return True

    async def _escalate_if_due(
        self,
        tracker: SLATracker,
        rule: EscalationRuleConfig
    ) -> Optional[EscalationEvent]:
        if not self.should_escalate(tracker, rule):
            return None

        count = await self._sla_service.increment_escalation_count(tracker.id)

        notify_roles = list(rule.notify_roles)
        if rule.action == EscalationAction.ESCALATE:
            notify_roles = list(dict.fromkeys(notify_roles + ESCALATION_ROLES))

        now = self._clock.now()
        event = EscalationEvent(
            rule_name=rule.name,
            action=rule.action,
            tracker_id=tracker.id,
            entity_type=tracker.entity_type,
            entity_id=tracker.entity_id,
            state_code=tracker.state_code,
            days_in_state=tracker.days_in_state(now),
            escalation_count=count,
            notify_roles=notify_roles,
            triggered_at=now,
            message=rule.message
        )

        logger.info(
            "Escalation rule fired",
            extra={
                "rule": rule.name,
                "action": rule.action,
                "entity_type": tracker.entity_type,
                "entity_id": tracker.entity_id,
                "escalation_count": count
            }
        )

        try:
            await self._sink.notify_escalation(event)
        except Exception as e:
            logger.error(
                "Escalation notification failed",
                extra={"tracker_id": tracker.id, "rule": rule.name, "error": str(e)}
            )
        return event

    async def run_approaching_digest(self, warning_days: Optional[int] = None) -> int:
        """
        Send the approaching-breach digest.

        Returns:
            Number of trackers in the digest
        """
        warning_days = warning_days or settings.approaching_breach_warning_days
        approaching = await self._sla_service.get_approaching_breaches(warning_days)
        if approaching:
            await self._sink.notify_approaching_breach(approaching)

        logger.info(
            "Approaching breach digest finished",
            extra={"count": len(approaching), "warning_days": warning_days}
        )
        return len(approaching)
