"""
Workflow External Service Integrations
======================================

External services for the workflow engine:
- YAML workflow definitions with watchdog hot-reload
- Entity context resolver registry
- Notification sinks (structured log, Slack webhook)
- APScheduler for the breach sweep and approaching-breach digest
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import settings, EscalationAction
from src.core import ConfigurationException, MalformedRuleException
from src.shared.infrastructure.logging import get_logger
from src.workflow.application.services import (
    IEntityContextResolver,
    INotificationSink,
    IWorkflowConfigProvider,
)
from src.workflow.domain import (
    ApproachingBreachInfo,
    BreachResult,
    EscalationEvent,
    TransitionResult,
    WorkflowConfig,
)

logger = get_logger(__name__)


# ========== Workflow Configuration ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for workflow config file changes."""

    def __init__(self, config_manager: "WorkflowConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Workflow config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class WorkflowConfigManager(IWorkflowConfigProvider):
    """
    Thread-safe workflow definition manager with hot-reload support.

    The initial load fails fast on an invalid file. A reload that fails
    validation keeps the previous definitions in place.
    """

    def __init__(self):
        self._config: Optional[WorkflowConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> WorkflowConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file is not a valid workflow config
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config

        logger.info(
            "Workflow configuration loaded",
            extra={
                "path": str(self._path),
                "workflows": [w.code for w in config.workflows]
            }
        )
        return config

    def load_data(self, data: Dict[str, Any]) -> WorkflowConfig:
        """Load definitions from an already-parsed mapping."""
        config = self._parse(data)
        with self._lock:
            self._config = config
        return config

    def _parse(self, data: Dict[str, Any]) -> WorkflowConfig:
        try:
            return WorkflowConfig(**(data or {}))
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid workflow configuration: {e}",
                {"path": str(self._path) if self._path else None}
            ) from e
        except MalformedRuleException as e:
            raise ConfigurationException(
                f"Invalid transition condition: {e.message}",
                {"path": str(self._path) if self._path else None}
            ) from e

    def _load_from_file(self, path: Path) -> WorkflowConfig:
        if not path.exists():
            logger.warning(
                "Workflow config file not found, no workflows configured",
                extra={"path": str(path)}
            )
            return WorkflowConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Workflow config is not valid YAML: {e}") from e

        return self._parse(data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload workflow config, keeping previous definitions",
                extra={"path": str(self._path), "error": e.message}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("Workflow configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skips watching if the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching workflow config", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(f"File watching not available, using static config: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> WorkflowConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Workflow configuration not loaded")
            return self._config

    @property
    def config(self) -> WorkflowConfig:
        return self.get_config()


# ========== Entity Context ==========

ContextLoader = Callable[[str], Awaitable[Dict[str, Any]]]


class RegistryContextResolver(IEntityContextResolver):
    """
    Dispatches context resolution to loaders registered per entity type.

    The host application owns the entity tables and registers one async
    loader per type; unknown types resolve to an empty context.
    """

    def __init__(self, loaders: Optional[Dict[str, ContextLoader]] = None):
        self._loaders: Dict[str, ContextLoader] = dict(loaders or {})

    def register(self, entity_type: str, loader: ContextLoader) -> None:
        self._loaders[entity_type] = loader

    async def resolve(self, entity_type: str, entity_id: str) -> Dict[str, Any]:
        loader = self._loaders.get(entity_type)
        if loader is None:
            logger.debug(
                "No context loader registered",
                extra={"entity_type": entity_type, "entity_id": entity_id}
            )
            return {}
        return await loader(entity_id) or {}


# ========== Notification Sinks ==========

class LoggingNotificationSink(INotificationSink):
    """Emits every workflow event as a structured log record."""

    async def notify_transition(self, result: TransitionResult) -> None:
        logger.info(
            "Workflow transition notification",
            extra={
                "event": "transition",
                "entity_type": result.entity_type,
                "entity_id": result.entity_id,
                "transition": result.transition_code,
                "from_state": result.from_state,
                "to_state": result.new_state,
                "user_id": result.performed_by
            }
        )

    async def notify_breach(self, breach: BreachResult) -> None:
        logger.warning(
            "SLA breach notification",
            extra={
                "event": "sla_breach",
                "tracker_id": breach.tracker_id,
                "entity_type": breach.entity_type,
                "entity_id": breach.entity_id,
                "state": breach.state_code,
                "days_overdue": breach.days_overdue
            }
        )

    async def notify_approaching_breach(self, approaching: List[ApproachingBreachInfo]) -> None:
        logger.info(
            "Approaching SLA breach digest",
            extra={
                "event": "sla_approaching",
                "count": len(approaching),
                "trackers": [
                    {
                        "tracker_id": a.tracker_id,
                        "entity_type": a.entity_type,
                        "entity_id": a.entity_id,
                        "days_remaining": a.days_remaining
                    }
                    for a in approaching
                ]
            }
        )

    async def notify_escalation(self, event: EscalationEvent) -> None:
        logger.warning(
            "SLA escalation notification",
            extra={
                "event": "sla_escalation",
                "rule": event.rule_name,
                "action": event.action,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "state": event.state_code,
                "days_in_state": event.days_in_state,
                "escalation_count": event.escalation_count,
                "notify_roles": event.notify_roles
            }
        )


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the outgoing webhook.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        time_func: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._time = time_func
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._time() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._time()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackNotificationSink(INotificationSink):
    """
    Slack webhook sink with circuit breaker and retry logic.

    Transitions are not posted (too chatty); breaches, escalations and the
    approaching-breach digest are.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_retries: int = 3
    ):
        self._webhook_url = webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._max_retries = max_retries

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _section(header: str, fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header, "emoji": True}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{name}:*\n{value}"}
                    for name, value in fields.items()
                ]
            }
        ]

    async def notify_transition(self, result: TransitionResult) -> None:
        return None

    async def notify_breach(self, breach: BreachResult) -> None:
        blocks = self._section(":rotating_light: SLA Breached", {
            "Entity": f"{breach.entity_type} {breach.entity_id}",
            "State": breach.state_code,
            "Due": breach.due_at.isoformat(),
            "Days overdue": breach.days_overdue,
        })
        await self.send(blocks, {"tracker_id": breach.tracker_id, "event": "sla_breach"})

    async def notify_approaching_breach(self, approaching: List[ApproachingBreachInfo]) -> None:
        if not approaching:
            return
        lines = "\n".join(
            f"• {a.entity_type} {a.entity_id} ({a.state_code}): {a.days_remaining} day(s) left"
            for a in approaching
        )
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": ":warning: SLAs Approaching Breach", "emoji": True}
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": lines}}
        ]
        await self.send(blocks, {"event": "sla_approaching", "count": len(approaching)})

    async def notify_escalation(self, event: EscalationEvent) -> None:
        header = ":arrow_double_up: SLA Escalation" if event.action == EscalationAction.ESCALATE \
            else ":bell: SLA Reminder"
        blocks = self._section(header, {
            "Entity": f"{event.entity_type} {event.entity_id}",
            "State": event.state_code,
            "Days in state": event.days_in_state,
            "Escalation #": event.escalation_count,
            "Notify": ", ".join(event.notify_roles) or "-",
            "Rule": event.rule_name,
        })
        if event.message:
            blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": event.message}]})
        await self.send(blocks, {"tracker_id": event.tracker_id, "event": "sla_escalation"})

    async def send(self, blocks: List[Dict[str, Any]], log_context: Dict[str, Any]) -> bool:
        """
        Post blocks to the webhook.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping Slack notification", extra=log_context)
            return False

        message = {"channel": self._channel, "blocks": blocks}

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info("Slack notification sent", extra=log_context)
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1, **log_context}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, **log_context}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# ========== Scheduling ==========

class SweepScheduler:
    """
    Wrapper for APScheduler running the SLA background jobs.

    Each job runs with ``max_instances=1`` so a slow sweep is never
    overlapped by the next tick.
    """

    def __init__(
        self,
        breach_interval_seconds: int = 300,
        digest_interval_seconds: int = 86400
    ):
        self.breach_interval_seconds = breach_interval_seconds
        self.digest_interval_seconds = digest_interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        breach_job: Callable[[], Awaitable[Any]],
        digest_job: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        if self._running:
            logger.warning("Sweep scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            breach_job,
            "interval",
            seconds=self.breach_interval_seconds,
            id="sla_breach_sweep",
            name="SLA Breach Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        if digest_job is not None:
            self._scheduler.add_job(
                digest_job,
                "interval",
                seconds=self.digest_interval_seconds,
                id="sla_approaching_digest",
                name="SLA Approaching Breach Digest",
                misfire_grace_time=300,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Sweep scheduler started",
            extra={
                "breach_interval_seconds": self.breach_interval_seconds,
                "digest_interval_seconds": self.digest_interval_seconds
            }
        )

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("Sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
