"""
Workflow & SLA Engine - Main Application
========================================

Configuration-driven workflow engine with per-state SLA tracking for
corrective action plans, findings and peer reviews.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, DTOs and collaborator interfaces
- Domain: Entities, value objects, condition evaluator, SLA calculator
- Infrastructure: Database, YAML config, notification sinks, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.core import ApplicationException, SystemClock
from src.infrastructure.database import (
    init_database,
    close_database,
    create_tables,
    get_session_maker,
)
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.logging import setup_logging, get_logger
from src.workflow.application import SLAService, WorkflowService
from src.workflow.infrastructure import (
    LoggingNotificationSink,
    RegistryContextResolver,
    SlackNotificationSink,
    SQLAlchemyWorkflowStore,
    SweepScheduler,
    WorkflowConfigManager,
)
from src.workflow.interfaces import workflow_router
from src.workflow.services import BreachSweeper

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load workflow definitions and watch the file
    4. Wire services into app state
    5. Start the breach sweep and approaching-breach digest

    SHUTDOWN:
    1. Stop scheduler and config watcher
    2. Close Slack client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Workflow Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Tables are created here for development; production uses migrations
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    config_manager = WorkflowConfigManager()
    config_manager.load(settings.workflow_config_path)
    config_manager.start_watching()

    clock = SystemClock()
    store = SQLAlchemyWorkflowStore(get_session_maker())

    if settings.slack_webhook_url:
        sink = SlackNotificationSink(settings.slack_webhook_url)
    else:
        sink = LoggingNotificationSink()

    # The host application registers per-entity-type loaders on this resolver
    context_resolver = RegistryContextResolver()

    sla_service = SLAService(store, clock)
    workflow_service = WorkflowService(
        store, config_manager, context_resolver, sla_service, sink, clock
    )
    sweeper = BreachSweeper(sla_service, config_manager, sink, clock)

    async def breach_sweep_job():
        """Background breach sweep; failures are retried on the next tick."""
        try:
            await sweeper.run_breach_sweep()
        except Exception:
            logger.error("Breach sweep failed, will retry next tick", exc_info=True)

    async def approaching_digest_job():
        try:
            await sweeper.run_approaching_digest()
        except Exception:
            logger.error("Approaching breach digest failed, will retry next tick", exc_info=True)

    scheduler = SweepScheduler(
        breach_interval_seconds=settings.breach_sweep_interval,
        digest_interval_seconds=settings.approaching_breach_interval
    )
    await scheduler.start(breach_sweep_job, approaching_digest_job)

    app.state.config_manager = config_manager
    app.state.context_resolver = context_resolver
    app.state.sla_service = sla_service
    app.state.workflow_service = workflow_service
    app.state.sweeper = sweeper
    app.state.scheduler = scheduler

    logger.info("Workflow Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Workflow Service")

    await scheduler.stop()
    config_manager.stop_watching()

    if isinstance(sink, SlackNotificationSink):
        await sink.close()

    await close_database()

    logger.info("Workflow Service shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application with middleware, handlers and routes."""
    app = FastAPI(
        title="Workflow & SLA Engine API",
        description="""
    ## Configuration-driven workflows with SLA tracking

    - `GET  /workflow/{entity_type}/{entity_id}/transitions` - Available transitions
    - `POST /workflow/{entity_type}/{entity_id}/transitions` - Execute a transition
    - `GET  /workflow/{entity_type}/{entity_id}/sla` - Current SLA
    - `GET  /workflow/sla/stats` - SLA statistics
    - `GET  /workflow/sla/approaching` - SLAs approaching breach

    Entity types: `CAP`, `FINDING`, `REVIEW`. Workflows are defined in YAML
    and reloaded when the file changes.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(workflow_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports workflow configuration and scheduler state.
        """
        config_manager = getattr(request.app.state, "config_manager", None)
        scheduler = getattr(request.app.state, "scheduler", None)

        workflows = []
        if config_manager is not None:
            try:
                workflows = [w.code for w in config_manager.get_config().workflows]
            except RuntimeError:
                workflows = []

        checks = {
            "workflow_config": "loaded" if workflows else "empty",
            "workflows": workflows,
            "sweep_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
