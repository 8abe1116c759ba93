"""
Workflow Infrastructure Repositories
====================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. State-changing writes are conditional UPDATEs
(``WHERE version = ...`` / ``WHERE status = ...``) so concurrent writers are
detected by row count instead of in-process locks.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import SLAStatus, ACTIVE_SLA_STATUSES
from src.core import RepositoryException
from src.workflow.application.services import (
    IExecutionRepository,
    IHistoryRepository,
    ISLATrackerRepository,
    IWorkflowStore,
    StoreTransaction,
)
from src.workflow.domain import SLATracker, WorkflowExecution, WorkflowHistoryEntry
from src.workflow.infrastructure.models import (
    SLATrackerModel,
    WorkflowExecutionModel,
    WorkflowHistoryModel,
)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLAlchemyExecutionRepository(IExecutionRepository):
    """
    SQLAlchemy implementation of execution repository.

    Handles persistence of WorkflowExecution entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: WorkflowExecutionModel) -> WorkflowExecution:
        return WorkflowExecution(
            id=str(model.id),
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            workflow_code=model.workflow_code,
            current_state=model.current_state,
            started_at=model.started_at,
            updated_at=model.updated_at,
            version=model.version,
            completed_at=model.completed_at
        )

    async def get(self, entity_type: str, entity_id: str) -> Optional[WorkflowExecution]:
        stmt = select(WorkflowExecutionModel).where(
            WorkflowExecutionModel.entity_type == entity_type,
            WorkflowExecutionModel.entity_id == entity_id
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        model = WorkflowExecutionModel(
            id=_parse_uuid(execution.id) or uuid4(),
            entity_type=execution.entity_type,
            entity_id=execution.entity_id,
            workflow_code=execution.workflow_code,
            current_state=execution.current_state,
            version=execution.version,
            started_at=execution.started_at,
            updated_at=execution.updated_at,
            completed_at=execution.completed_at
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(
                f"Execution for {execution.entity_type} {execution.entity_id} already exists",
                {"entity_type": execution.entity_type, "entity_id": execution.entity_id}
            ) from e

        return self._to_domain(model)

    async def update_state(
        self,
        execution_id: str,
        expected_version: int,
        new_state: str,
        updated_at: datetime,
        completed_at: Optional[datetime]
    ) -> bool:
        stmt = (
            update(WorkflowExecutionModel)
            .where(
                WorkflowExecutionModel.id == _parse_uuid(execution_id),
                WorkflowExecutionModel.version == expected_version
            )
            .values(
                current_state=new_state,
                version=expected_version + 1,
                updated_at=updated_at,
                completed_at=completed_at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyHistoryRepository(IHistoryRepository):
    """SQLAlchemy implementation of the append-only history repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, entry: WorkflowHistoryEntry) -> WorkflowHistoryEntry:
        model = WorkflowHistoryModel(
            id=uuid4(),
            execution_id=_parse_uuid(entry.execution_id),
            from_state=entry.from_state,
            to_state=entry.to_state,
            transition_code=entry.transition_code,
            performed_at=entry.performed_at,
            performed_by=entry.performed_by,
            performed_by_role=entry.performed_by_role,
            comment=entry.comment,
            trigger=entry.trigger,
            duration_in_state_seconds=entry.duration_in_state_seconds,
            details=entry.details or {}
        )
        self._session.add(model)
        await self._session.flush()

        entry.id = str(model.id)
        return entry

    async def list_for_execution(self, execution_id: str) -> List[WorkflowHistoryEntry]:
        execution_uuid = _parse_uuid(execution_id)
        if execution_uuid is None:
            return []

        stmt = (
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.execution_id == execution_uuid)
            .order_by(WorkflowHistoryModel.performed_at.asc())
        )
        result = await self._session.execute(stmt)

        return [
            WorkflowHistoryEntry(
                id=str(model.id),
                execution_id=str(model.execution_id),
                from_state=model.from_state,
                to_state=model.to_state,
                transition_code=model.transition_code,
                performed_at=model.performed_at,
                performed_by=model.performed_by,
                performed_by_role=model.performed_by_role,
                comment=model.comment,
                trigger=model.trigger,
                duration_in_state_seconds=model.duration_in_state_seconds,
                details=model.details or {}
            )
            for model in result.scalars().all()
        ]


class SQLAlchemySLATrackerRepository(ISLATrackerRepository):
    """
    SQLAlchemy implementation of SLA tracker repository.

    Handles persistence of SLATracker entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_domain(model: SLATrackerModel) -> SLATracker:
        return SLATracker(
            id=str(model.id),
            execution_id=str(model.execution_id),
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            state_code=model.state_code,
            target_days=model.target_days,
            started_at=model.started_at,
            due_at=model.due_at,
            status=model.status,
            paused_at=model.paused_at,
            paused_duration_seconds=model.paused_duration_seconds,
            breached_at=model.breached_at,
            completed_at=model.completed_at,
            escalation_count=model.escalation_count,
            last_escalated_at=model.last_escalated_at
        )

    async def _list(self, stmt) -> List[SLATracker]:
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def get(self, tracker_id: str) -> Optional[SLATracker]:
        tracker_uuid = _parse_uuid(tracker_id)
        if tracker_uuid is None:
            return None

        stmt = select(SLATrackerModel).where(SLATrackerModel.id == tracker_uuid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_active_for_execution(self, execution_id: str) -> Optional[SLATracker]:
        # Most recent wins if the active-tracker invariant was ever violated
        stmt = (
            select(SLATrackerModel)
            .where(
                SLATrackerModel.execution_id == _parse_uuid(execution_id),
                SLATrackerModel.status.in_(ACTIVE_SLA_STATUSES)
            )
            .order_by(SLATrackerModel.started_at.desc(), SLATrackerModel.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def list_open_for_execution(self, execution_id: str) -> List[SLATracker]:
        stmt = (
            select(SLATrackerModel)
            .where(
                SLATrackerModel.execution_id == _parse_uuid(execution_id),
                SLATrackerModel.status != SLAStatus.COMPLETED,
                SLATrackerModel.completed_at.is_(None)
            )
            .order_by(SLATrackerModel.started_at.asc())
        )
        return await self._list(stmt)

    async def list_for_execution(self, execution_id: str) -> List[SLATracker]:
        execution_uuid = _parse_uuid(execution_id)
        if execution_uuid is None:
            return []

        stmt = (
            select(SLATrackerModel)
            .where(SLATrackerModel.execution_id == execution_uuid)
            .order_by(SLATrackerModel.started_at.asc())
        )
        return await self._list(stmt)

    async def create(self, tracker: SLATracker) -> SLATracker:
        model = SLATrackerModel(
            id=_parse_uuid(tracker.id) or uuid4(),
            execution_id=_parse_uuid(tracker.execution_id),
            entity_type=tracker.entity_type,
            entity_id=tracker.entity_id,
            state_code=tracker.state_code,
            target_days=tracker.target_days,
            started_at=tracker.started_at,
            due_at=tracker.due_at,
            status=tracker.status,
            paused_at=tracker.paused_at,
            paused_duration_seconds=tracker.paused_duration_seconds,
            breached_at=tracker.breached_at,
            completed_at=tracker.completed_at,
            escalation_count=tracker.escalation_count,
            last_escalated_at=tracker.last_escalated_at
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(
                "Execution already has an active SLA tracker",
                {"execution_id": tracker.execution_id}
            ) from e

        tracker.id = str(model.id)
        return tracker

    async def save(self, tracker: SLATracker, expected_status: str) -> bool:
        stmt = (
            update(SLATrackerModel)
            .where(
                SLATrackerModel.id == _parse_uuid(tracker.id),
                SLATrackerModel.status == expected_status
            )
            .values(
                status=tracker.status,
                target_days=tracker.target_days,
                due_at=tracker.due_at,
                paused_at=tracker.paused_at,
                paused_duration_seconds=tracker.paused_duration_seconds,
                breached_at=tracker.breached_at,
                completed_at=tracker.completed_at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_overdue(self, now: datetime) -> List[SLATracker]:
        stmt = (
            select(SLATrackerModel)
            .where(
                SLATrackerModel.status == SLAStatus.RUNNING,
                SLATrackerModel.due_at < now
            )
            .order_by(SLATrackerModel.due_at.asc())
        )
        return await self._list(stmt)

    async def mark_breached(self, tracker_id: str, now: datetime) -> Optional[SLATracker]:
        stmt = (
            update(SLATrackerModel)
            .where(
                SLATrackerModel.id == _parse_uuid(tracker_id),
                SLATrackerModel.status == SLAStatus.RUNNING,
                SLATrackerModel.due_at < now
            )
            .values(status=SLAStatus.BREACHED, breached_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get(tracker_id)

    async def list_approaching(self, now: datetime, until: datetime) -> List[SLATracker]:
        stmt = (
            select(SLATrackerModel)
            .where(
                SLATrackerModel.status == SLAStatus.RUNNING,
                SLATrackerModel.due_at > now,
                SLATrackerModel.due_at <= until
            )
            .order_by(SLATrackerModel.due_at.asc())
        )
        return await self._list(stmt)

    async def list_escalation_candidates(
        self,
        entity_type: str,
        state_code: str
    ) -> List[SLATracker]:
        stmt = (
            select(SLATrackerModel)
            .where(
                SLATrackerModel.entity_type == entity_type,
                SLATrackerModel.state_code == state_code,
                SLATrackerModel.status.in_([SLAStatus.RUNNING, SLAStatus.BREACHED]),
                SLATrackerModel.completed_at.is_(None)
            )
            .order_by(SLATrackerModel.started_at.asc())
        )
        return await self._list(stmt)

    async def increment_escalation(self, tracker_id: str, now: datetime) -> Optional[int]:
        tracker_uuid = _parse_uuid(tracker_id)
        if tracker_uuid is None:
            return None

        stmt = (
            update(SLATrackerModel)
            .where(SLATrackerModel.id == tracker_uuid)
            .values(
                escalation_count=SLATrackerModel.escalation_count + 1,
                last_escalated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return None

        count = await self._session.execute(
            select(SLATrackerModel.escalation_count).where(SLATrackerModel.id == tracker_uuid)
        )
        return count.scalar_one()

    async def count_by_status(self, entity_type: Optional[str] = None) -> Dict[str, int]:
        stmt = select(SLATrackerModel.status, func.count()).group_by(SLATrackerModel.status)
        if entity_type:
            stmt = stmt.where(SLATrackerModel.entity_type == entity_type)

        result = await self._session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def list_completed_durations(
        self,
        entity_type: Optional[str] = None
    ) -> List[Tuple[datetime, datetime, int]]:
        stmt = select(
            SLATrackerModel.started_at,
            SLATrackerModel.completed_at,
            SLATrackerModel.paused_duration_seconds
        ).where(
            SLATrackerModel.status == SLAStatus.COMPLETED,
            SLATrackerModel.completed_at.is_not(None)
        )
        if entity_type:
            stmt = stmt.where(SLATrackerModel.entity_type == entity_type)

        result = await self._session.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]


class SQLAlchemyWorkflowStore(IWorkflowStore):
    """
    Unit-of-work store over an async session factory.

    Each ``transaction()`` is one session and one database transaction;
    commit on clean exit, rollback on error.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._session_maker() as session:
            async with session.begin():
                yield StoreTransaction(
                    executions=SQLAlchemyExecutionRepository(session),
                    history=SQLAlchemyHistoryRepository(session),
                    trackers=SQLAlchemySLATrackerRepository(session)
                )
