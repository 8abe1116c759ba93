"""
Workflow Infrastructure Models
==============================

SQLAlchemy ORM models for the workflow module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.config import SLAStatus, HistoryTrigger
from src.infrastructure.database import Base, UTCDateTime


ACTIVE_TRACKER_PREDICATE = text("status IN ('RUNNING', 'PAUSED')")


class WorkflowExecutionModel(Base):
    """
    Database model for WorkflowExecution entity.

    Maps to the 'workflow_executions' table.
    """
    __tablename__ = "workflow_executions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Business identifier
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)

    workflow_code: Mapped[str] = mapped_column(String(100), nullable=False)
    current_state: Mapped[str] = mapped_column(String(100), nullable=False)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_workflow_executions_entity"),
    )


class SLATrackerModel(Base):
    """
    Database model for SLATracker entity.

    Maps to the 'sla_trackers' table. The partial unique index allows at most
    one RUNNING or PAUSED tracker per execution.
    """
    __tablename__ = "sla_trackers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    execution_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Denormalized for sweeps and stats
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)

    state_code: Mapped[str] = mapped_column(String(100), nullable=False)
    target_days: Mapped[int] = mapped_column(Integer, nullable=False)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SLAStatus.RUNNING, index=True)

    # Pause accounting
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    paused_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    breached_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Escalation
    escalation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_sla_trackers_one_active",
            "execution_id",
            unique=True,
            sqlite_where=ACTIVE_TRACKER_PREDICATE,
            postgresql_where=ACTIVE_TRACKER_PREDICATE,
        ),
    )


class WorkflowHistoryModel(Base):
    """
    Database model for WorkflowHistoryEntry.

    Maps to the 'workflow_history' table. Append-only.
    """
    __tablename__ = "workflow_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    execution_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    from_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    to_state: Mapped[str] = mapped_column(String(100), nullable=False)
    transition_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    performed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    performed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    performed_by_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default=HistoryTrigger.MANUAL)
    duration_in_state_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
