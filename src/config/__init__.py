"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="workflow-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/workflow",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Workflow Configuration ==========
    workflow_config_path: Path = Field(
        default=Path("workflows.yaml"),
        description="Path to workflow definitions YAML file"
    )

    # ========== SLA Sweep ==========
    breach_sweep_interval: int = Field(
        default=300,
        description="Seconds between breach sweeps",
        ge=10
    )
    approaching_breach_interval: int = Field(
        default=86400,
        description="Seconds between approaching-breach digests",
        ge=60
    )
    approaching_breach_warning_days: int = Field(
        default=3,
        description="Look-ahead window for approaching breaches",
        ge=1,
        le=90
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for SLA notifications"
    )
    slack_channel: str = Field(
        default="#safety-oversight",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class StateType(str):
    """Workflow state categories."""
    INITIAL = "INITIAL"
    INTERMEDIATE = "INTERMEDIATE"
    TERMINAL = "TERMINAL"
    REJECTED = "REJECTED"


class SLAStatus(str):
    """SLA tracker lifecycle statuses."""
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    BREACHED = "BREACHED"
    COMPLETED = "COMPLETED"


class EscalationAction(str):
    """Actions an escalation rule may take."""
    NOTIFY = "NOTIFY"
    ESCALATE = "ESCALATE"


class HistoryTrigger(str):
    """What caused a workflow history entry."""
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


# Roles notified when an ESCALATE rule fires
ESCALATION_ROLES = ["PROGRAMME_COORDINATOR", "SYSTEM_ADMIN"]


# ========== Status groups ==========

ACTIVE_SLA_STATUSES = [SLAStatus.RUNNING, SLAStatus.PAUSED]
