"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="bsg-helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Reference Data ==========
    reference_data_path: Path = Field(
        default=Path("reference_data.yaml"),
        description="YAML file with business hours, holidays and SLA policies"
    )
    reference_source: str = Field(
        default="yaml",
        description="Where reference data is loaded from: 'yaml' or 'database'"
    )
    reference_cache_ttl_seconds: int = Field(
        default=1800,
        description="Seconds before cached reference data is reloaded",
        ge=0
    )

    # ========== SLA Engine ==========
    default_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone assumed for business hours without one"
    )
    max_lookahead_days: int = Field(
        default=3650,
        description="Calendar days searched for business time before giving up",
        ge=1
    )
    at_risk_threshold_percent: int = Field(
        default=15,
        description="Remaining-time percentage under which an SLA is at risk",
        ge=0,
        le=100
    )
    transition_max_retries: int = Field(
        default=3,
        description="Attempts for a ticket transition that loses an optimistic lock",
        ge=1
    )
    escalation_sweep_interval: int = Field(
        default=300,
        description="Seconds between escalation sweeps (0 disables the sweeper)",
        ge=0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalation notifications"
    )
    slack_channel: str = Field(
        default="#helpdesk-escalations",
        description="Default Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
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

    @field_validator("reference_source")
    @classmethod
    def validate_reference_source(cls, v: str) -> str:
        allowed = {"yaml", "database"}
        if v not in allowed:
            raise ValueError(f"reference_source must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    PENDING_APPROVAL = "pending_approval"
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


class TicketEventType(str, Enum):
    """Events accepted by the ticket state machine."""
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    START_WORK = "start_work"
    RESOLVE = "resolve"
    REOPEN = "reopen"
    CLOSE = "close"


class ApprovalStatus(str, Enum):
    """Business approval outcomes."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SLAState(str, Enum):
    """SLA status states."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"


class NotificationEvent(str, Enum):
    """Events a policy notification rule can subscribe to."""
    ESCALATION = "escalation"
    BREACH = "breach"


# Statuses in which the SLA clock is running
ACTIVE_STATUSES = [
    TicketStatus.OPEN,
    TicketStatus.ASSIGNED,
    TicketStatus.IN_PROGRESS,
]
