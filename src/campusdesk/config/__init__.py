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
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="campusdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/campusdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Lifecycle / SLA ==========
    timezone: str = Field(
        default="Asia/Kolkata",
        description="Local timezone used for calendar-date due classification"
    )
    acknowledgement_hours: int = Field(
        default=24,
        description="Hours until a new ticket must be acknowledged",
        ge=1
    )
    default_sla_hours: int = Field(
        default=48,
        description="Resolution SLA used when a category has none",
        ge=1
    )
    initial_status: str = Field(default="OPEN", description="Status value for new tickets")
    in_progress_status: str = Field(
        default="IN_PROGRESS",
        description="Status value applied when an admin picks up an open ticket"
    )
    default_close_status: str = Field(
        default="RESOLVED",
        description="Final status applied by a group close without explicit status"
    )
    status_cache_ttl_seconds: int = Field(
        default=300,
        description="Seconds the status catalog is cached in-process",
        ge=0
    )

    # ========== Outbox ==========
    worker_id: str = Field(
        default="campusdesk-api",
        description="Identity written into outbox claims by this process"
    )
    outbox_max_attempts: int = Field(
        default=5,
        description="Delivery attempts before an event is dead-lettered",
        ge=1
    )
    outbox_lease_seconds: int = Field(
        default=120,
        description="Seconds a claim is honoured before another worker may take over",
        ge=5
    )
    outbox_sweep_batch_size: int = Field(
        default=10,
        description="Max events delivered per sweep run",
        ge=1,
        le=500
    )
    outbox_sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between in-process outbox sweeps (0 disables)",
        ge=0
    )
    dispatch_retry_delay_seconds: float = Field(
        default=0.5,
        description="Delay before the single re-read of a not-yet-visible outbox event",
        ge=0.0,
        le=10.0
    )

    # ========== Reminders ==========
    reminders_enabled: bool = Field(default=True, description="Enable the TAT reminder sweep")
    reminder_skip_weekends: bool = Field(
        default=True,
        description="Skip the reminder sweep on Saturdays and Sundays"
    )
    reminder_run_hour: Optional[int] = Field(
        default=None,
        description="Local hour to run the reminder sweep in-process (unset: external cron only)",
        ge=0,
        le=23
    )
    cron_secret: Optional[str] = Field(
        default=None,
        description="Bearer token required by cron endpoints when set"
    )

    # ========== Notifications ==========
    notification_config_path: Path = Field(
        default=Path("notification_config.yaml"),
        description="Path to notification routing YAML file"
    )
    slack_bot_token: Optional[str] = Field(
        default=None,
        description="Slack bot token used for chat.postMessage"
    )
    slack_api_url: str = Field(
        default="https://slack.com/api/chat.postMessage",
        description="Slack message endpoint"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    email_api_url: Optional[str] = Field(
        default=None,
        description="Transactional email HTTP endpoint"
    )
    email_api_key: Optional[str] = Field(default=None, description="Email API key")
    email_from: str = Field(
        default="support@campusdesk.local",
        description="Sender address for outbound email"
    )
    email_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for email API calls",
        ge=0.1,
        le=60
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone name resolves."""
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v

    @field_validator("initial_status", "in_progress_status", "default_close_status")
    @classmethod
    def normalize_status_value(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def tz(self) -> ZoneInfo:
        """Local timezone as a tzinfo."""
        return ZoneInfo(self.timezone)


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Role(str):
    """Actor roles recognised by the core."""
    STUDENT = "student"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    COMMITTEE = "committee"


class EventType(str):
    """Outbox event types."""
    TICKET_CREATED = "ticket.created"
    STATUS_CHANGED = "ticket.status_changed"
    COMMENT_ADDED = "ticket.comment_added"
    TAT_SET = "ticket.tat_set"
    ESCALATED = "ticket.escalated"
    ASSIGNED = "ticket.assigned"
    TAT_REMINDER = "ticket.tat_reminder"


class GroupAction(str):
    """Bulk actions supported on ticket groups."""
    COMMENT = "comment"
    CLOSE = "close"


# ========== Lists for validation ==========

ADMIN_ROLES = [Role.ADMIN, Role.SUPER_ADMIN]
VALID_ROLES = [Role.STUDENT, Role.ADMIN, Role.SUPER_ADMIN, Role.COMMITTEE]
VALID_EVENT_TYPES = [
    EventType.TICKET_CREATED, EventType.STATUS_CHANGED, EventType.COMMENT_ADDED,
    EventType.TAT_SET, EventType.ESCALATED, EventType.ASSIGNED,
    EventType.TAT_REMINDER
]
VALID_GROUP_ACTIONS = [GroupAction.COMMENT, GroupAction.CLOSE]
