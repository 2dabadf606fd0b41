"""
SLA Application DTOs
=====================

Data Transfer Objects for reference data and lifecycle events.

These Pydantic models handle deserialization and validation of data coming
from YAML files, the database or callers, and convert it to domain objects.
Malformed reference data fails here, at load time.
"""

from datetime import date, datetime, time, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.config import NotificationEvent, Priority, TicketEventType, settings
from src.sla.domain import (
    END_OF_DAY, BusinessHoursConfig, EscalationLevel, Holiday, NotificationRule,
    SLAPolicy, TicketEvent,
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
NotificationEventStr = Literal["escalation", "breach"]
TicketEventTypeStr = Literal["approve", "reject", "assign", "start_work", "resolve", "reopen", "close"]

TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"
END_TIME_PATTERN = r"^(([01]?[0-9]|2[0-3]):[0-5][0-9]|24:00)$"


def _parse_time(value: str) -> time:
    if value == "24:00":
        return END_OF_DAY
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


# ========== Reference data DTOs ==========

class BusinessHoursConfigDTO(BaseModel):
    """One weekly business window (day_of_week: 0 = Sunday)."""
    model_config = ConfigDict(extra="forbid")

    id: Optional[int] = None
    department_id: Optional[int] = Field(None, description="Department, or null for the default calendar")
    day_of_week: int = Field(..., ge=0, le=6, description="0 (Sunday) to 6 (Saturday)")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="HH:MM, 24-hour")
    end_time: str = Field(..., pattern=END_TIME_PATTERN, description="HH:MM, 24-hour, or 24:00 for midnight")
    timezone: str = Field(default_factory=lambda: settings.default_timezone)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessHoursConfigDTO":
        """Ensure the window opens before it closes."""
        if _parse_time(self.start_time) >= _parse_time(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self

    def to_domain(self) -> BusinessHoursConfig:
        return BusinessHoursConfig(
            id=self.id,
            department_id=self.department_id,
            day_of_week=self.day_of_week,
            start_time=_parse_time(self.start_time),
            end_time=_parse_time(self.end_time),
            timezone=self.timezone,
            is_active=self.is_active,
        )


class HolidayDTO(BaseModel):
    """Holiday calendar entry."""
    model_config = ConfigDict(extra="forbid")

    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    date: date
    is_recurring: bool = False
    department_id: Optional[int] = None
    unit_id: Optional[int] = None
    is_active: bool = True
    description: Optional[str] = None

    def to_domain(self) -> Holiday:
        return Holiday(
            id=self.id,
            name=self.name,
            date=self.date,
            is_recurring=self.is_recurring,
            department_id=self.department_id,
            unit_id=self.unit_id,
            is_active=self.is_active,
            description=self.description,
        )


class EscalationLevelDTO(BaseModel):
    """A row of an escalation matrix."""
    level: int = Field(..., ge=1, description="Escalation level (1-based)")
    time_minutes: int = Field(..., gt=0, description="Elapsed SLA minutes that trigger this level")
    assign_to_role: str = Field(..., min_length=1)


class NotificationRuleDTO(BaseModel):
    """Notification channels for a policy event."""
    event: NotificationEventStr
    channels: List[str] = Field(default_factory=list, description="Slack channels")
    enabled: bool = True


class SLAPolicyDTO(BaseModel):
    """SLA policy as stored by administrators."""
    model_config = ConfigDict(extra="forbid")

    id: int
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    department_id: Optional[int] = None
    service_catalog_id: Optional[int] = None
    service_item_id: Optional[int] = None
    priority: Optional[PriorityStr] = None
    response_time_minutes: int = Field(..., ge=0)
    resolution_time_minutes: int = Field(..., ge=0)
    business_hours_only: bool = True
    escalation_matrix: List[EscalationLevelDTO] = Field(default_factory=list)
    notification_rules: List[NotificationRuleDTO] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_policy(self) -> "SLAPolicyDTO":
        """Response must not exceed resolution; escalation levels must be unique."""
        if self.response_time_minutes > self.resolution_time_minutes:
            raise ValueError("response_time_minutes cannot exceed resolution_time_minutes")
        levels = [row.level for row in self.escalation_matrix]
        if len(levels) != len(set(levels)):
            raise ValueError("escalation_matrix levels must be unique")
        return self

    def to_domain(self) -> SLAPolicy:
        created_at = self.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return SLAPolicy(
            id=self.id,
            name=self.name,
            description=self.description,
            department_id=self.department_id,
            service_catalog_id=self.service_catalog_id,
            service_item_id=self.service_item_id,
            priority=Priority(self.priority) if self.priority else None,
            response_time_minutes=self.response_time_minutes,
            resolution_time_minutes=self.resolution_time_minutes,
            business_hours_only=self.business_hours_only,
            escalation_matrix=tuple(
                EscalationLevel(row.level, row.time_minutes, row.assign_to_role)
                for row in self.escalation_matrix
            ),
            notification_rules=tuple(
                NotificationRule(NotificationEvent(rule.event), tuple(rule.channels), rule.enabled)
                for rule in self.notification_rules
            ),
            is_active=self.is_active,
            created_at=created_at,
        )


class ReferenceDataDocument(BaseModel):
    """The full reference data set, as found in the YAML reference file."""
    business_hours: List[BusinessHoursConfigDTO] = Field(default_factory=list)
    holidays: List[HolidayDTO] = Field(default_factory=list)
    sla_policies: List[SLAPolicyDTO] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_policy_ids(self) -> "ReferenceDataDocument":
        ids = [p.id for p in self.sla_policies]
        if len(ids) != len(set(ids)):
            raise ValueError("sla_policies ids must be unique")
        return self


# ========== Event DTOs ==========

class TicketEventDTO(BaseModel):
    """Lifecycle event as submitted by a caller (API layer, job, script)."""
    type: TicketEventTypeStr
    at: Optional[datetime] = Field(None, description="Event time, defaults to now")
    actor_user_id: Optional[int] = None
    assignee_user_id: Optional[int] = None
    comment: Optional[str] = None

    @model_validator(mode="after")
    def validate_assignee(self) -> "TicketEventDTO":
        if self.type == "assign" and self.assignee_user_id is None:
            raise ValueError("assignee_user_id is required for assign events")
        return self

    def to_domain(self) -> TicketEvent:
        return TicketEvent(
            type=TicketEventType(self.type),
            at=self.at or datetime.now(timezone.utc),
            actor_user_id=self.actor_user_id,
            assignee_user_id=self.assignee_user_id,
            comment=self.comment,
        )
