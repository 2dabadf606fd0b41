"""
SLA Domain Entities
====================

Pure Python domain entities for the SLA engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Reference data
(business hours, holidays, policies) is immutable once loaded; tickets
and approvals only change through the lifecycle state machine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

from src.config import (
    ApprovalStatus, NotificationEvent, Priority, TicketStatus,
    ACTIVE_STATUSES,
)
from src.sla.domain.value_objects import TicketContext


# ========== Reference data ==========

# End time written as "24:00": the window closes at the next local midnight
END_OF_DAY = time.max


@dataclass(frozen=True)
class BusinessHoursConfig:
    """
    One weekly opening window of a department.

    ``day_of_week`` is Sunday-based (0 = Sunday ... 6 = Saturday) and the
    times are local wall-clock times in ``timezone``. An ``end_time`` of
    ``END_OF_DAY`` keeps the window open until midnight.
    """

    department_id: Optional[int]
    day_of_week: int
    start_time: time
    end_time: time
    timezone: str = "Asia/Jakarta"
    is_active: bool = True
    id: Optional[int] = None

    def __post_init__(self):
        """Validate window on initialization."""
        if not 0 <= self.day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")


@dataclass(frozen=True)
class Holiday:
    """
    A calendar day excluded from SLA accrual.

    A holiday with neither department nor unit is global.
    """

    name: str
    date: date
    is_recurring: bool = False
    department_id: Optional[int] = None
    unit_id: Optional[int] = None
    is_active: bool = True
    description: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_global(self) -> bool:
        return self.department_id is None and self.unit_id is None

    def applies_to(self, department_id: Optional[int], unit_id: Optional[int] = None) -> bool:
        """Check whether this holiday's scope covers the given department/unit."""
        if not self.is_active:
            return False
        if self.is_global:
            return True
        if self.department_id is not None and self.department_id != department_id:
            return False
        if self.unit_id is not None and self.unit_id != unit_id:
            return False
        return True


@dataclass(frozen=True)
class EscalationLevel:
    """A single row of a policy's escalation matrix."""

    level: int
    time_minutes: int
    assign_to_role: str


@dataclass(frozen=True)
class NotificationRule:
    """Which channels to notify when a policy event happens."""

    event: NotificationEvent
    channels: Tuple[str, ...] = ()
    enabled: bool = True


@dataclass(frozen=True)
class SLAPolicy:
    """
    SLA policy scoped by department, service catalog, service item and priority.

    A ``None`` scoping field matches any ticket value.
    """

    id: int
    name: str
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool = True
    department_id: Optional[int] = None
    service_catalog_id: Optional[int] = None
    service_item_id: Optional[int] = None
    priority: Optional[Priority] = None
    escalation_matrix: Tuple[EscalationLevel, ...] = ()
    notification_rules: Tuple[NotificationRule, ...] = ()
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.response_time_minutes > self.resolution_time_minutes:
            raise ValueError("response_time_minutes cannot exceed resolution_time_minutes")
        # Matrix is always evaluated in ascending time order
        ordered = tuple(sorted(self.escalation_matrix, key=lambda lvl: (lvl.time_minutes, lvl.level)))
        object.__setattr__(self, "escalation_matrix", ordered)

    def matches(self, context: TicketContext) -> bool:
        """Every non-null scoping field must equal the ticket's field."""
        scoped = (
            (self.service_item_id, context.service_item_id),
            (self.service_catalog_id, context.service_catalog_id),
            (self.department_id, context.department_id),
            (self.priority, context.priority),
        )
        return all(mine is None or mine == theirs for mine, theirs in scoped)

    def channels_for(self, event: NotificationEvent) -> Tuple[str, ...]:
        """Get notification channels subscribed to an event."""
        channels: Tuple[str, ...] = ()
        for rule in self.notification_rules:
            if rule.enabled and rule.event == event:
                channels += tuple(c for c in rule.channels if c not in channels)
        return channels


# ========== Workflow entities ==========

@dataclass
class Ticket:
    """
    Ticket entity as seen by the SLA engine.

    ``sla_clock_started_at`` is the start of the current SLA clock run and is
    None while the clock is stopped; ``sla_elapsed_minutes`` holds SLA time
    accrued by earlier runs (before a resolve).
    """

    # Core attributes
    id: int
    status: TicketStatus
    priority: Priority
    created_by_user_id: int
    created_at: datetime
    service_item_id: Optional[int] = None
    service_catalog_id: Optional[int] = None
    department_id: Optional[int] = None
    unit_id: Optional[int] = None
    title: str = ""

    # Assignment
    assigned_to_user_id: Optional[int] = None

    # SLA tracking
    sla_due_date: Optional[datetime] = None
    sla_policy_id: Optional[int] = None
    sla_business_hours_only: bool = True
    sla_clock_started_at: Optional[datetime] = None
    sla_elapsed_minutes: float = 0.0
    escalation_level: int = 0
    escalated_to_role: Optional[str] = None

    # Timestamps
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Optimistic concurrency token
    version: int = 0

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

    @property
    def context(self) -> TicketContext:
        return TicketContext(
            priority=self.priority,
            department_id=self.department_id,
            service_catalog_id=self.service_catalog_id,
            service_item_id=self.service_item_id,
        )

    @property
    def is_active(self) -> bool:
        """Check if ticket is approved and not yet resolved."""
        return self.status in ACTIVE_STATUSES

    @property
    def has_sla(self) -> bool:
        return self.sla_due_date is not None

    @property
    def is_sla_clock_running(self) -> bool:
        return self.sla_clock_started_at is not None


@dataclass
class BusinessApproval:
    """Human business gate whose approval starts the SLA clock."""

    ticket_id: int
    business_reviewer_id: Optional[int]
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.approval_status == ApprovalStatus.PENDING


@dataclass
class AssignmentLog:
    """Append-only record of who (or which role) a ticket was handed to."""

    ticket_id: int
    reason: str
    assigned_to_user_id: Optional[int] = None
    assigned_by_user_id: Optional[int] = None
    assigned_role: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class Comment:
    """Append-only ticket comment."""

    ticket_id: int
    content: str
    author_user_id: Optional[int] = None
    is_internal: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None
